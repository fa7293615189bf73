"""FastAPI server exposing the captioning pipeline over HTTP.

Run with:
uvicorn server.app:app --host 0.0.0.0 --port 5000
or the ``captionify-server`` console script.

Endpoints:
POST /upload     multipart field ``video``
                 -> {"success": true, "videoPath": "<url>", "filename": "..."}
POST /captions   {"videoPath": "<url or filename>"}
                 -> {"success": true, "captions": [{"start": 0.0, "end": 1.5, "text": "..."}]}
POST /render     {"videoPath": "...", "captions": [...], "style": "bottom"}
                 -> {"success": true, "outputUrl": "<url>", "filename": "..."}

Uploaded and rendered files are served from /uploads and /outputs.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, field_validator

from pipeline.config import PipelineConfig
from pipeline.errors import (
    PipelineError,
    UploadTooLargeError,
    ValidationError,
    VideoNotFoundError,
)
from pipeline.main import CaptionPipeline, parse_captions
from pipeline.storage import OUTPUTS_ROUTE, UPLOADS_ROUTE
from transcription.captions import captions_payload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
# Fields are optional so a missing value reaches the handler and is reported
# with the same error shape as every other pipeline failure.
class CaptionsRequest(BaseModel):
    videoPath: Optional[str] = Field(None, description="URL returned by /upload or a bare filename")

    @field_validator("videoPath")
    def strip_video_path(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class RenderRequestBody(CaptionsRequest):
    captions: Optional[List[Any]] = Field(None, description="Caption list returned by /captions")
    style: Optional[str] = Field("bottom", description="Caption layout tag, e.g. 'top' or 'bottom'")


class Caption(BaseModel):
    start: float
    end: float
    text: str


class UploadResponse(BaseModel):
    success: bool = True
    videoPath: str
    filename: str


class CaptionsResponse(BaseModel):
    success: bool = True
    captions: List[Caption]


class RenderResponse(BaseModel):
    success: bool = True
    outputUrl: str
    filename: str


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
ERROR_TITLES = {
    "/upload": "Upload failed",
    "/captions": "Caption generation failed",
    "/render": "Video rendering failed",
}


def _status_for(exc: PipelineError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, VideoNotFoundError):
        return 404
    if isinstance(exc, UploadTooLargeError):
        return 413
    return 500


def _error_response(status_code: int, error: str, details: Optional[str]) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content={"success": False, "error": error, "details": details})


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
        return _error_response(status_code, ERROR_TITLES.get(request.url.path, "Request failed"), str(exc))
    logger.warning(f"{request.url.path} rejected: {exc}")
    return _error_response(status_code, exc.message, exc.details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return _error_response(400, "Invalid request", details)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(config: Optional[PipelineConfig] = None,
               pipeline: Optional[CaptionPipeline] = None) -> FastAPI:
    config = config or PipelineConfig.from_env()
    pipeline = pipeline or CaptionPipeline.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Fatal on misconfiguration: the process should not start serving.
        config.validate()
        pipeline.storage.prepare()
        logger.info("Captionify Backend API")
        logger.info(f"URL: {config.base_url}")
        logger.info(f"Uploads: {config.upload_dir}")
        logger.info(f"Outputs: {config.output_dir}")
        logger.info(f"Environment: {'Render (Cloud)' if config.cloud else 'Local'}")
        yield

    app = FastAPI(title="Captionify Backend API", lifespan=lifespan)
    app.state.config = config
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.mount(UPLOADS_ROUTE, StaticFiles(directory=str(config.upload_dir), check_dir=False), name="uploads")
    app.mount(OUTPUTS_ROUTE, StaticFiles(directory=str(config.output_dir), check_dir=False), name="outputs")

    @app.get("/")
    async def health() -> dict:
        return {
            "status": "ok",
            "message": "Captionify Backend API",
            "endpoints": ["POST /upload", "POST /captions", "POST /render"],
        }

    @app.post("/upload", response_model=UploadResponse)
    async def upload_video(video: Optional[UploadFile] = File(None)):
        if video is None or not video.filename:
            raise ValidationError("Video file required")
        try:
            asset = await pipeline.upload(video.filename, video)
        finally:
            await video.close()
        return UploadResponse(videoPath=asset.url, filename=asset.filename)

    @app.post("/captions", response_model=CaptionsResponse)
    async def generate_captions(request: CaptionsRequest):
        if not request.videoPath:
            raise ValidationError("videoPath is required")
        captions = await pipeline.generate_captions(request.videoPath)
        logger.info(f"Generated {len(captions)} captions")
        return CaptionsResponse(captions=captions_payload(captions))

    @app.post("/render", response_model=RenderResponse)
    async def render_video(request: RenderRequestBody):
        if not request.videoPath or request.captions is None:
            raise ValidationError("videoPath and captions array are required")
        captions = parse_captions(request.captions)
        asset = await pipeline.render(request.videoPath, captions, request.style or "bottom")
        return RenderResponse(outputUrl=asset.url, filename=asset.filename)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    config: PipelineConfig = app.state.config
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
