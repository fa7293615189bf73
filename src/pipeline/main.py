"""
Pipeline orchestrator: upload -> normalize, video -> captions, and
video + captions + style -> rendered output.

Each operation is triggered separately by the HTTP layer. Nothing is
cached between calls; captions travel back to the client and are sent
again with the render request.
"""

import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence

from render.remotion_client import RenderClient, RenderedAsset, RenderRequest
from transcription.captions import CaptionSegment
from transcription.transcription_client import TranscriptionClient, create_transcription_client
from video.ffmpeg_decoder import FFmpegDecoder
from .config import PipelineConfig
from .errors import StorageError, UploadTooLargeError, ValidationError
from .storage import VideoAsset, VideoStorage

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class CaptionPipeline:
    """Coordinates storage, ffmpeg, transcription and rendering for one process."""

    def __init__(self, config: PipelineConfig, storage: VideoStorage, decoder: FFmpegDecoder,
                 transcriber: TranscriptionClient, renderer: RenderClient):
        self.config = config
        self.storage = storage
        self.decoder = decoder
        self.transcriber = transcriber
        self.renderer = renderer

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "CaptionPipeline":
        storage = VideoStorage(config)
        decoder = FFmpegDecoder(
            ffmpeg_binary=config.ffmpeg_binary or "ffmpeg",
            ffprobe_binary=config.ffprobe_binary or "ffprobe",
            audio_sample_rate=config.audio_sample_rate,
        )
        transcriber = create_transcription_client(config, decoder, storage.temp_audio_path)
        renderer = RenderClient(
            entry_point=config.entry_point,
            bundle_dir=config.bundle_dir,
            output_path_factory=storage.render_output_path,
            video_url_for=storage.url_for,
            output_url_for=storage.url_for,
            work_dir=storage.work_dir,
            remotion_binary=config.remotion_binary,
            composition_id=config.remotion_composition,
        )
        return cls(config, storage, decoder, transcriber, renderer)

    async def upload(self, filename: Optional[str], stream: AsyncReadable) -> VideoAsset:
        """
        Store an uploaded video and re-encode it to the canonical MP4.

        The raw upload is removed once the normalized file exists. When
        normalization fails, neither file is left behind.
        """
        if not filename:
            raise ValidationError("Video file required")

        self.storage.prepare()
        raw_path = self.storage.raw_upload_path(filename)
        normalized_path = self.storage.normalized_path_for(filename)

        try:
            size = await self._save_stream(stream, raw_path)
            logger.info(f"Upload saved: {filename} -> {raw_path.name} ({size} bytes)")
            await self.decoder.normalize_video(str(raw_path), str(normalized_path))
        except Exception:
            self._cleanup([raw_path, normalized_path])
            raise

        self._cleanup([raw_path])
        asset = VideoAsset(path=normalized_path, url=self.storage.upload_url(normalized_path.name))
        logger.info(f"Upload normalized: {asset.filename}")
        return asset

    async def generate_captions(self, video_reference: Optional[str]) -> List[CaptionSegment]:
        local_path = self.storage.resolve_video_reference(video_reference)
        logger.info(f"Generating captions for: {local_path}")
        return await self.transcriber.generate_captions(str(local_path))

    async def render(self, video_reference: Optional[str], captions: Sequence[CaptionSegment],
                     style: str = "bottom") -> RenderedAsset:
        # The renderer fetches the video by URL, so only served directories qualify.
        local_path = self.storage.resolve_video_reference(video_reference, served_only=True)
        logger.info(f"Starting render: {len(captions)} captions, style: {style}")
        asset = await self.renderer.render_video(
            RenderRequest(video_path=str(local_path), captions=list(captions), style=style)
        )
        logger.info(f"Render complete: {asset.url}")
        return asset

    async def _save_stream(self, stream: AsyncReadable, destination: Path) -> int:
        size = 0
        try:
            with open(destination, "wb") as f:
                while True:
                    chunk = await stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.config.max_upload_bytes:
                        raise UploadTooLargeError(size, self.config.max_upload_bytes)
                    f.write(chunk)
        except OSError as e:
            logger.error(f"Failed to store upload {destination.name}: {e}")
            raise StorageError("Could not store upload", str(e)) from e
        if size == 0:
            raise ValidationError("Uploaded video is empty")
        return size

    @staticmethod
    def _cleanup(paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                logger.warning(f"Failed to cleanup file {path}: {e}")


def parse_captions(raw: Any) -> List[CaptionSegment]:
    """Validate the caption list a client sends back with a render request."""
    if not isinstance(raw, list):
        raise ValidationError("videoPath and captions array are required")
    captions = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError("Invalid caption", f"caption {index} is not an object")
        try:
            captions.append(CaptionSegment.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Invalid caption", f"caption {index}: {e}") from e
    return captions
