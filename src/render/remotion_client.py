"""
Render client driving the Remotion CLI: bundle once, look up the
composition, then render the captioned video with the caption list
and style passed as input props.
"""

import asyncio
import json
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from pipeline.errors import (
    BundleError,
    CompositionNotFoundError,
    RenderError,
    VideoNotFoundError,
)
from transcription.captions import CaptionSegment, captions_payload
from .bundle import BundleHandle

logger = logging.getLogger(__name__)

KNOWN_STYLES = ("top", "bottom")


@dataclass
class RenderRequest:
    """Everything one render call needs. Not persisted."""
    video_path: str
    captions: Sequence[CaptionSegment] = field(default_factory=list)
    style: str = "bottom"


@dataclass(frozen=True)
class RenderedAsset:
    path: Path
    url: str

    @property
    def filename(self) -> str:
        return self.path.name


class RenderClient:
    """Client for the Remotion renderer, invoked as a subprocess."""

    def __init__(self,
                 entry_point: Path,
                 bundle_dir: Path,
                 output_path_factory: Callable[[], Path],
                 video_url_for: Callable[[Path], str],
                 output_url_for: Callable[[Path], str],
                 work_dir: Path,
                 remotion_binary: str = "npx remotion",
                 composition_id: str = "CaptionedVideo",
                 bundle: Optional[BundleHandle] = None):
        """
        Args:
            entry_point: Remotion project entry (e.g. ``remotion/src/index.ts``)
            bundle_dir: Where the bundle is written
            output_path_factory: Returns a fresh, unique output file path
            video_url_for: Maps a local upload to a URL the renderer's browser can fetch
            output_url_for: Maps a rendered file to its public URL
            work_dir: Scratch directory for input props files
            remotion_binary: Command prefix for the Remotion CLI
            composition_id: Composition rendered for every request
            bundle: Shared bundle handle; one is created when omitted
        """
        self.entry_point = Path(entry_point)
        self.bundle_dir = Path(bundle_dir)
        self.output_path_factory = output_path_factory
        self.video_url_for = video_url_for
        self.output_url_for = output_url_for
        self.work_dir = Path(work_dir)
        self.command = shlex.split(remotion_binary)
        self.composition_id = composition_id
        self.bundle = bundle or BundleHandle(self._bundle)

    async def render_video(self, request: RenderRequest) -> RenderedAsset:
        """
        Render ``request`` into a new MP4 (H.264 / AAC).

        Raises:
            BundleError: the bundle could not be built
            CompositionNotFoundError: the bundle lacks the composition
            VideoNotFoundError: the local source video is missing
            ValidationError: the local source video is not in a served directory
            RenderError: the renderer failed or wrote nothing
        """
        serve_url = await self.bundle.get()
        await self._ensure_composition(serve_url)

        video_url = self.resolve_video_url(request.video_path)
        if request.style not in KNOWN_STYLES:
            logger.info(f"Passing unrecognized caption style {request.style!r} through to the renderer")

        output_path = self.output_path_factory()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        props_path = self._write_props(output_path, video_url, request)

        logger.info("Rendering video with:")
        logger.info(f"  Video: {video_url}")
        logger.info(f"  Captions: {len(request.captions)}")
        logger.info(f"  Style: {request.style}")
        logger.info(f"  Output: {output_path}")

        try:
            returncode, _, stderr = await self._run([
                "render", serve_url, self.composition_id, str(output_path),
                f"--props={props_path}",
                "--codec=h264",
                "--audio-codec=aac",
            ])
            if returncode != 0:
                raise RenderError("Video rendering failed", self._tail(stderr))
            if not output_path.exists() or output_path.stat().st_size == 0:
                raise RenderError("Rendered video file was not created", self._tail(stderr))
        except Exception:
            self._remove(output_path)
            raise
        finally:
            self._remove(props_path)

        size_mb = output_path.stat().st_size / (1024 * 1024)
        logger.info(f"Render completed: {output_path} ({size_mb:.2f} MB)")
        return RenderedAsset(path=output_path, url=self.output_url_for(output_path))

    def resolve_video_url(self, video_path: str) -> str:
        """The renderer runs in its own browser process, so local files are handed over by URL."""
        if str(video_path).startswith(("http://", "https://")):
            return str(video_path)
        path = Path(video_path)
        if not path.is_file():
            raise VideoNotFoundError(str(video_path))
        url = self.video_url_for(path)
        logger.debug(f"Converted local path to URL: {video_path} -> {url}")
        return url

    async def list_compositions(self, serve_url: str) -> List[str]:
        returncode, stdout, stderr = await self._run(["compositions", serve_url, "--quiet"])
        if returncode != 0:
            raise RenderError("Could not list Remotion compositions", self._tail(stderr))
        return stdout.decode(errors="replace").split()

    async def _ensure_composition(self, serve_url: str) -> None:
        logger.info("Getting Remotion compositions...")
        available = await self.list_compositions(serve_url)
        if self.composition_id not in available:
            raise CompositionNotFoundError(self.composition_id, available)

    async def _bundle(self) -> str:
        if not self.entry_point.is_file():
            raise BundleError(f"Remotion entry point not found: {self.entry_point}")
        self.bundle_dir.mkdir(parents=True, exist_ok=True)
        returncode, _, stderr = await self._run([
            "bundle", str(self.entry_point), f"--out-dir={self.bundle_dir}",
        ])
        if returncode != 0:
            raise BundleError("Remotion bundling failed", self._tail(stderr))
        if not (self.bundle_dir / "index.html").exists():
            raise BundleError(f"Remotion bundle missing index.html in {self.bundle_dir}")
        return str(self.bundle_dir)

    def _write_props(self, output_path: Path, video_url: str, request: RenderRequest) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        props_path = self.work_dir / f"{output_path.stem}.props.json"
        props = {
            "videoPath": video_url,
            "captions": captions_payload(request.captions),
            "style": request.style,
        }
        with open(props_path, "w", encoding="utf-8") as f:
            json.dump(props, f)
        return props_path

    async def _run(self, args: List[str]) -> Tuple[int, bytes, bytes]:
        cmd = [*self.command, *args]
        logger.debug(f"Remotion command: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RenderError(f"Remotion CLI not found: {self.command[0]}", str(e)) from e
        stdout, stderr = await process.communicate()
        return process.returncode, stdout, stderr

    @staticmethod
    def _tail(stderr: bytes, lines: int = 20) -> str:
        text = stderr.decode(errors="replace").strip() if stderr else ""
        return "\n".join(text.splitlines()[-lines:])

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to cleanup file {path}: {e}")
