"""
Storage bookkeeping: upload/output directories, public URLs and
resolution of client-supplied video references to local files.
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional
from urllib.parse import unquote, urlparse

from .config import PipelineConfig
from .errors import ValidationError, VideoNotFoundError

logger = logging.getLogger(__name__)

UPLOADS_ROUTE = "/uploads"
OUTPUTS_ROUTE = "/outputs"

_UNSAFE_CHARS = re.compile(r"[^\w.-]")


@dataclass(frozen=True)
class VideoAsset:
    """A stored video: local path plus the URL clients use to refer to it."""
    path: Path
    url: str

    @property
    def filename(self) -> str:
        return self.path.name


def safe_filename(name: str) -> str:
    """Replace anything outside [A-Za-z0-9_.-] so names are URL and shell safe."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).lstrip(".")
    return cleaned or "video"


def unique_suffix() -> str:
    """Millisecond timestamp plus a short random tag, unique within the process."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class VideoStorage:
    """Maps between storage directories, local paths and public URLs."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.upload_dir = config.upload_dir
        self.output_dir = config.output_dir
        self.work_dir = config.work_dir

    def prepare(self) -> None:
        self.config.ensure_directories()

    def upload_url(self, filename: str) -> str:
        return f"{self.config.base_url}{UPLOADS_ROUTE}/{filename}"

    def output_url(self, filename: str) -> str:
        return f"{self.config.base_url}{OUTPUTS_ROUTE}/{filename}"

    def url_for(self, path: Path) -> str:
        """Public URL for a file living in one of the served directories.

        Raises:
            ValidationError: the file is outside /uploads and /outputs, so no URL reaches it
        """
        parent = path.parent.resolve()
        if parent == self.output_dir.resolve():
            return self.output_url(path.name)
        if parent == self.upload_dir.resolve():
            return self.upload_url(path.name)
        raise ValidationError("Video is not in a served directory", str(path))

    def raw_upload_path(self, original_name: str) -> Path:
        return self.upload_dir / f"raw-{unique_suffix()}-{safe_filename(original_name)}"

    def normalized_path_for(self, original_name: str) -> Path:
        stem = Path(safe_filename(original_name)).stem or "video"
        return self.upload_dir / f"safe-{unique_suffix()}-{stem}.mp4"

    def temp_audio_path(self) -> Path:
        return self.work_dir / f"audio-{unique_suffix()}.wav"

    def render_output_path(self) -> Path:
        return self.output_dir / f"render-{unique_suffix()}.mp4"

    def search_dirs(self, served_only: bool = False) -> List[Path]:
        dirs = [self.upload_dir, self.output_dir]
        if not served_only:
            dirs.extend(self.config.fallback_dirs)
        seen = []
        for directory in dirs:
            if directory not in seen:
                seen.append(directory)
        return seen

    def resolve_video_reference(self, reference: Optional[str], served_only: bool = False) -> Path:
        """
        Resolve a client-supplied video reference to an existing local file.

        Precedence:
          1. explicit URL (``http(s)://host/uploads/name.mp4``): the URL path is used
          2. known route prefix (``/uploads/`` or ``/outputs/``) is stripped
          3. whatever remains is treated as a bare filename
          4. the filename is looked up in the upload dir, then the output dir,
             then each configured fallback dir; first hit wins

        With ``served_only`` the fallback dirs are skipped, for callers that
        must hand the file to another process by URL.

        Raises:
            ValidationError: empty reference or one that escapes the storage dirs
            VideoNotFoundError: no directory holds the file
        """
        if reference is None or not str(reference).strip():
            raise ValidationError("videoPath is required")
        reference = str(reference).strip()

        candidate = reference
        if candidate.startswith(("http://", "https://")):
            candidate = unquote(urlparse(candidate).path)

        preferred_dir: Optional[Path] = None
        for route, directory in ((UPLOADS_ROUTE, self.upload_dir), (OUTPUTS_ROUTE, self.output_dir)):
            marker = f"{route}/"
            if marker in candidate:
                candidate = candidate.split(marker, 1)[1]
                preferred_dir = directory
                break

        filename = self._bare_filename(candidate, reference)

        search = self.search_dirs(served_only=served_only)
        if preferred_dir is not None:
            search.remove(preferred_dir)
            search.insert(0, preferred_dir)

        for directory in search:
            path = directory / filename
            if path.is_file():
                logger.debug(f"Resolved video reference {reference!r} -> {path}")
                return path

        raise VideoNotFoundError(filename)

    @staticmethod
    def _bare_filename(candidate: str, reference: str) -> str:
        parts = [p for p in PurePosixPath(candidate.replace("\\", "/")).parts if p not in ("/", "")]
        if not parts or ".." in parts:
            raise ValidationError("Invalid videoPath", reference)
        if len(parts) > 1:
            # Absolute or nested local paths are reduced to their final component,
            # which is then looked up inside the served directories only.
            logger.debug(f"Reducing nested video reference {reference!r} to {parts[-1]!r}")
        return parts[-1]
