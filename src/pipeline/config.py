"""
Configuration management for the captioning pipeline.
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError

SUPPORTED_PROVIDERS = ("openai", "assemblyai")


def _env_flag(value: Optional[str]) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Configuration for the upload / captions / render pipeline."""

    # Storage
    storage_root: Path = field(default_factory=Path.cwd)
    cloud: bool = False  # Render.com style deployment, files under /tmp
    fallback_dirs: List[Path] = field(default_factory=list)
    max_upload_bytes: int = 100 * 1024 * 1024

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    public_base_url: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    # Transcoder
    ffmpeg_binary: Optional[str] = None
    ffprobe_binary: Optional[str] = None
    audio_sample_rate: int = 16000  # Hz, what speech-to-text APIs expect

    # Transcription settings
    transcription_provider: str = "openai"  # openai, assemblyai
    transcription_api_key: Optional[str] = None
    transcription_base_url: Optional[str] = None
    transcription_model: Optional[str] = None
    transcription_language: Optional[str] = None
    transcription_timeout: float = 120.0
    transcription_max_attempts: int = 3
    transcription_retry_delay: float = 2.0
    transcription_poll_interval: float = 3.0

    # Renderer settings
    remotion_binary: str = "npx remotion"
    remotion_entry: Optional[Path] = None
    remotion_composition: str = "CaptionedVideo"

    @property
    def upload_dir(self) -> Path:
        return self.storage_root / "uploads"

    @property
    def output_dir(self) -> Path:
        return self.storage_root / "outputs"

    @property
    def work_dir(self) -> Path:
        """Scratch space for extracted audio and render props."""
        return self.storage_root / "tmp"

    @property
    def bundle_dir(self) -> Path:
        return self.storage_root / "remotion-bundle"

    @property
    def base_url(self) -> str:
        """Externally reachable base URL, without trailing slash."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        return f"http://localhost:{self.port}"

    @property
    def entry_point(self) -> Path:
        if self.remotion_entry is not None:
            return self.remotion_entry
        return Path.cwd().parent / "remotion" / "src" / "index.ts"

    def ensure_directories(self) -> None:
        for directory in (self.upload_dir, self.output_dir, self.work_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        """Raise ConfigurationError when a required setting is missing."""
        if self.transcription_provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unknown transcription provider {self.transcription_provider!r}; "
                f"expected one of {', '.join(SUPPORTED_PROVIDERS)}"
            )
        if not self.transcription_api_key:
            raise ConfigurationError(
                f"No API key configured for transcription provider {self.transcription_provider!r}"
            )
        if not self.ffmpeg_binary:
            raise ConfigurationError("FFmpeg binary not found. Install ffmpeg or set FFMPEG_BINARY.")
        if not self.ffprobe_binary:
            raise ConfigurationError("FFprobe binary not found. Install ffmpeg or set FFPROBE_BINARY.")
        if self.transcription_max_attempts < 1:
            raise ConfigurationError("TRANSCRIPTION_MAX_ATTEMPTS must be at least 1")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """Create configuration from environment variables.

        A ``.env`` file (``env_file``, or the nearest one above the working
        directory) is loaded first. Variables already set in the process win.
        """
        dotenv_path = env_file or find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path, override=False)

        external_url = os.getenv("RENDER_EXTERNAL_URL")
        cloud = _env_flag(os.getenv("RENDER")) or bool(external_url)

        storage_root = os.getenv("STORAGE_ROOT")
        if storage_root:
            root = Path(storage_root)
        elif cloud:
            root = Path("/tmp")
        else:
            root = Path.cwd()

        provider = os.getenv("TRANSCRIPTION_PROVIDER", "openai").strip().lower()
        if provider == "assemblyai":
            api_key = os.getenv("ASSEMBLYAI_API_KEY")
        else:
            api_key = os.getenv("OPENAI_API_KEY")
        api_key = os.getenv("TRANSCRIPTION_API_KEY", api_key)

        fallback_dirs = [
            Path(p) for p in os.getenv("FALLBACK_VIDEO_DIRS", "").split(os.pathsep) if p.strip()
        ]
        remotion_entry = os.getenv("REMOTION_ENTRY")
        cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            storage_root=root,
            cloud=cloud,
            fallback_dirs=fallback_dirs,
            max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", cls.max_upload_bytes)),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", cls.port)),
            public_base_url=os.getenv("PUBLIC_BASE_URL", external_url),
            cors_origins=cors_origins or ["*"],
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            ffmpeg_binary=os.getenv("FFMPEG_BINARY") or shutil.which("ffmpeg"),
            ffprobe_binary=os.getenv("FFPROBE_BINARY") or shutil.which("ffprobe"),
            audio_sample_rate=int(os.getenv("AUDIO_SAMPLE_RATE", cls.audio_sample_rate)),
            transcription_provider=provider,
            transcription_api_key=api_key,
            transcription_base_url=os.getenv("TRANSCRIPTION_BASE_URL"),
            transcription_model=os.getenv("TRANSCRIPTION_MODEL"),
            transcription_language=os.getenv("TRANSCRIPTION_LANGUAGE"),
            transcription_timeout=float(os.getenv("TRANSCRIPTION_TIMEOUT", cls.transcription_timeout)),
            transcription_max_attempts=int(
                os.getenv("TRANSCRIPTION_MAX_ATTEMPTS", cls.transcription_max_attempts)
            ),
            transcription_retry_delay=float(
                os.getenv("TRANSCRIPTION_RETRY_DELAY", cls.transcription_retry_delay)
            ),
            transcription_poll_interval=float(
                os.getenv("TRANSCRIPTION_POLL_INTERVAL", cls.transcription_poll_interval)
            ),
            remotion_binary=os.getenv("REMOTION_BINARY", cls.remotion_binary),
            remotion_entry=Path(remotion_entry) if remotion_entry else None,
            remotion_composition=os.getenv("REMOTION_COMPOSITION", cls.remotion_composition),
        )
