import os
import sys
from pathlib import Path

import pytest

# Ensure src/ is on sys.path so `import pipeline` works without installing
SRC = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from pipeline.config import PipelineConfig  # noqa: E402


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    cfg = PipelineConfig(
        storage_root=tmp_path / "storage",
        public_base_url="http://test",
        transcription_api_key="test-key",
        ffmpeg_binary="ffmpeg",
        ffprobe_binary="ffprobe",
        remotion_entry=tmp_path / "remotion" / "src" / "index.ts",
    )
    cfg.ensure_directories()
    return cfg


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def uploaded_video(config: PipelineConfig) -> Path:
    path = config.upload_dir / "safe-1700000000000-clip.mp4"
    path.write_bytes(b"fake-mp4-bytes")
    return path
