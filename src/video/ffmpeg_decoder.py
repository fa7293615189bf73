"""
FFmpeg-based helpers for uploaded videos: audio extraction, MP4
normalization and ffprobe inspection.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from pipeline.errors import (
    AudioExtractionError,
    MediaProbeError,
    VideoNormalizationError,
    VideoNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class VideoInfo:
    """Subset of ffprobe output the pipeline cares about."""
    duration: float
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    video_codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_channels is not None


class FFmpegDecoder:
    """Runs ffmpeg/ffprobe as asyncio subprocesses."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe",
                 audio_sample_rate: int = 16000, frame_rate: int = 30):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.audio_sample_rate = audio_sample_rate
        self.frame_rate = frame_rate

    async def extract_audio(self, video_path: str, audio_path: str) -> str:
        """
        Extract the audio track as mono 16-bit PCM WAV.

        Args:
            video_path: Existing video file
            audio_path: Destination WAV file, overwritten if present

        Returns:
            audio_path

        Raises:
            VideoNotFoundError: video_path does not exist
            AudioExtractionError: ffmpeg failed or produced nothing
        """
        if not os.path.isfile(video_path):
            raise VideoNotFoundError(str(video_path))

        cmd = [
            self.ffmpeg_binary, '-y',
            '-i', str(video_path),
            '-vn',  # No video
            '-map', '0:a:0',  # First audio stream, fail if there is none
            '-ac', '1',  # Mono audio
            '-ar', str(self.audio_sample_rate),
            '-c:a', 'pcm_s16le',
            '-f', 'wav',
            str(audio_path),
        ]
        logger.info(f"Extracting audio: {video_path} -> {audio_path}")

        returncode, stderr = await self._run(cmd)
        if returncode != 0:
            self._cleanup_files([audio_path])
            raise AudioExtractionError("Audio extraction failed", self._tail(stderr))
        if not os.path.exists(audio_path) or os.path.getsize(audio_path) == 0:
            self._cleanup_files([audio_path])
            raise AudioExtractionError("Audio extraction produced no output", self._tail(stderr))

        logger.info("Audio extraction complete")
        return str(audio_path)

    async def normalize_video(self, input_path: str, output_path: str) -> str:
        """
        Re-encode an upload to the canonical MP4 the renderer expects:
        H.264/yuv420p, AAC, constant 30 fps, faststart, regenerated timestamps.
        """
        if not os.path.isfile(input_path):
            raise VideoNotFoundError(str(input_path))

        cmd = [
            self.ffmpeg_binary, '-y',
            '-fflags', '+genpts',
            '-i', str(input_path),
            '-map', '0:v:0',
            '-map', '0:a:0?',  # Keep audio if available
            '-c:v', 'libx264',
            '-preset', 'veryfast',
            '-pix_fmt', 'yuv420p',
            '-r', str(self.frame_rate),
            '-c:a', 'aac',
            '-b:a', '128k',
            '-avoid_negative_ts', 'make_zero',
            '-movflags', '+faststart',
            '-f', 'mp4',
            str(output_path),
        ]
        logger.info(f"Normalizing video: {input_path} -> {output_path}")

        returncode, stderr = await self._run(cmd, VideoNormalizationError)
        if returncode != 0 or not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            self._cleanup_files([output_path])
            raise VideoNormalizationError("Video normalization failed", self._tail(stderr))

        return str(output_path)

    async def probe(self, path: str) -> VideoInfo:
        """Inspect a media file with ffprobe."""
        if not os.path.isfile(path):
            raise VideoNotFoundError(str(path))

        cmd = [
            self.ffprobe_binary,
            '-v', 'error',
            '-print_format', 'json',
            '-show_format',
            '-show_streams',
            str(path),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise MediaProbeError(f"FFprobe binary not found: {self.ffprobe_binary}", str(e)) from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise MediaProbeError(f"ffprobe failed for {path}", self._tail(stderr))

        try:
            metadata = json.loads(stdout.decode() or "{}")
        except json.JSONDecodeError as e:
            raise MediaProbeError(f"ffprobe returned invalid JSON for {path}", str(e)) from e

        return self._video_info(metadata)

    @staticmethod
    def _video_info(metadata: dict) -> VideoInfo:
        streams = metadata.get("streams") or []
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        video = next((s for s in streams if s.get("codec_type") == "video"), None)

        info = VideoInfo(duration=float((metadata.get("format") or {}).get("duration") or 0.0))
        if audio is not None:
            info.audio_channels = int(audio.get("channels") or 0)
            info.audio_sample_rate = int(audio.get("sample_rate") or 0)
        if video is not None:
            info.video_codec = video.get("codec_name")
            info.width = video.get("width")
            info.height = video.get("height")
        return info

    async def _run(self, cmd: list, error_cls=AudioExtractionError) -> Tuple[int, bytes]:
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            # The binary itself is missing, not the input.
            raise error_cls(f"FFmpeg binary not found: {self.ffmpeg_binary}", str(e)) from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            logger.error(f"FFmpeg exited with {process.returncode}: {self._tail(stderr)}")
        return process.returncode, stderr

    @staticmethod
    def _tail(stderr: bytes, lines: int = 10) -> str:
        text = stderr.decode(errors="replace").strip() if stderr else ""
        return "\n".join(text.splitlines()[-lines:])

    def _cleanup_files(self, file_paths: list):
        """Clean up temporary files."""
        for file_path in file_paths:
            try:
                if os.path.exists(file_path):
                    os.remove(file_path)
            except Exception as e:
                logger.warning(f"Failed to cleanup file {file_path}: {e}")
