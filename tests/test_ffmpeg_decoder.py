import json
import shutil
import subprocess
import wave
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pipeline.errors import AudioExtractionError, MediaProbeError, VideoNormalizationError, VideoNotFoundError
from video.ffmpeg_decoder import FFmpegDecoder


def _fake_process(returncode=0, stdout=b"", stderr=b""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    return proc


def _writes_output(returncode=0, content=b"RIFF....WAVE", stderr=b""):
    """create_subprocess_exec replacement that writes the last argument as the output file."""
    async def fake_exec(*cmd, **kwargs):
        if content:
            with open(cmd[-1], "wb") as f:
                f.write(content)
        return _fake_process(returncode, stderr=stderr)
    return fake_exec


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"fake")
    return path


class TestExtractAudio:
    @pytest.mark.asyncio
    async def test_ffmpeg_called_with_mono_16k_pcm_wav(self, video, tmp_path):
        audio = tmp_path / "out.wav"
        with patch("asyncio.create_subprocess_exec", side_effect=_writes_output()) as mock_exec:
            result = await FFmpegDecoder().extract_audio(str(video), str(audio))

        assert result == str(audio)
        args = mock_exec.call_args[0]
        assert args[0] == "ffmpeg"
        assert "-vn" in args
        assert args[args.index("-ac") + 1] == "1"
        assert args[args.index("-ar") + 1] == "16000"
        assert args[args.index("-c:a") + 1] == "pcm_s16le"
        assert args[args.index("-f") + 1] == "wav"
        assert args[-1] == str(audio)

    @pytest.mark.asyncio
    async def test_configured_binary_is_used(self, video, tmp_path):
        with patch("asyncio.create_subprocess_exec", side_effect=_writes_output()) as mock_exec:
            await FFmpegDecoder(ffmpeg_binary="/opt/ffmpeg/bin/ffmpeg").extract_audio(
                str(video), str(tmp_path / "out.wav"))
        assert mock_exec.call_args[0][0] == "/opt/ffmpeg/bin/ffmpeg"

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_diagnostic_and_removes_partial(self, video, tmp_path):
        audio = tmp_path / "out.wav"
        fake = _writes_output(returncode=1, content=b"partial",
                              stderr=b"Stream map '0:a:0' matches no streams.")
        with patch("asyncio.create_subprocess_exec", side_effect=fake):
            with pytest.raises(AudioExtractionError) as exc_info:
                await FFmpegDecoder().extract_audio(str(video), str(audio))

        assert "matches no streams" in str(exc_info.value)
        assert not audio.exists()
        assert video.exists()

    @pytest.mark.asyncio
    async def test_empty_output_is_a_failure(self, video, tmp_path):
        with patch("asyncio.create_subprocess_exec", side_effect=_writes_output(content=b"")):
            with pytest.raises(AudioExtractionError):
                await FFmpegDecoder().extract_audio(str(video), str(tmp_path / "out.wav"))

    @pytest.mark.asyncio
    async def test_missing_source(self, tmp_path):
        with patch("asyncio.create_subprocess_exec") as mock_exec:
            with pytest.raises(VideoNotFoundError):
                await FFmpegDecoder().extract_audio(str(tmp_path / "nope.mp4"), str(tmp_path / "out.wav"))
        mock_exec.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_binary(self, video, tmp_path):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(AudioExtractionError, match="binary not found"):
                await FFmpegDecoder().extract_audio(str(video), str(tmp_path / "out.wav"))


class TestNormalizeVideo:
    @pytest.mark.asyncio
    async def test_canonical_mp4_arguments(self, video, tmp_path):
        out = tmp_path / "normalized.mp4"
        with patch("asyncio.create_subprocess_exec", side_effect=_writes_output(content=b"mp4")) as mock_exec:
            await FFmpegDecoder().normalize_video(str(video), str(out))

        args = mock_exec.call_args[0]
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-r") + 1] == "30"
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert args[args.index("-fflags") + 1] == "+genpts"
        assert args[args.index("-avoid_negative_ts") + 1] == "make_zero"
        assert out.read_bytes() == b"mp4"

    @pytest.mark.asyncio
    async def test_failure_removes_partial_output(self, video, tmp_path):
        out = tmp_path / "normalized.mp4"
        with patch("asyncio.create_subprocess_exec",
                   side_effect=_writes_output(returncode=1, content=b"half", stderr=b"Invalid data")):
            with pytest.raises(VideoNormalizationError, match="Invalid data"):
                await FFmpegDecoder().normalize_video(str(video), str(out))
        assert not out.exists()


class TestProbe:
    @pytest.mark.asyncio
    async def test_parses_streams(self, video):
        metadata = {
            "streams": [
                {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
                {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "44100"},
            ],
            "format": {"duration": "5.005"},
        }
        proc = _fake_process(stdout=json.dumps(metadata).encode())
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as mock_exec:
            info = await FFmpegDecoder().probe(str(video))

        assert mock_exec.call_args[0][0] == "ffprobe"
        assert info.duration == pytest.approx(5.005)
        assert info.has_audio
        assert info.audio_channels == 2
        assert info.audio_sample_rate == 44100
        assert (info.video_codec, info.width, info.height) == ("h264", 1280, 720)

    @pytest.mark.asyncio
    async def test_video_without_audio(self, video):
        metadata = {"streams": [{"codec_type": "video", "codec_name": "vp9"}], "format": {}}
        proc = _fake_process(stdout=json.dumps(metadata).encode())
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            info = await FFmpegDecoder().probe(str(video))
        assert not info.has_audio
        assert info.duration == 0.0

    @pytest.mark.asyncio
    async def test_probe_failure(self, video):
        proc = _fake_process(returncode=1, stderr=b"moov atom not found")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(MediaProbeError, match="moov atom"):
                await FFmpegDecoder().probe(str(video))


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


@requires_ffmpeg
class TestWithRealFFmpeg:
    @pytest.fixture
    def sample_video(self, tmp_path):
        path = tmp_path / "sample.mp4"
        subprocess.run(
            [
                "ffmpeg", "-y", "-loglevel", "error",
                "-f", "lavfi", "-i", "color=c=black:s=64x64:d=2",
                "-f", "lavfi", "-i", "sine=frequency=440:sample_rate=44100:duration=2",
                "-ac", "2",
                "-c:v", "mpeg4", "-c:a", "aac", "-shortest",
                str(path),
            ],
            check=True,
        )
        return path

    @pytest.mark.asyncio
    async def test_extracted_wav_is_mono_16k(self, sample_video, tmp_path):
        audio = tmp_path / "audio.wav"
        await FFmpegDecoder().extract_audio(str(sample_video), str(audio))

        with wave.open(str(audio), "rb") as wf:
            assert wf.getnchannels() == 1
            assert wf.getframerate() == 16000
            assert wf.getsampwidth() == 2
            duration = wf.getnframes() / wf.getframerate()
        assert duration == pytest.approx(2.0, abs=0.2)

    @pytest.mark.asyncio
    async def test_video_without_audio_track_fails(self, tmp_path):
        silent = tmp_path / "silent.mp4"
        subprocess.run(
            ["ffmpeg", "-y", "-loglevel", "error", "-f", "lavfi", "-i", "color=c=black:s=64x64:d=1",
             "-c:v", "mpeg4", str(silent)],
            check=True,
        )
        with pytest.raises(AudioExtractionError):
            await FFmpegDecoder().extract_audio(str(silent), str(tmp_path / "audio.wav"))
        assert not (tmp_path / "audio.wav").exists()

    @pytest.mark.asyncio
    async def test_probe_reports_audio(self, sample_video):
        info = await FFmpegDecoder().probe(str(sample_video))
        assert info.has_audio
        assert info.audio_channels == 2
        assert info.duration == pytest.approx(2.0, abs=0.2)
