"""
Speech-to-text clients for hosted transcription APIs.

Both clients share the same flow: extract a temporary WAV from the video,
send it to the provider under a retry policy, normalize the response into
CaptionSegments and delete the WAV whatever happened.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from pipeline.errors import (
    TranscriptionError,
    TranscriptionJobFailedError,
    TranscriptionTransportError,
)
from video.ffmpeg_decoder import FFmpegDecoder
from .captions import CaptionSegment, normalize_assemblyai, normalize_openai
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

AudioPathFactory = Callable[[], Path]


async def _raise_for_status(response: aiohttp.ClientResponse, provider: str) -> None:
    """Map HTTP failures onto retryable and non-retryable transcription errors."""
    if response.status < 400:
        return
    body = await response.text()
    message = f"{provider} API returned HTTP {response.status}"
    if response.status == 429 or response.status >= 500:
        raise TranscriptionTransportError(message, body[:500])
    raise TranscriptionError(message, body[:500])


class TranscriptionClient(ABC):
    """Base client: temporary audio lifecycle, retries and cleanup."""

    provider = "generic"

    def __init__(self,
                 decoder: FFmpegDecoder,
                 audio_path_factory: AudioPathFactory,
                 api_key: str,
                 base_url: str,
                 model: Optional[str] = None,
                 language: Optional[str] = None,
                 timeout: float = 120.0,
                 retry_policy: Optional[RetryPolicy] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.decoder = decoder
        self.audio_path_factory = audio_path_factory
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.language = language
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def generate_captions(self, video_path: str) -> List[CaptionSegment]:
        """
        Transcribe a video file into ordered caption segments.

        Args:
            video_path: Local video file

        Returns:
            Segments sorted by start time; empty when nothing was said

        Raises:
            VideoNotFoundError, AudioExtractionError: from audio extraction
            TranscriptionError: provider failure, after retries where applicable
        """
        audio_path = self.audio_path_factory()
        audio_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self.decoder.extract_audio(str(video_path), str(audio_path))
            size_mb = os.path.getsize(audio_path) / 1024 / 1024
            logger.info(f"Audio size (MB): {size_mb:.2f}")
            segments = await self.transcribe_file(audio_path)
        finally:
            self._cleanup_audio(audio_path)

        logger.info(f"Generated {len(segments)} captions for {video_path}")
        return segments

    async def transcribe_file(self, audio_path: Path) -> List[CaptionSegment]:
        """Send an extracted WAV to the provider and normalize the result."""
        segments = await self._transcribe(audio_path)
        logger.info(f"{self.provider} transcription success")
        return segments

    async def _call_with_retry(self, description: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run one provider request under the retry policy.

        Retryable failures still present after the last attempt are raised as
        TranscriptionError chained to the original exception.
        """
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            logger.info(f"{self.provider} {description} attempt {attempts} started")
            return await operation()

        try:
            return await self.retry_policy.call(attempt, sleep=self._sleep)
        except TranscriptionError as e:
            logger.error(f"{self.provider} {description} failed after {attempts} attempt(s): {e}")
            raise
        except Exception as e:
            if self.retry_policy.is_retryable(e):
                logger.error(f"{self.provider} {description} failed after {attempts} attempts: {e!r}")
                raise TranscriptionError(
                    f"Transcription failed after {attempts} attempts", str(e) or type(e).__name__
                ) from e
            raise

    @abstractmethod
    async def _transcribe(self, audio_path: Path) -> List[CaptionSegment]:
        """Provider flow for one audio file; each HTTP call goes through _call_with_retry."""

    def _cleanup_audio(self, audio_path: Path) -> None:
        try:
            if audio_path.exists():
                audio_path.unlink()
        except OSError as e:
            logger.warning(f"Failed to cleanup temporary audio {audio_path}: {e}")

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=self.timeout)


class OpenAITranscriptionClient(TranscriptionClient):
    """OpenAI-compatible ``/audio/transcriptions`` endpoint with verbose_json output."""

    provider = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "whisper-1"

    def __init__(self, decoder: FFmpegDecoder, audio_path_factory: AudioPathFactory, api_key: str,
                 base_url: Optional[str] = None, model: Optional[str] = None, **kwargs):
        super().__init__(decoder, audio_path_factory, api_key,
                         base_url or self.default_base_url, model or self.default_model, **kwargs)

    async def _transcribe(self, audio_path: Path) -> List[CaptionSegment]:
        payload = await self._call_with_retry("transcription", lambda: self._request_transcription(audio_path))
        return normalize_openai(payload)

    async def _request_transcription(self, audio_path: Path) -> Dict[str, Any]:
        # New form (and file handle) per attempt; a consumed stream cannot be resent.
        with open(audio_path, "rb") as audio_file:
            form = aiohttp.FormData()
            form.add_field("file", audio_file, filename=audio_path.name, content_type="audio/wav")
            form.add_field("model", self.model)
            form.add_field("response_format", "verbose_json")
            form.add_field("timestamp_granularities[]", "segment")
            if self.language:
                form.add_field("language", self.language)

            headers = {"Authorization": f"Bearer {self.api_key}"}
            async with self._session() as session:
                async with session.post(f"{self.base_url}/audio/transcriptions",
                                        data=form, headers=headers) as response:
                    await _raise_for_status(response, self.provider)
                    return await response.json()


class AssemblyAITranscriptionClient(TranscriptionClient):
    """AssemblyAI upload / transcript / poll flow. Timestamps arrive in milliseconds."""

    provider = "assemblyai"
    default_base_url = "https://api.assemblyai.com/v2"

    def __init__(self, decoder: FFmpegDecoder, audio_path_factory: AudioPathFactory, api_key: str,
                 base_url: Optional[str] = None, poll_interval: float = 3.0, **kwargs):
        super().__init__(decoder, audio_path_factory, api_key, base_url or self.default_base_url, **kwargs)
        self.poll_interval = poll_interval

    async def _transcribe(self, audio_path: Path) -> List[CaptionSegment]:
        # Retries wrap single HTTP calls so a failed poll never resubmits the job.
        headers = {"authorization": self.api_key}
        async with self._session() as session:
            upload_url = await self._call_with_retry(
                "upload", lambda: self._upload(session, headers, audio_path))
            transcript = await self._call_with_retry(
                "transcript request", lambda: self._create_transcript(session, headers, upload_url))
            transcript = await self._wait_for_completion(session, headers, transcript)
            if not transcript.get("words") and not transcript.get("text"):
                return []
            sentences = await self._call_with_retry(
                "sentences request", lambda: self._get_sentences(session, headers, transcript["id"]))
        return normalize_assemblyai(sentences) or normalize_assemblyai(transcript)

    async def _upload(self, session: aiohttp.ClientSession, headers: dict, audio_path: Path) -> str:
        with open(audio_path, "rb") as audio_file:
            async with session.post(f"{self.base_url}/upload", data=audio_file, headers=headers) as response:
                await _raise_for_status(response, self.provider)
                body = await response.json()
        return body["upload_url"]

    async def _create_transcript(self, session: aiohttp.ClientSession, headers: dict, audio_url: str) -> dict:
        request: Dict[str, Any] = {"audio_url": audio_url, "punctuate": True, "format_text": True}
        if self.model:
            request["speech_model"] = self.model
        if self.language:
            request["language_code"] = self.language
        else:
            request["language_detection"] = True
        async with session.post(f"{self.base_url}/transcript", json=request, headers=headers) as response:
            await _raise_for_status(response, self.provider)
            return await response.json()

    async def _wait_for_completion(self, session: aiohttp.ClientSession, headers: dict, transcript: dict) -> dict:
        transcript_id = transcript["id"]
        while True:
            status = transcript.get("status")
            if status == "completed":
                return transcript
            if status == "error":
                # The job ran and failed remotely; resubmitting would only burn quota.
                raise TranscriptionJobFailedError(
                    f"Transcription job {transcript_id} failed", transcript.get("error")
                )
            logger.debug(f"Transcript {transcript_id} is {status}; polling again in {self.poll_interval}s")
            await self._sleep(self.poll_interval)
            transcript = await self._call_with_retry(
                "status poll", lambda: self._get_transcript(session, headers, transcript_id))

    async def _get_transcript(self, session: aiohttp.ClientSession, headers: dict, transcript_id: str) -> dict:
        async with session.get(f"{self.base_url}/transcript/{transcript_id}", headers=headers) as response:
            await _raise_for_status(response, self.provider)
            return await response.json()

    async def _get_sentences(self, session: aiohttp.ClientSession, headers: dict, transcript_id: str) -> dict:
        async with session.get(f"{self.base_url}/transcript/{transcript_id}/sentences",
                               headers=headers) as response:
            await _raise_for_status(response, self.provider)
            return await response.json()


def create_transcription_client(config, decoder: FFmpegDecoder,
                                audio_path_factory: AudioPathFactory) -> TranscriptionClient:
    """Build the client selected by ``config.transcription_provider``."""
    policy = RetryPolicy(max_attempts=config.transcription_max_attempts,
                         delay=config.transcription_retry_delay)
    common = dict(
        api_key=config.transcription_api_key or "",
        base_url=config.transcription_base_url,
        model=config.transcription_model,
        language=config.transcription_language,
        timeout=config.transcription_timeout,
        retry_policy=policy,
    )
    if config.transcription_provider == "assemblyai":
        return AssemblyAITranscriptionClient(decoder, audio_path_factory,
                                             poll_interval=config.transcription_poll_interval, **common)
    return OpenAITranscriptionClient(decoder, audio_path_factory, **common)
