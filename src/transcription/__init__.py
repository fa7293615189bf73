"""
Transcription module: hosted speech-to-text clients producing caption segments.
"""

__version__ = "1.0.0"

from .captions import CaptionSegment, normalize_assemblyai, normalize_openai
from .retry import RetryPolicy
from .transcription_client import (
    AssemblyAITranscriptionClient,
    OpenAITranscriptionClient,
    TranscriptionClient,
    create_transcription_client,
)

__all__ = [
    "CaptionSegment",
    "normalize_assemblyai",
    "normalize_openai",
    "RetryPolicy",
    "TranscriptionClient",
    "OpenAITranscriptionClient",
    "AssemblyAITranscriptionClient",
    "create_transcription_client",
]
