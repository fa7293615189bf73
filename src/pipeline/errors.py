"""
Exceptions raised by the captioning pipeline stages.
"""


class PipelineError(Exception):
    """Base class for every failure surfaced to the HTTP layer."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message if not details else f"{message}: {details}")

    def __str__(self) -> str:
        return self.message if not self.details else f"{self.message}: {self.details}"


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup."""


class ValidationError(PipelineError):
    """Missing or malformed request fields."""


class UploadTooLargeError(PipelineError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Upload exceeds maximum allowed size of {limit} bytes")


class VideoNotFoundError(PipelineError, FileNotFoundError):
    """A referenced video is absent on disk."""

    def __init__(self, reference: str):
        self.reference = reference
        PipelineError.__init__(self, f"Video file not found: {reference}")


class AudioExtractionError(PipelineError):
    pass


class VideoNormalizationError(PipelineError):
    pass


class MediaProbeError(PipelineError):
    pass


class TranscriptionError(PipelineError):
    """Transcription failed, either after exhausting retries or for good."""


class TranscriptionTransportError(TranscriptionError):
    """Network or service-availability failure worth another attempt."""


class TranscriptionJobFailedError(TranscriptionError):
    """The provider completed the job and reported it as failed."""


class BundleError(PipelineError):
    pass


class CompositionNotFoundError(PipelineError):
    def __init__(self, composition_id: str, available: list[str] | None = None):
        self.composition_id = composition_id
        self.available = available or []
        super().__init__(
            f"'{composition_id}' composition not found in Remotion bundle",
            ", ".join(self.available) or None,
        )


class RenderError(PipelineError):
    pass


class StorageError(PipelineError):
    """The upload could not be written to disk."""
