"""
Caption segments and normalization of provider transcript payloads.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptionSegment:
    """One timed span of transcript text."""
    start: float  # seconds
    end: float    # seconds
    text: str

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise ValueError(f"Caption {name} must be a finite number, got {value!r}")
        if self.start < 0:
            raise ValueError(f"Caption start must be >= 0, got {self.start}")
        if self.start >= self.end:
            raise ValueError(f"Caption start ({self.start}) must be before end ({self.end})")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptionSegment":
        return cls(start=float(data["start"]), end=float(data["end"]), text=str(data.get("text", "")))


def _to_segment(start: Any, end: Any, text: Any, scale: float) -> Optional[CaptionSegment]:
    """Build a segment or return None for entries that cannot satisfy start < end."""
    text = (text or "").strip()
    if start is None or end is None or not text:
        return None
    try:
        return CaptionSegment(start=float(start) / scale, end=float(end) / scale, text=text)
    except (TypeError, ValueError) as e:
        logger.debug(f"Dropping malformed transcript entry ({start}, {end}, {text!r}): {e}")
        return None


def _collect(entries: Iterable[Dict[str, Any]], scale: float) -> List[CaptionSegment]:
    segments = []
    for entry in entries or []:
        segment = _to_segment(entry.get("start"), entry.get("end"), entry.get("text"), scale)
        if segment is not None:
            segments.append(segment)
    segments.sort(key=lambda s: (s.start, s.end))
    return segments


def from_seconds(entries: Iterable[Dict[str, Any]]) -> List[CaptionSegment]:
    """Normalize entries whose timestamps are already in seconds (OpenAI verbose_json)."""
    return _collect(entries, 1.0)


def from_milliseconds(entries: Iterable[Dict[str, Any]]) -> List[CaptionSegment]:
    """Normalize entries timed in milliseconds (AssemblyAI words/sentences/utterances)."""
    return _collect(entries, 1000.0)


def normalize_openai(payload: Dict[str, Any]) -> List[CaptionSegment]:
    """
    Normalize an OpenAI ``verbose_json`` transcription.

    Segment timestamps are used when present, then word timestamps. A response
    that only carries ``text`` but a ``duration`` becomes a single caption.
    """
    segments = payload.get("segments")
    if segments:
        return from_seconds(segments)
    words = payload.get("words")
    if words:
        return from_seconds({"start": w.get("start"), "end": w.get("end"), "text": w.get("word", w.get("text"))}
                            for w in words)
    text = (payload.get("text") or "").strip()
    duration = payload.get("duration")
    if text and duration:
        segment = _to_segment(0.0, duration, text, 1.0)
        return [segment] if segment else []
    return []


def normalize_assemblyai(payload: Dict[str, Any]) -> List[CaptionSegment]:
    """
    Normalize an AssemblyAI transcript (millisecond timestamps).

    Preference order: sentences, utterances, words.
    """
    for key in ("sentences", "utterances", "words"):
        entries = payload.get(key)
        if entries:
            return from_milliseconds(entries)
    return []


def captions_payload(segments: Iterable[CaptionSegment]) -> List[Dict[str, Any]]:
    return [s.to_dict() for s in segments]
