"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


def _format_clock(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


@dataclass(frozen=True)
class TranscriptionSegment:
    """One timed span of recognized text, timed on the original recording."""
    id: int
    text: str
    start: float
    end: float

    @property
    def timestamp_label(self) -> str:
        return f"[{_format_clock(self.start)} - {_format_clock(self.end)}]"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionSegment":
        return cls(
            id=int(data["id"]),
            text=str(data["text"]),
            start=float(data["start"]),
            end=float(data["end"]),
        )


@dataclass(frozen=True)
class TranscriptionResult:
    """Terminal artifact of one transcription request.

    ``text`` is the space-joined text of ``segments``. Results are never
    mutated; a new transcription produces a new result.
    """
    id: str
    text: str
    language: str
    segments: Tuple[TranscriptionSegment, ...]
    timestamp: datetime
    duration: float  # seconds of source audio

    @property
    def formatted_duration(self) -> str:
        total = int(self.duration)
        return f"{total // 60}:{total % 60:02d}"

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the stored record layout."""
        return {
            "id": self.id,
            "text": self.text,
            "language": self.language,
            "segments": [segment.to_dict() for segment in self.segments],
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionResult":
        """Rebuild a result from its stored record.

        Raises:
            KeyError, TypeError, ValueError: if the record is malformed
        """
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            language=str(data["language"]),
            segments=tuple(TranscriptionSegment.from_dict(s) for s in data["segments"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            duration=float(data["duration"]),
        )


@dataclass
class BackendSegment:
    """Segment as reported by a backend, timed relative to the audio it was given."""
    text: str
    start: Optional[float] = None
    end: Optional[float] = None


@dataclass
class BackendTranscript:
    """Raw output of one backend transcription call."""
    text: str
    language: Optional[str] = None
    segments: List[BackendSegment] = field(default_factory=list)


@dataclass
class ProgressEvent:
    """Progress of the current orchestrator operation."""
    phase: str
    value: float  # 0..1, non-decreasing within one operation
    chunk_index: Optional[int] = None
    chunk_count: Optional[int] = None
