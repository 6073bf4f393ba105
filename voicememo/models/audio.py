"""Audio-related data models."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AudioSource:
    """A finished recording (or any decodable audio file) on disk."""
    path: Path
    duration: float  # seconds
    sample_rate: int = 16000
    channels: int = 1
    format: str = "wav"


@dataclass(frozen=True)
class AudioChunk:
    """A time-bounded view of an AudioSource.

    ``start``/``end`` are offsets on the source timeline. ``owned`` is True when
    the chunker created ``path`` and is responsible for deleting it.
    """
    index: int
    start: float
    end: float
    path: Path
    owned: bool = True

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"chunk {self.index}: end ({self.end}) before start ({self.start})")

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class LevelEvent:
    """Normalized amplitude sample published while recording."""
    level: float  # 0..1
    decibels: float
    elapsed_seconds: float
