"""Recording session state models."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class CaptureState(Enum):
    """Lifecycle of the capture pipeline."""
    UNINITIALIZED = "uninitialized"
    PERMISSION_PENDING = "permission_pending"
    PERMISSION_DENIED = "permission_denied"
    READY = "ready"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class RecordingSession:
    """Snapshot of an in-progress (or just finished) capture."""
    state: CaptureState
    elapsed_seconds: float = 0.0
    current_level: float = 0.0
    levels: List[float] = field(default_factory=list)
    audio_path: Optional[Path] = None
    frames_written: int = 0
    error: Optional[str] = None

    @property
    def is_recording(self) -> bool:
        return self.state == CaptureState.RECORDING
