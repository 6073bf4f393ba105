"""Services layer for VoiceMemo application logic."""

from .memo_service import MemoService, TranscriptionOutcome

__all__ = [
    "MemoService",
    "TranscriptionOutcome",
]
