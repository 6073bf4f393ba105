"""Storage for VoiceMemo transcriptions."""

from .file_manager import TranscriptionStore

__all__ = ["TranscriptionStore"]
