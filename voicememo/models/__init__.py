"""Data models for the VoiceMemo application."""

from .audio import AudioSource, AudioChunk, LevelEvent
from .session import CaptureState, RecordingSession
from .transcription import (
    TranscriptionSegment,
    TranscriptionResult,
    BackendSegment,
    BackendTranscript,
    ProgressEvent,
)

__all__ = [
    "AudioSource",
    "AudioChunk",
    "LevelEvent",
    "CaptureState",
    "RecordingSession",
    "TranscriptionSegment",
    "TranscriptionResult",
    "BackendSegment",
    "BackendTranscript",
    "ProgressEvent",
]
