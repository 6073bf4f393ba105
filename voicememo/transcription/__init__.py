"""Transcription module for VoiceMemo.

``FasterWhisperBackend`` lives in ``voicememo.transcription.whisper_backend`` and
is imported from there, so chunking and merging work without loading CTranslate2.
"""

from .base import AbstractTranscriptionBackend, DecodingPolicy
from .catalog import MODEL_OPTIONS, ModelOption, find_model_option
from .merger import ChunkTranscript, merge_chunk_transcripts
from .orchestrator import OrchestratorState, TranscriptionOrchestrator
from .publisher import PROGRESS_TOPIC, ProgressPublisher

__all__ = [
    "AbstractTranscriptionBackend",
    "DecodingPolicy",
    "MODEL_OPTIONS",
    "ModelOption",
    "find_model_option",
    "ChunkTranscript",
    "merge_chunk_transcripts",
    "OrchestratorState",
    "TranscriptionOrchestrator",
    "PROGRESS_TOPIC",
    "ProgressPublisher",
]
