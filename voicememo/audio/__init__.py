"""Audio chunking and metering.

Microphone access lives in ``voicememo.audio.capture`` and
``voicememo.audio.permission``; import those directly (they need PortAudio).
"""

from .chunker import (
    AudioChunker,
    ChunkSet,
    ChunkingPolicy,
    cleanup_stale_chunk_dirs,
    plan_chunk_spans,
    probe_duration,
)
from .levels import LevelMeter, normalize_level, rms_dbfs

__all__ = [
    'AudioChunker',
    'ChunkSet',
    'ChunkingPolicy',
    'cleanup_stale_chunk_dirs',
    'plan_chunk_spans',
    'probe_duration',
    'LevelMeter',
    'normalize_level',
    'rms_dbfs',
]
