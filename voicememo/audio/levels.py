"""Amplitude metering for the recording waveform."""

import threading
from collections import deque
from typing import List

import numpy as np

MIN_DB = -60.0
MAX_DB = 0.0
SILENCE_DB = -160.0


def normalize_level(db: float) -> float:
    """Map a decibel value linearly from [MIN_DB, MAX_DB] onto [0, 1], clamped."""
    level = (db - MIN_DB) / (MAX_DB - MIN_DB)
    return max(0.0, min(1.0, level))


def rms_dbfs(audio_data: bytes) -> float:
    """Average power of 16-bit PCM audio in dBFS (SILENCE_DB for silence/empty input)."""
    if not audio_data:
        return SILENCE_DB
    samples = np.frombuffer(audio_data, dtype=np.int16).astype(np.float64) / 32768.0
    if samples.size == 0:
        return SILENCE_DB
    rms = float(np.sqrt(np.mean(np.square(samples))))
    if rms <= 0.0:
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * float(np.log10(rms)))


class LevelMeter:
    """Rolling buffer of normalized levels; oldest samples are evicted on overflow."""

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._levels = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.current_level = 0.0

    def push_db(self, db: float) -> float:
        """Normalize ``db``, record it and return the normalized level."""
        level = normalize_level(db)
        with self._lock:
            self._levels.append(level)
            self.current_level = level
        return level

    def snapshot(self) -> List[float]:
        with self._lock:
            return list(self._levels)

    def reset(self) -> None:
        with self._lock:
            self._levels.clear()
            self.current_level = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._levels)
