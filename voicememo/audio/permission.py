"""Microphone permission check."""

import logging
import threading
from typing import Callable, Optional

import pyaudio

logger = logging.getLogger(__name__)


def probe_default_input_device() -> bool:
    """Return True if PyAudio can see a default input device."""
    instance = pyaudio.PyAudio()
    try:
        info = instance.get_default_input_device_info()
        logger.info(f"Default input device: {info.get('name')}")
        return int(info.get('maxInputChannels', 0)) > 0
    except (IOError, OSError) as e:
        logger.warning(f"No input device available: {e}")
        return False
    finally:
        instance.terminate()


class MicrophonePermission:
    """One-shot capability check, cached for the lifetime of the process."""

    _lock = threading.Lock()
    _cached: Optional[bool] = None

    def __init__(self, probe: Callable[[], bool] = probe_default_input_device):
        self.probe = probe

    @property
    def granted(self) -> Optional[bool]:
        """Cached answer, or None if the check has not run yet."""
        return MicrophonePermission._cached

    def request(self) -> bool:
        with MicrophonePermission._lock:
            if MicrophonePermission._cached is None:
                allowed = bool(self.probe())
                MicrophonePermission._cached = allowed
                if not allowed:
                    logger.warning("Recording permission denied")
            return MicrophonePermission._cached

    @classmethod
    def reset_cache(cls) -> None:
        with cls._lock:
            cls._cached = None
