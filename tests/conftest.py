"""Pytest configuration and fixtures for VoiceMemo tests."""

import pytest
import tempfile
import logging
import threading
import wave
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import Mock, patch

import numpy as np

from voicememo.models.transcription import BackendSegment, BackendTranscript
from voicememo.transcription.base import AbstractTranscriptionBackend, DecodingPolicy


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or models")
    config.addinivalue_line("markers", "integration: tests wiring several components together")
    config.addinivalue_line("markers", "hardware: tests that need a real microphone")


def write_wav(path, duration_seconds: float, sample_rate: int = 16000, pattern: str = "sine") -> Path:
    """Write a mono 16-bit WAV file and return its path."""
    samples = int(round(duration_seconds * sample_rate))
    if pattern == "sine":
        t = np.arange(samples) / sample_rate
        wave_data = 0.5 * np.sin(2 * np.pi * 440 * t)
    elif pattern == "silence":
        wave_data = np.zeros(samples)
    else:
        raise ValueError(f"Unknown pattern: {pattern}")

    path = Path(path)
    with wave.open(str(path), 'wb') as wf:
        wf.setnchannels(1)  # Mono
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes((wave_data * 32767).astype(np.int16).tobytes())
    return path


class FakeBackend(AbstractTranscriptionBackend):
    """In-memory backend recording every call.

    ``responder(audio_path, language, policy, initial_prompt)`` produces the
    transcript; by default it returns one segment naming the file.
    """

    def __init__(self, responder: Optional[Callable[..., BackendTranscript]] = None,
                 known_models=("kb_whisper-base", "openai_whisper-base"), reentrant: bool = False):
        super().__init__()
        self.responder = responder or self._default_response
        self.known_models = set(known_models)
        self.reentrant = reentrant
        self.load_calls: List[str] = []
        self.transcribe_calls: List[dict] = []
        self.cleaned_up = False
        self._lock = threading.Lock()

    @staticmethod
    def _default_response(audio_path, language, policy, initial_prompt):
        return BackendTranscript(
            text=f"speech in {Path(audio_path).stem}",
            language=language or "sv",
            segments=[BackendSegment(text=f"speech in {Path(audio_path).stem}", start=0.0, end=1.0)],
        )

    def load(self, model_id, progress_callback=None):
        from voicememo.errors import BackendFailure

        self.load_calls.append(model_id)
        if model_id not in self.known_models:
            raise BackendFailure(f"Unknown model id: {model_id}")
        if progress_callback:
            progress_callback(0.0)
            progress_callback(0.5)
            progress_callback(1.0)
        self.loaded_model = model_id

    def transcribe(self, audio_path, language, policy: DecodingPolicy, initial_prompt=None):
        with self._lock:
            self.transcribe_calls.append({
                "audio_path": Path(audio_path),
                "exists": Path(audio_path).exists(),
                "language": language,
                "policy": policy,
                "initial_prompt": initial_prompt,
            })
        return self.responder(audio_path, language, policy, initial_prompt)

    def cleanup(self):
        self.cleaned_up = True
        self.loaded_model = None


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def wav_factory(temp_data_dir):
    """Create WAV files inside the temporary data directory."""
    def make(name: str = "memo.wav", duration_seconds: float = 1.0, **kwargs) -> Path:
        return write_wav(Path(temp_data_dir) / name, duration_seconds, **kwargs)
    return make


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # Generate 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate  # ~0.064 seconds
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    # Convert to 16-bit integers
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 2048  # Silent audio
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_sample_size.return_value = 2
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            'name': 'Mock Microphone',
            'maxInputChannels': 1,
        }

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def permission_cache():
    """Reset the process-wide microphone permission cache around a test."""
    from voicememo.audio.permission import MicrophonePermission

    MicrophonePermission.reset_cache()
    yield MicrophonePermission
    MicrophonePermission.reset_cache()


@pytest.fixture
def config_file(temp_data_dir):
    """Write a YAML config pointing all paths into the temporary directory."""
    def make(extra: str = "") -> str:
        path = Path(temp_data_dir) / "voicememo.yaml"
        path.write_text(
            "storage:\n"
            "  data_directory: data\n"
            "  save_transcriptions: true\n"
            "logging:\n"
            "  file_path: data/logs/voicememo.log\n"
            "  console_output: false\n"
            + extra
        )
        return str(path)
    return make
