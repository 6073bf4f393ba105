"""Microphone capture with live level metering and a finished WAV artifact."""

import logging
import threading
import wave
from datetime import datetime
from pathlib import Path
from threading import Thread, Event
from typing import Callable, Optional

import pyaudio

from ..errors import PermissionDenied, RecordingFailed
from ..models.audio import AudioSource, LevelEvent
from ..models.session import CaptureState, RecordingSession
from .levels import LevelMeter, SILENCE_DB, rms_dbfs
from .permission import MicrophonePermission
from .timer import RepeatingTimer

logger = logging.getLogger(__name__)


class AudioCapture:
    """Records the default microphone to a WAV file and meters its level."""

    def __init__(
        self,
        recordings_dir: Path,
        permission: Optional[MicrophonePermission] = None,
        level_callback: Optional[Callable[[LevelEvent], None]] = None,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        format: int = pyaudio.paInt16,
        level_interval: float = 0.05,
        clock_interval: float = 0.1,
        level_history: int = 100,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            recordings_dir: Directory that receives recording_*.wav files
            permission: Microphone permission collaborator
            level_callback: Receives a LevelEvent on every level sample
            sample_rate: Audio sample rate (16kHz for Whisper compatibility)
            chunk_size: Size of each audio read in samples
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
            level_interval: Seconds between level samples
            clock_interval: Seconds between elapsed-time ticks
            level_history: Capacity of the rolling level buffer
        """
        self.recordings_dir = Path(recordings_dir)
        self.permission = permission or MicrophonePermission()
        self.level_callback = level_callback
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.format = format
        self.clock_interval = clock_interval

        self.state = CaptureState.UNINITIALIZED
        self.meter = LevelMeter(level_history)
        self.elapsed_seconds = 0.0

        # Recording thread management; each recording gets its own stop event
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.join_timeout = 2.0
        self.active_event = Event()
        self.capture_error: Optional[BaseException] = None

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.wave_file: Optional[wave.Wave_write] = None
        self.current_path: Optional[Path] = None
        self.frames_written = 0
        self._last_db = SILENCE_DB
        self._lock = threading.Lock()

        self._level_timer = RepeatingTimer(level_interval, self._sample_level, name="LevelSampler")
        self._clock_timer = RepeatingTimer(clock_interval, self._tick_clock, name="RecordingClock")

    @property
    def is_recording(self) -> bool:
        return self.state == CaptureState.RECORDING

    def request_permission(self) -> bool:
        """Run the (cached) permission check and move to READY or PERMISSION_DENIED."""
        if self.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            return True
        self.state = CaptureState.PERMISSION_PENDING
        allowed = self.permission.request()
        self.state = CaptureState.READY if allowed else CaptureState.PERMISSION_DENIED
        return allowed

    def start_recording(self) -> Path:
        """Start recording to a new WAV file.

        Returns:
            Path of the file being written

        Raises:
            PermissionDenied: if microphone permission was not granted
            RecordingFailed: if the input stream cannot be opened
        """
        if self.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            logger.warning("Recording already in progress")
            return self.current_path

        if self.permission.granted is None:
            self.request_permission()
        if not self.permission.granted:
            self.state = CaptureState.PERMISSION_DENIED
            raise PermissionDenied("microphone permission not granted")

        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self.recordings_dir / f"recording_{timestamp}.wav"

        stream = self._open(path)

        self.current_path = path
        self.frames_written = 0
        self.elapsed_seconds = 0.0
        self.capture_error = None
        self._last_db = SILENCE_DB
        self.meter.reset()

        logger.info(f"Starting audio recording: {path}")
        self.stop_event = Event()
        self.active_event.set()
        self.state = CaptureState.RECORDING
        self._start_samplers()

        self.recording_thread = Thread(
            target=self._record_continuously,
            args=(stream, self.pyaudio_instance, self.wave_file, self.stop_event),
            daemon=True,
        )
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()
        return path

    def pause_recording(self) -> None:
        if self.state != CaptureState.RECORDING:
            logger.warning("Cannot pause: not recording")
            return
        self.active_event.clear()
        self._stop_samplers()
        self.state = CaptureState.PAUSED
        logger.info("Recording paused")

    def resume_recording(self) -> None:
        if self.state != CaptureState.PAUSED:
            logger.warning("Cannot resume: not paused")
            return
        if self.capture_error is not None:
            logger.warning("Cannot resume: audio stream failed")
            return
        self.active_event.set()
        self.state = CaptureState.RECORDING
        self._start_samplers()
        logger.info("Recording resumed")

    def stop_recording(self) -> Optional[AudioSource]:
        """Stop recording and finalize the WAV file.

        If the input stream broke part way through, the audio captured up to
        that point is kept and returned.

        Returns:
            The finished recording, or None if nothing was being recorded

        Raises:
            RecordingFailed: if the input stream broke before any audio was written
        """
        if self.state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            logger.warning("No recording in progress")
            return None

        logger.info("Stopping audio recording")
        self._stop_samplers()
        self.stop_event.set()

        # Wait for recording thread to finish
        thread = self.recording_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                # It releases its own stream once the blocked read returns
                logger.warning("Recording thread did not stop cleanly")

        self._close_wave_file()
        self.pyaudio_instance = None
        self.state = CaptureState.STOPPED
        self.meter.current_level = 0.0

        path = self.current_path
        if self.capture_error is not None:
            if self.frames_written == 0:
                path.unlink(missing_ok=True)
                raise RecordingFailed(f"audio stream failed: {self.capture_error}") from self.capture_error
            logger.warning(f"Audio stream failed after {self.frames_written} frames, "
                           f"keeping the partial recording: {self.capture_error}")

        duration = self.frames_written / float(self.sample_rate)
        logger.info(f"Recording stopped: {path} ({duration:.1f}s, {self.frames_written} frames)")
        return AudioSource(
            path=path,
            duration=duration,
            sample_rate=self.sample_rate,
            channels=self.channels,
            format="wav",
        )

    def get_session(self) -> RecordingSession:
        """Snapshot of the current capture state."""
        return RecordingSession(
            state=self.state,
            elapsed_seconds=self.elapsed_seconds,
            current_level=self.meter.current_level,
            levels=self.meter.snapshot(),
            audio_path=self.current_path,
            frames_written=self.frames_written,
            error=str(self.capture_error) if self.capture_error is not None else None,
        )

    def _open(self, path: Path) -> "pyaudio.Stream":
        stream = None
        try:
            self.pyaudio_instance = pyaudio.PyAudio()
            stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.chunk_size,
                stream_callback=None
            )
            self.wave_file = wave.open(str(path), 'wb')
            self.wave_file.setnchannels(self.channels)
            self.wave_file.setsampwidth(self.pyaudio_instance.get_sample_size(self.format))
            self.wave_file.setframerate(self.sample_rate)
        except (IOError, OSError) as e:
            if stream is not None:
                stream.close()
            self._close()
            path.unlink(missing_ok=True)
            raise RecordingFailed(f"could not open input stream: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/read")
        return stream

    def _close(self) -> None:
        self._close_wave_file()
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def _close_wave_file(self) -> None:
        with self._lock:
            if self.wave_file is not None:
                self.wave_file.close()
                self.wave_file = None

    def _record_continuously(
        self,
        stream: "pyaudio.Stream",
        pyaudio_instance: pyaudio.PyAudio,
        wave_file: wave.Wave_write,
        stop_event: Event,
    ) -> None:
        """Internal method: capture loop in background thread.

        The thread owns ``stream`` and ``pyaudio_instance`` and releases both
        on exit, even if ``stop_recording`` gave up waiting for it.
        """
        streaming = True
        try:
            while not stop_event.is_set():
                if not self.active_event.is_set():
                    if streaming:
                        stream.stop_stream()
                        streaming = False
                    self.active_event.wait(timeout=0.1)
                    continue
                if not streaming:
                    stream.start_stream()
                    streaming = True
                audio_chunk = stream.read(self.chunk_size, exception_on_overflow=False)
                if not self._write_frames(wave_file, audio_chunk):
                    break
        except (IOError, OSError) as e:
            if stop_event.is_set():
                logger.warning(f"Audio stream error after stop: {e}")
            else:
                logger.error(f"Audio stream error: {e}", exc_info=True)
                self.capture_error = e
                self._stop_samplers()
        finally:
            self._release_stream(stream, pyaudio_instance, streaming)

    def _release_stream(self, stream: "pyaudio.Stream", pyaudio_instance: pyaudio.PyAudio, streaming: bool) -> None:
        try:
            if streaming:
                stream.stop_stream()
            stream.close()
        except (IOError, OSError) as e:
            logger.warning(f"Error closing audio stream: {e}")
        pyaudio_instance.terminate()

    def _write_frames(self, wave_file: wave.Wave_write, audio_chunk: bytes) -> bool:
        """Append to ``wave_file`` unless it has already been finalized."""
        with self._lock:
            if wave_file is not self.wave_file:
                return False
            wave_file.writeframes(audio_chunk)
            self.frames_written += len(audio_chunk) // (2 * self.channels)
            self._last_db = rms_dbfs(audio_chunk)
            return True

    def _start_samplers(self) -> None:
        self._level_timer.start()
        self._clock_timer.start()

    def _stop_samplers(self) -> None:
        self._level_timer.cancel()
        self._clock_timer.cancel()

    def _sample_level(self) -> None:
        db = self._last_db
        level = self.meter.push_db(db)
        if self.level_callback:
            self.level_callback(LevelEvent(level=level, decibels=db, elapsed_seconds=self.elapsed_seconds))

    def _tick_clock(self) -> None:
        self.elapsed_seconds += self.clock_interval
