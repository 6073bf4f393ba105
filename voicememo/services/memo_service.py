"""Memo service: record, transcribe, store and browse voice memos."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..audio.chunker import AudioChunker, cleanup_stale_chunk_dirs, probe_duration
from ..cancellation import CancellationToken
from ..config import VoiceMemoConfig
from ..errors import PersistenceFailure, VoiceMemoError, user_message_for
from ..models.audio import AudioSource
from ..models.session import CaptureState, RecordingSession
from ..models.transcription import TranscriptionResult
from ..storage.file_manager import TranscriptionStore
from ..transcription.orchestrator import TranscriptionOrchestrator
from ..transcription.publisher import ProgressPublisher

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionOutcome:
    """What a front-end needs after a transcription request.

    ``result`` is kept even when saving failed; ``error_message`` is a single
    user-facing sentence.
    """
    result: Optional[TranscriptionResult] = None
    saved: bool = False
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result is not None


class MemoService:
    """High-level API used by the console front-end.

    Collaborators are created from the configuration unless passed in, so
    tests can swap in fakes for the microphone and the speech backend.
    """

    def __init__(
        self,
        config: VoiceMemoConfig,
        store: Optional[TranscriptionStore] = None,
        orchestrator: Optional[TranscriptionOrchestrator] = None,
        capture=None,
        cleanup_on_start: bool = True,
    ):
        """Initialize memo service.

        Args:
            config: Application configuration
            store: Transcription store (under the configured data directory if None)
            orchestrator: Orchestrator (faster-whisper backed if None, created on first use)
            capture: AudioCapture-like object (microphone capture if None, created on first use)
            cleanup_on_start: Sweep chunk directories leaked by earlier runs
        """
        self.config = config
        self.store = store or TranscriptionStore(config.get_data_directory())
        self._orchestrator = orchestrator
        self._capture = capture

        if cleanup_on_start:
            chunk_root = orchestrator.chunker.temp_root if orchestrator is not None else None
            cleanup_stale_chunk_dirs(chunk_root)

        logger.info("MemoService initialized")

    def _default_orchestrator(self) -> TranscriptionOrchestrator:
        from ..transcription.whisper_backend import FasterWhisperBackend

        backend = FasterWhisperBackend(
            device=self.config.get('transcription.device', 'cpu'),
            compute_type=self.config.get('transcription.compute_type', 'int8'),
            download_root=self.config.get('transcription.download_root'),
        )
        chunker = AudioChunker(sample_rate=self.config.get('audio.sample_rate', 16000))
        return TranscriptionOrchestrator(
            backend,
            chunker=chunker,
            progress_callback=ProgressPublisher().get_callback(),
        )

    @property
    def orchestrator(self) -> TranscriptionOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = self._default_orchestrator()
        return self._orchestrator

    @property
    def capture(self):
        if self._capture is None:
            from ..audio.audio_pub import LevelPublisher
            from ..audio.capture import AudioCapture

            self._capture = AudioCapture(
                recordings_dir=self.store.recordings_dir,
                level_callback=LevelPublisher().publish_level,
                sample_rate=self.config.get('audio.sample_rate', 16000),
                chunk_size=self.config.get('audio.chunk_size', 1024),
                channels=self.config.get('audio.channels', 1),
                level_interval=self.config.get('audio.level_interval_seconds', 0.05),
                clock_interval=self.config.get('audio.clock_interval_seconds', 0.1),
                level_history=self.config.get('audio.level_history', 100),
            )
        return self._capture

    # Recording

    def start_recording(self) -> Path:
        """Start a new recording.

        Raises:
            PermissionDenied: if microphone access is unavailable
            RecordingFailed: if the input stream cannot be opened
        """
        return self.capture.start_recording()

    def pause_recording(self) -> None:
        self.capture.pause_recording()

    def resume_recording(self) -> None:
        self.capture.resume_recording()

    def get_session(self) -> RecordingSession:
        return self.capture.get_session()

    def stop_and_transcribe(self, cancel_token: Optional[CancellationToken] = None) -> TranscriptionOutcome:
        """Stop the current recording and transcribe it.

        The recording file is deleted once it has been transcribed successfully.
        """
        try:
            source = self.capture.stop_recording()
        except VoiceMemoError as e:
            logger.error(f"Error stopping recording: {e}")
            return TranscriptionOutcome(error_message=user_message_for(e))

        if source is None:
            return TranscriptionOutcome(error_message="No recording in progress.")

        outcome = self._transcribe(source, cancel_token)
        if outcome.success:
            self._discard_recording(source.path)
        return outcome

    def discard_recording(self) -> None:
        """Stop the current recording (if any) and delete it without transcribing."""
        if self._capture is None or self._capture.state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            return
        try:
            source = self._capture.stop_recording()
        except VoiceMemoError as e:
            logger.warning(f"Recording failed while discarding: {e}")
            return
        if source is not None:
            self._discard_recording(source.path)

    # Transcription

    def load_model(self, model_id: Optional[str] = None) -> None:
        """Load the configured (or given) model ahead of the first transcription.

        Raises:
            BackendFailure: if the model cannot be loaded
        """
        self.orchestrator.load_model(model_id or self.config.get_model_id())

    def transcribe_file(
        self,
        path: Union[str, Path],
        cancel_token: Optional[CancellationToken] = None,
    ) -> TranscriptionOutcome:
        """Transcribe an existing audio file. The file itself is never deleted."""
        path = Path(path)
        try:
            duration = probe_duration(path)
        except VoiceMemoError as e:
            logger.error(f"Cannot read {path}: {e}")
            return TranscriptionOutcome(error_message=user_message_for(e))

        source = AudioSource(path=path, duration=duration, format=path.suffix.lstrip('.').lower() or "unknown")
        return self._transcribe(source, cancel_token)

    def _transcribe(self, source: AudioSource, cancel_token: Optional[CancellationToken]) -> TranscriptionOutcome:
        try:
            result = self.orchestrator.transcribe(
                source,
                model_id=self.config.get_model_id(),
                language=self.config.language_hint(),
                cancel_token=cancel_token,
            )
        except VoiceMemoError as e:
            logger.error(f"Transcription of {source.path} failed: {e}")
            return TranscriptionOutcome(error_message=user_message_for(e))

        if not self.config.save_transcriptions():
            return TranscriptionOutcome(result=result)

        try:
            self.store.save(result)
        except PersistenceFailure as e:
            logger.error(f"Transcription {result.id} could not be saved: {e}")
            return TranscriptionOutcome(result=result, saved=False, error_message=user_message_for(e))
        return TranscriptionOutcome(result=result, saved=True)

    def _discard_recording(self, path: Path) -> None:
        try:
            path.unlink()
            logger.debug(f"Deleted recording {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete recording {path}: {e}")

    # History

    def history(self, query: Optional[str] = None) -> List[TranscriptionResult]:
        """Stored transcriptions, newest first, optionally filtered by text."""
        return self.store.search(query)

    def get_transcription(self, result_id: str) -> TranscriptionResult:
        """Raises PersistenceFailure if the transcription is missing or unreadable."""
        return self.store.load(result_id)

    def delete_transcription(self, result_id: str) -> bool:
        return self.store.delete(result_id)

    def resolve_id(self, id_or_prefix: str) -> Optional[str]:
        """Full id for an exact id or a unique id prefix (as shown in the history table)."""
        matches = [r.id for r in self.store.list_results() if r.id.startswith(id_or_prefix)]
        if id_or_prefix in matches:
            return id_or_prefix
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.warning(f"Id prefix {id_or_prefix!r} is ambiguous ({len(matches)} matches)")
        return None

    def shutdown(self) -> None:
        """Discard any unfinished recording and release the model."""
        self.discard_recording()
        if self._orchestrator is not None:
            self._orchestrator.shutdown()
        logger.info("MemoService shut down")
