"""Transcription orchestrator: model lifecycle, chunked transcription and merging."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional

from ..audio.chunker import AudioChunker, ChunkSet
from ..cancellation import CancellationToken
from ..errors import BackendFailure, ModelNotLoaded, VoiceMemoError
from ..models.audio import AudioChunk, AudioSource
from ..models.transcription import BackendTranscript, ProgressEvent, TranscriptionResult
from .base import AbstractTranscriptionBackend, DecodingPolicy
from .merger import ChunkTranscript, merge_chunk_transcripts

logger = logging.getLogger(__name__)

# share of a transcription request spent decoding chunks; merging takes the rest
_TRANSCRIBE_SHARE = 0.95


class OrchestratorState(Enum):
    IDLE = "idle"
    MODEL_LOADING = "model_loading"
    MODEL_READY = "model_ready"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


class _ProgressTracker:
    """Clamps progress to be non-decreasing within one operation."""

    def __init__(self, callback: Optional[Callable[[ProgressEvent], None]]):
        self.callback = callback
        self.value = 0.0
        self.lock = threading.Lock()

    def reset(self, phase: str) -> None:
        with self.lock:
            self.value = 0.0
        self._emit(ProgressEvent(phase=phase, value=0.0))

    def report(self, phase: str, value: float, chunk_index: Optional[int] = None,
               chunk_count: Optional[int] = None) -> None:
        with self.lock:
            self.value = max(self.value, min(max(value, 0.0), 1.0))
            value = self.value
        self._emit(ProgressEvent(phase=phase, value=value, chunk_index=chunk_index, chunk_count=chunk_count))

    def _emit(self, event: ProgressEvent) -> None:
        if self.callback is None:
            return
        try:
            self.callback(event)
        except Exception as e:
            logger.error(f"Error in progress callback: {e}")


class TranscriptionOrchestrator:
    """Owns one backend and turns AudioSources into TranscriptionResults.

    Loads and transcriptions are serialised by a re-entrant lock, so at most
    one operation touches the backend at a time. ``submit`` runs requests on a
    single worker thread and hands back a Future.
    """

    def __init__(
        self,
        backend: AbstractTranscriptionBackend,
        chunker: Optional[AudioChunker] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        policy: Optional[DecodingPolicy] = None,
        max_parallel_chunks: int = 1,
    ):
        """Initialize orchestrator.

        Args:
            backend: Transcription backend; owned by the orchestrator from now on
            chunker: Chunker for long sources (default thresholds if None)
            progress_callback: Receives ProgressEvents, e.g. ProgressPublisher.publish_progress
            policy: Decoding options passed to every backend call
            max_parallel_chunks: Chunks decoded at once; only honoured for re-entrant backends
        """
        self.backend = backend
        self.chunker = chunker or AudioChunker()
        self.policy = policy or DecodingPolicy()
        self.max_parallel_chunks = max(1, max_parallel_chunks)
        self.state = OrchestratorState.IDLE
        self.lock = threading.RLock()
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="voicememo-transcribe")
        self._progress = _ProgressTracker(progress_callback)
        self._is_shutdown = False

    @property
    def current_model(self) -> Optional[str]:
        return self.backend.loaded_model

    def load_model(self, model_id: str) -> None:
        """Load (or replace) the backend model.

        Raises:
            BackendFailure: if the model cannot be loaded
        """
        with self.lock:
            self._check_open()
            self._progress.reset("loading")
            self._set_state(OrchestratorState.MODEL_LOADING)
            try:
                self.backend.load(model_id, progress_callback=lambda value: self._progress.report("loading", value))
            except VoiceMemoError:
                self._set_state(OrchestratorState.FAILED)
                raise
            except Exception as e:
                self._set_state(OrchestratorState.FAILED)
                raise BackendFailure(f"Failed to load model {model_id}: {e}") from e
            self._progress.report("loading", 1.0)
            self._set_state(OrchestratorState.MODEL_READY)

    def transcribe(
        self,
        source: AudioSource,
        model_id: Optional[str] = None,
        language: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TranscriptionResult:
        """Transcribe a recording end to end.

        Args:
            source: Recording to transcribe
            model_id: Model to use; loaded first if it differs from the current one
            language: Language hint, passed through to the backend unchanged
            cancel_token: Checked before each chunk

        Returns:
            Merged TranscriptionResult on the source timeline

        Raises:
            ModelNotLoaded: if no model is given and none is loaded
            ExtractionFailed: if the source cannot be chunked
            BackendFailure: for backend errors
            TranscriptionCancelled: if cancelled between chunks
        """
        with self.lock:
            self._check_open()
            self._set_state(OrchestratorState.IDLE)
            if model_id is not None and model_id != self.current_model:
                self.load_model(model_id)
            if not self.backend.is_loaded:
                self._set_state(OrchestratorState.FAILED)
                raise ModelNotLoaded("transcribe called with no model loaded")
            self._set_state(OrchestratorState.MODEL_READY)

            start_time = time.time()
            self._progress.reset("transcribing")
            try:
                result = self._run(source, language, cancel_token)
            except BaseException:
                self._set_state(OrchestratorState.FAILED)
                raise

            self._progress.report("done", 1.0)
            self._set_state(OrchestratorState.DONE)
            logger.info(f"Transcribed {source.path} ({source.duration:.1f}s) in "
                        f"{time.time() - start_time:.1f}s: {len(result.segments)} segments, "
                        f"language={result.language}")
            return result

    def submit(
        self,
        source: AudioSource,
        model_id: Optional[str] = None,
        language: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> "Future[TranscriptionResult]":
        """Run ``transcribe`` on the worker thread."""
        self._check_open()
        return self.executor.submit(self.transcribe, source, model_id, language, cancel_token)

    def shutdown(self) -> None:
        """Stop the worker and release the backend."""
        if self._is_shutdown:
            return
        self.executor.shutdown(wait=True)
        self._is_shutdown = True
        with self.lock:
            try:
                self.backend.cleanup()
            except Exception as e:
                logger.error(f"Error cleaning up {self.backend.__class__.__name__}: {e}")
        logger.info("TranscriptionOrchestrator shut down")

    def __enter__(self) -> "TranscriptionOrchestrator":
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.shutdown()

    def _run(
        self,
        source: AudioSource,
        language: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> TranscriptionResult:
        self._set_state(OrchestratorState.CHUNKING)
        chunk_set = self.chunker.chunk(source, duration=source.duration, cancel_token=cancel_token)
        try:
            self._set_state(OrchestratorState.TRANSCRIBING)
            if self._parallel_workers(chunk_set) > 1:
                pieces = self._transcribe_parallel(chunk_set, language, cancel_token)
            else:
                pieces = self._transcribe_sequential(chunk_set, language, cancel_token)

            self._set_state(OrchestratorState.MERGING)
            self._progress.report("merging", _TRANSCRIBE_SHARE)
            return merge_chunk_transcripts(pieces, duration=source.duration, language=language)
        finally:
            chunk_set.release()

    def _parallel_workers(self, chunk_set: ChunkSet) -> int:
        if not self.backend.reentrant:
            return 1
        return min(self.max_parallel_chunks, len(chunk_set))

    def _transcribe_sequential(
        self,
        chunk_set: ChunkSet,
        language: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> List[ChunkTranscript]:
        pieces = []
        previous_text = ""
        for done, chunk in enumerate(chunk_set, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            prompt = self._prompt_from(previous_text)
            transcript = self._transcribe_chunk(chunk, language, prompt)
            pieces.append(ChunkTranscript(chunk=chunk, transcript=transcript))
            previous_text = transcript.text
            self._report_chunk(chunk, done, len(chunk_set))
        return pieces

    def _transcribe_parallel(
        self,
        chunk_set: ChunkSet,
        language: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> List[ChunkTranscript]:
        # no prefill cache here: chunks do not see each other's text
        workers = self._parallel_workers(chunk_set)
        completed = [0]
        completed_lock = threading.Lock()
        logger.debug(f"Transcribing {len(chunk_set)} chunks with {workers} workers")

        def work(chunk: AudioChunk) -> ChunkTranscript:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            transcript = self._transcribe_chunk(chunk, language, None)
            with completed_lock:
                completed[0] += 1
                done = completed[0]
            self._report_chunk(chunk, done, len(chunk_set))
            return ChunkTranscript(chunk=chunk, transcript=transcript)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="voicememo-chunk") as pool:
            futures = [pool.submit(work, chunk) for chunk in chunk_set]
            try:
                return [future.result() for future in futures]
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    def _transcribe_chunk(self, chunk: AudioChunk, language: Optional[str], prompt: Optional[str]) -> BackendTranscript:
        logger.debug(f"Transcribing chunk {chunk.index} [{chunk.start:.1f}, {chunk.end:.1f})")
        try:
            return self.backend.transcribe(chunk.path, language, self.policy, initial_prompt=prompt)
        except VoiceMemoError:
            raise
        except Exception as e:
            raise BackendFailure(f"Backend failed on chunk {chunk.index}: {e}") from e

    def _prompt_from(self, previous_text: str) -> Optional[str]:
        if not (self.policy.use_prefill_prompt and self.policy.use_prefill_cache):
            return None
        words = previous_text.split()
        if not words:
            return None
        return " ".join(words[-self.policy.prompt_tail_words:])

    def _report_chunk(self, chunk: AudioChunk, done: int, chunk_count: int) -> None:
        self._progress.report("transcribing", _TRANSCRIBE_SHARE * done / chunk_count,
                              chunk_index=chunk.index, chunk_count=chunk_count)

    def _set_state(self, state: OrchestratorState) -> None:
        if state != self.state:
            logger.debug(f"Orchestrator state: {self.state.value} -> {state.value}")
        self.state = state

    def _check_open(self) -> None:
        if self._is_shutdown:
            raise RuntimeError("TranscriptionOrchestrator has been shut down")
