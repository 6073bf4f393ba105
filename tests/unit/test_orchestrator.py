"""Unit tests for TranscriptionOrchestrator."""

import pytest
import threading
import time
from pathlib import Path
from unittest.mock import Mock

from conftest import FakeBackend
from voicememo.audio.chunker import AudioChunker, ChunkingPolicy
from voicememo.cancellation import CancellationToken
from voicememo.errors import BackendFailure, ExtractionFailed, ModelNotLoaded, TranscriptionCancelled
from voicememo.models.audio import AudioSource
from voicememo.models.transcription import BackendSegment, BackendTranscript
from voicememo.transcription.base import DecodingPolicy
from voicememo.transcription.orchestrator import OrchestratorState, TranscriptionOrchestrator

SMALL_POLICY = ChunkingPolicy(max_single_pass=6.0, chunk_length=5.4, overlap=0.3)


def chunk_responder(audio_path, language, policy, initial_prompt):
    name = Path(audio_path).stem
    return BackendTranscript(
        text=f"words from {name}",
        language="sv",
        segments=[BackendSegment(text=f"words from {name}", start=1.0, end=2.0)],
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_orchestrator(temp_data_dir, events):
    created = []

    def make(backend=None, **kwargs):
        kwargs.setdefault("chunker", AudioChunker(SMALL_POLICY, temp_root=temp_data_dir))
        orchestrator = TranscriptionOrchestrator(
            backend or FakeBackend(responder=chunk_responder),
            progress_callback=events.append,
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield make
    for orchestrator in created:
        orchestrator.shutdown()


@pytest.mark.unit
class TestModelLoading:
    """Test cases for load_model."""

    def test_load_model(self, make_orchestrator, events):
        orchestrator = make_orchestrator()

        orchestrator.load_model("kb_whisper-base")

        assert orchestrator.current_model == "kb_whisper-base"
        assert orchestrator.state == OrchestratorState.MODEL_READY
        values = [e.value for e in events]
        assert values[0] == 0.0
        assert values[-1] == 1.0
        assert values == sorted(values)
        assert {e.phase for e in events} == {"loading"}

    def test_unknown_model(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(BackendFailure):
            orchestrator.load_model("does-not-exist")
        assert orchestrator.state == OrchestratorState.FAILED
        assert orchestrator.current_model is None

    def test_unexpected_load_error_is_wrapped(self, make_orchestrator):
        backend = FakeBackend()
        backend.load = Mock(side_effect=MemoryError("out of memory"))
        orchestrator = make_orchestrator(backend)

        with pytest.raises(BackendFailure):
            orchestrator.load_model("kb_whisper-base")

    def test_no_model_loaded(self, make_orchestrator, wav_factory):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend)
        path = wav_factory("memo.wav", 1.0)

        with pytest.raises(ModelNotLoaded):
            orchestrator.transcribe(AudioSource(path=path, duration=1.0))
        assert backend.transcribe_calls == []
        assert orchestrator.state == OrchestratorState.FAILED

    def test_model_swapped_when_request_differs(self, make_orchestrator, wav_factory):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend)
        source = AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0)

        orchestrator.transcribe(source, model_id="kb_whisper-base")
        orchestrator.transcribe(source, model_id="kb_whisper-base")
        orchestrator.transcribe(source, model_id="openai_whisper-base")

        assert backend.load_calls == ["kb_whisper-base", "openai_whisper-base"]

    def test_transcribe_without_model_id_uses_loaded_model(self, make_orchestrator, wav_factory):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend)
        orchestrator.load_model("kb_whisper-base")

        orchestrator.transcribe(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0))

        assert backend.load_calls == ["kb_whisper-base"]


@pytest.mark.unit
class TestTranscribe:
    """Test cases for transcribe."""

    def test_short_source_single_backend_call(self, make_orchestrator, wav_factory):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend)
        path = wav_factory("memo.wav", 2.0)

        result = orchestrator.transcribe(AudioSource(path=path, duration=2.0), model_id="kb_whisper-base", language="sv")

        assert len(backend.transcribe_calls) == 1
        call = backend.transcribe_calls[0]
        assert call["audio_path"] == path
        assert call["language"] == "sv"
        assert call["initial_prompt"] is None
        assert result.text == "speech in memo"
        assert result.duration == 2.0
        assert orchestrator.state == OrchestratorState.DONE
        assert path.exists()

    def test_long_source_chunks_in_order_and_released(self, make_orchestrator, wav_factory):
        backend = FakeBackend(responder=chunk_responder)
        orchestrator = make_orchestrator(backend)
        path = wav_factory("long.wav", 12.0)

        result = orchestrator.transcribe(AudioSource(path=path, duration=12.0), model_id="kb_whisper-base")

        chunk_paths = [c["audio_path"] for c in backend.transcribe_calls]
        assert [p.name for p in chunk_paths] == ["chunk_0000.wav", "chunk_0001.wav", "chunk_0002.wav"]
        assert all(c["exists"] for c in backend.transcribe_calls)
        assert not any(p.exists() for p in chunk_paths)
        assert path.exists()

        assert [s.id for s in result.segments] == [0, 1, 2]
        starts = [s.start for s in result.segments]
        assert starts == pytest.approx([1.0, 6.1, 11.2])
        assert result.duration == 12.0

    def test_prefill_prompt_carries_previous_chunk_text(self, make_orchestrator, wav_factory):
        backend = FakeBackend(responder=chunk_responder)
        orchestrator = make_orchestrator(backend)

        orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0), model_id="kb_whisper-base")

        prompts = [c["initial_prompt"] for c in backend.transcribe_calls]
        assert prompts == [None, "words from chunk_0000", "words from chunk_0001"]

    def test_prefill_prompt_limited_to_tail(self, make_orchestrator, wav_factory):
        long_text = " ".join(f"w{i}" for i in range(100))

        def responder(audio_path, language, policy, initial_prompt):
            return BackendTranscript(text=long_text, segments=[BackendSegment(text=long_text, start=0.0, end=1.0)])

        backend = FakeBackend(responder=responder)
        orchestrator = make_orchestrator(backend, policy=DecodingPolicy(prompt_tail_words=5))

        orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0), model_id="kb_whisper-base")

        assert backend.transcribe_calls[1]["initial_prompt"] == "w95 w96 w97 w98 w99"

    def test_prefill_cache_disabled(self, make_orchestrator, wav_factory):
        backend = FakeBackend(responder=chunk_responder)
        orchestrator = make_orchestrator(backend, policy=DecodingPolicy(use_prefill_cache=False))

        orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0), model_id="kb_whisper-base")

        assert all(c["initial_prompt"] is None for c in backend.transcribe_calls)

    def test_decoding_policy_passed_to_backend(self, make_orchestrator, wav_factory):
        backend = FakeBackend()
        policy = DecodingPolicy(top_k=3)
        orchestrator = make_orchestrator(backend, policy=policy)

        orchestrator.transcribe(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0), model_id="kb_whisper-base")

        assert backend.transcribe_calls[0]["policy"] is policy

    def test_language_hint_passed_through(self, make_orchestrator, wav_factory):
        def responder(audio_path, language, policy, initial_prompt):
            return BackendTranscript(text="hello", language="en", segments=[BackendSegment("hello", 0.0, 1.0)])

        orchestrator = make_orchestrator(FakeBackend(responder=responder))

        result = orchestrator.transcribe(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0),
                                         model_id="kb_whisper-base", language="sv")

        assert result.language == "sv"

    def test_detected_language_without_hint(self, make_orchestrator, wav_factory):
        def responder(audio_path, language, policy, initial_prompt):
            return BackendTranscript(text="hello", language="en", segments=[BackendSegment("hello", 0.0, 1.0)])

        orchestrator = make_orchestrator(FakeBackend(responder=responder))

        result = orchestrator.transcribe(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0),
                                         model_id="kb_whisper-base")

        assert result.language == "en"

    def test_progress_monotonic_and_reset(self, make_orchestrator, wav_factory, events):
        orchestrator = make_orchestrator()
        orchestrator.load_model("kb_whisper-base")
        events.clear()
        source = AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0)

        orchestrator.transcribe(source)
        first = [e.value for e in events]
        events.clear()
        orchestrator.transcribe(source)
        second = [e.value for e in events]

        for values in (first, second):
            assert values[0] == 0.0
            assert values[-1] == 1.0
            assert values == sorted(values)
        chunk_events = [e for e in events if e.phase == "transcribing" and e.chunk_count]
        assert [e.chunk_index for e in chunk_events] == [0, 1, 2]

    def test_backend_failure_mid_request(self, make_orchestrator, wav_factory, temp_data_dir):
        def responder(audio_path, language, policy, initial_prompt):
            if Path(audio_path).name == "chunk_0001.wav":
                raise RuntimeError("CUDA out of memory")
            return chunk_responder(audio_path, language, policy, initial_prompt)

        backend = FakeBackend(responder=responder)
        orchestrator = make_orchestrator(backend)

        with pytest.raises(BackendFailure):
            orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0),
                                    model_id="kb_whisper-base")

        assert orchestrator.state == OrchestratorState.FAILED
        assert len(backend.transcribe_calls) == 2
        assert not any(c["audio_path"].exists() for c in backend.transcribe_calls)

    def test_extraction_failure_propagates(self, make_orchestrator, temp_data_dir):
        bogus = Path(temp_data_dir) / "bogus.wav"
        bogus.write_bytes(b"garbage")
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend)

        with pytest.raises(ExtractionFailed):
            orchestrator.transcribe(AudioSource(path=bogus, duration=12.0), model_id="kb_whisper-base")
        assert backend.transcribe_calls == []
        assert orchestrator.state == OrchestratorState.FAILED

    def test_cancel_between_chunks(self, make_orchestrator, wav_factory):
        token = CancellationToken()

        def responder(audio_path, language, policy, initial_prompt):
            token.cancel()
            return chunk_responder(audio_path, language, policy, initial_prompt)

        backend = FakeBackend(responder=responder)
        orchestrator = make_orchestrator(backend)

        with pytest.raises(TranscriptionCancelled):
            orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0),
                                    model_id="kb_whisper-base", cancel_token=token)

        assert len(backend.transcribe_calls) == 1
        assert not backend.transcribe_calls[0]["audio_path"].exists()

    def test_progress_callback_errors_do_not_fail_request(self, temp_data_dir, wav_factory):
        orchestrator = TranscriptionOrchestrator(
            FakeBackend(),
            chunker=AudioChunker(SMALL_POLICY, temp_root=temp_data_dir),
            progress_callback=Mock(side_effect=RuntimeError("ui gone")),
        )
        with orchestrator:
            result = orchestrator.transcribe(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0),
                                             model_id="kb_whisper-base")
        assert result.text


@pytest.mark.unit
class TestConcurrency:
    """Test cases for serialisation, parallel chunks and submit()."""

    def test_parallel_chunks_keep_index_order(self, make_orchestrator, wav_factory):
        delays = {"chunk_0000": 0.2, "chunk_0001": 0.1, "chunk_0002": 0.0}

        def responder(audio_path, language, policy, initial_prompt):
            time.sleep(delays[Path(audio_path).stem])
            return chunk_responder(audio_path, language, policy, initial_prompt)

        backend = FakeBackend(responder=responder, reentrant=True)
        orchestrator = make_orchestrator(backend, max_parallel_chunks=3)

        result = orchestrator.transcribe(AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0),
                                         model_id="kb_whisper-base")

        assert [s.text for s in result.segments] == [
            "words from chunk_0000", "words from chunk_0001", "words from chunk_0002"]
        assert all(c["initial_prompt"] is None for c in backend.transcribe_calls)

    def test_non_reentrant_backend_never_called_concurrently(self, make_orchestrator, wav_factory):
        active = []
        overlaps = []
        lock = threading.Lock()

        def responder(audio_path, language, policy, initial_prompt):
            with lock:
                active.append(audio_path)
                if len(active) > 1:
                    overlaps.append(audio_path)
            time.sleep(0.02)
            with lock:
                active.remove(audio_path)
            return chunk_responder(audio_path, language, policy, initial_prompt)

        orchestrator = make_orchestrator(FakeBackend(responder=responder), max_parallel_chunks=4)
        source = AudioSource(path=wav_factory("long.wav", 12.0), duration=12.0)

        futures = [orchestrator.submit(source, model_id="kb_whisper-base") for _ in range(2)]
        threads = [threading.Thread(target=orchestrator.transcribe, args=(source, "kb_whisper-base")) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        for future in futures:
            future.result(timeout=30)

        assert overlaps == []

    def test_submit_returns_future(self, make_orchestrator, wav_factory):
        orchestrator = make_orchestrator(FakeBackend())

        future = orchestrator.submit(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0),
                                     model_id="kb_whisper-base")

        assert future.result(timeout=10).text == "speech in memo"

    def test_submit_propagates_errors(self, make_orchestrator, wav_factory):
        orchestrator = make_orchestrator(FakeBackend())

        future = orchestrator.submit(AudioSource(path=wav_factory("memo.wav", 1.0), duration=1.0))

        with pytest.raises(ModelNotLoaded):
            future.result(timeout=10)

    def test_shutdown_cleans_up_backend(self, temp_data_dir):
        backend = FakeBackend()
        orchestrator = TranscriptionOrchestrator(backend, chunker=AudioChunker(SMALL_POLICY, temp_root=temp_data_dir))

        orchestrator.shutdown()
        orchestrator.shutdown()

        assert backend.cleaned_up
        with pytest.raises(RuntimeError):
            orchestrator.load_model("kb_whisper-base")
