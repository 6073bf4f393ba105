"""On-device Whisper backend built on faster-whisper."""

import logging
import re
import time
from pathlib import Path
from typing import Optional

from faster_whisper import WhisperModel

from ..errors import BackendFailure, ModelNotLoaded
from ..models.transcription import BackendSegment, BackendTranscript
from .base import AbstractTranscriptionBackend, DecodingPolicy, ProgressCallback
from .catalog import find_model_option

logger = logging.getLogger(__name__)

_SPECIAL_TOKEN_RE = re.compile(r"<\|[^|>]*\|>")


def strip_special_tokens(text: str) -> str:
    return " ".join(_SPECIAL_TOKEN_RE.sub(" ", text).split())


class FasterWhisperBackend(AbstractTranscriptionBackend):
    """faster-whisper (CTranslate2) backend.

    One WhisperModel is held at a time; ``load`` replaces it.
    """

    def __init__(self, device: str = "cpu", compute_type: str = "int8", download_root: Optional[str] = None):
        """Initialize Whisper backend.

        Args:
            device: CTranslate2 device ("cpu", "cuda", "auto")
            compute_type: CTranslate2 compute type (e.g. "int8", "float16")
            download_root: Where downloaded models are cached
        """
        super().__init__()
        self.device = device
        self.compute_type = compute_type
        self.download_root = download_root
        self._model: Optional[WhisperModel] = None

    def load(self, model_id: str, progress_callback: Optional[ProgressCallback] = None) -> None:
        option = find_model_option(model_id)
        if option is None:
            raise BackendFailure(f"Unknown model id: {model_id}")

        if progress_callback:
            progress_callback(0.0)
        logger.info(f"Loading Whisper model {model_id} ({option.repo}) on {self.device}/{self.compute_type}")
        start_time = time.time()
        try:
            model = WhisperModel(
                option.repo,
                device=self.device,
                compute_type=self.compute_type,
                download_root=self.download_root,
            )
        except Exception as e:  # download, CTranslate2 and hardware errors vary
            logger.error(f"Failed to load Whisper model '{model_id}': {e}")
            raise BackendFailure(f"Failed to load model {model_id}: {e}") from e

        self._model = model
        self.loaded_model = model_id
        logger.info(f"Whisper model {model_id} loaded in {time.time() - start_time:.1f}s")
        if progress_callback:
            progress_callback(1.0)

    def transcribe(
        self,
        audio_path: Path,
        language: Optional[str],
        policy: DecodingPolicy,
        initial_prompt: Optional[str] = None,
    ) -> BackendTranscript:
        if self._model is None:
            raise ModelNotLoaded("no Whisper model loaded")

        logger.debug(f"Transcribing {audio_path}; language={language}; prompt_words={len((initial_prompt or '').split())}")
        start_time = time.time()
        try:
            segments, info = self._model.transcribe(
                str(audio_path),
                language=language,
                temperature=list(policy.temperatures()),
                beam_size=policy.top_k,
                best_of=policy.top_k,
                condition_on_previous_text=policy.use_prefill_prompt,
                initial_prompt=initial_prompt if policy.use_prefill_prompt else None,
                max_new_tokens=policy.sample_length,
            )
            # segments is a lazy generator: decoding happens while iterating
            backend_segments = []
            for segment in segments:
                text = segment.text
                if policy.skip_special_tokens:
                    text = strip_special_tokens(text)
                text = text.strip()
                if not text:
                    continue
                backend_segments.append(BackendSegment(text=text, start=segment.start, end=segment.end))
        except Exception as e:  # CTranslate2 / decoding errors are opaque
            logger.error(f"Whisper transcription failed for {audio_path}: {e}")
            raise BackendFailure(f"Transcription failed for {audio_path}: {e}") from e

        processing_time = time.time() - start_time
        detected = getattr(info, "language", None)
        logger.info(f"Transcribed {Path(audio_path).name}: "
                    f"{len(backend_segments)} segments, language={detected}, {processing_time:.1f}s")
        return BackendTranscript(
            text=" ".join(s.text for s in backend_segments),
            language=detected,
            segments=backend_segments,
        )

    def cleanup(self) -> None:
        """Drop the loaded model."""
        self._model = None
        self.loaded_model = None
