"""Abstract base class for transcription backends and the decoding policy they honour."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple
import logging

from ..models.transcription import BackendTranscript

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class DecodingPolicy:
    """Decoding options passed to the backend for every chunk.

    Decoding starts deterministic (temperature 0) and the backend may retry a
    low-confidence window at up to ``temperature_fallback_count`` higher
    temperatures.
    """
    temperature: float = 0.0
    temperature_increment: float = 0.2
    temperature_fallback_count: int = 3
    sample_length: int = 224  # max tokens decoded per window
    top_k: int = 5
    use_prefill_prompt: bool = True
    use_prefill_cache: bool = True  # carry previous chunk's text into the next chunk's prompt
    prompt_tail_words: int = 50
    skip_special_tokens: bool = True

    def temperatures(self) -> Tuple[float, ...]:
        """Temperature ladder: the initial temperature followed by the fallbacks."""
        return tuple(
            round(self.temperature + step * self.temperature_increment, 4)
            for step in range(self.temperature_fallback_count + 1)
        )


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for transcription backends.

    A backend instance holds at most one loaded model. Unless ``reentrant`` is
    True, callers must not invoke ``transcribe`` concurrently.
    """

    reentrant = False

    def __init__(self):
        """Initialize backend with no model loaded."""
        self.loaded_model: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self.loaded_model is not None

    @abstractmethod
    def load(self, model_id: str, progress_callback: Optional[ProgressCallback] = None) -> None:
        """Load (or replace) the model.

        Args:
            model_id: Model identifier from the model catalog
            progress_callback: Receives fractional progress in [0, 1]

        Raises:
            BackendFailure: if the model cannot be loaded
        """
        pass

    @abstractmethod
    def transcribe(
        self,
        audio_path: Path,
        language: Optional[str],
        policy: DecodingPolicy,
        initial_prompt: Optional[str] = None,
    ) -> BackendTranscript:
        """Transcribe one audio file.

        Args:
            audio_path: Audio to transcribe
            language: Language hint; None lets the model detect it
            policy: Decoding options
            initial_prompt: Text preceding this audio, used to prime the decoder

        Returns:
            BackendTranscript with segment times relative to ``audio_path``

        Raises:
            ModelNotLoaded: if no model is loaded
            BackendFailure: for any engine error
        """
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """Release the model and any backend resources."""
        pass
