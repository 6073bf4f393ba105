"""Models the app knows how to load."""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ModelOption:
    id: str
    name: str
    size: str
    language: Optional[str]  # preferred language, None for multilingual
    repo: str  # faster-whisper model size or Hugging Face repo


MODEL_OPTIONS: List[ModelOption] = [
    ModelOption(id="kb_whisper-base", name="KB Whisper Base (Swedish)", size="150 MB",
                language="sv", repo="KBLab/kb-whisper-base"),
    ModelOption(id="kb_whisper-small", name="KB Whisper Small (Swedish)", size="500 MB",
                language="sv", repo="KBLab/kb-whisper-small"),
    ModelOption(id="openai_whisper-base", name="Whisper Base", size="150 MB",
                language=None, repo="base"),
    ModelOption(id="openai_whisper-small", name="Whisper Small", size="500 MB",
                language=None, repo="small"),
]


def find_model_option(model_id: str) -> Optional[ModelOption]:
    for option in MODEL_OPTIONS:
        if option.id == model_id:
            return option
    return None
