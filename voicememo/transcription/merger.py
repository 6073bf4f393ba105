"""Stitch per-chunk transcripts into one TranscriptionResult.

Chunk segment times are shifted onto the source timeline. Where two chunks
overlap, the overlap is cut at its midpoint: the earlier chunk keeps segments
centred before the cut, the later chunk keeps segments centred at or after it.
A segment straddling the cut can still be heard by both chunks, so the first
kept segment of the later chunk also loses any leading words that repeat the
tail of the text kept so far.

Chunks whose transcript has no segment timing are kept whole and joined
without trimming.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..models.audio import AudioChunk
from ..models.transcription import BackendTranscript, TranscriptionResult, TranscriptionSegment

logger = logging.getLogger(__name__)

MIN_SEAM_WORDS = 3
MAX_SEAM_WORDS = 40

_WORD_RE = re.compile(r"[^\w]+", re.UNICODE)

# (text, start, end) on the source timeline
_Span = Tuple[str, float, float]


@dataclass
class ChunkTranscript:
    """Backend output for one chunk."""
    chunk: AudioChunk
    transcript: BackendTranscript


def _cut_point(previous: AudioChunk, current: AudioChunk) -> Optional[float]:
    if previous.end <= current.start:
        return None
    return (current.start + previous.end) / 2.0


def _rebase(piece: ChunkTranscript) -> Optional[List[_Span]]:
    """Shift segments onto the source timeline; None if timing is unavailable."""
    chunk = piece.chunk
    segments = piece.transcript.segments
    if not segments or any(s.start is None or s.end is None for s in segments):
        return None

    spans = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        start = min(max(chunk.start + segment.start, chunk.start), chunk.end)
        end = min(max(chunk.start + segment.end, start), chunk.end)
        spans.append((text, start, end))
    return spans


def _normalize_word(word: str) -> str:
    return _WORD_RE.sub("", word).lower()


def _repeated_prefix_length(tail: List[str], words: List[str]) -> int:
    """Longest k >= MIN_SEAM_WORDS such that the last k words of ``tail`` equal the first k of ``words``."""
    tail_norm = [_normalize_word(w) for w in tail]
    words_norm = [_normalize_word(w) for w in words]
    for k in range(min(len(tail_norm), len(words_norm), MAX_SEAM_WORDS), MIN_SEAM_WORDS - 1, -1):
        if tail_norm[-k:] == words_norm[:k]:
            return k
    return 0


def _trim_seam(kept: List[_Span], incoming: List[_Span]) -> List[_Span]:
    if not kept or not incoming:
        return incoming
    tail = " ".join(text for text, _, _ in kept[-4:]).split()[-MAX_SEAM_WORDS:]
    text, start, end = incoming[0]
    words = text.split()
    repeated = _repeated_prefix_length(tail, words)
    if not repeated:
        return incoming

    logger.debug(f"Dropping {repeated} repeated words at chunk seam ({start:.1f}s)")
    remainder = " ".join(words[repeated:])
    if remainder:
        return [(remainder, start, end)] + incoming[1:]
    return incoming[1:]


def _select(pieces: List[ChunkTranscript]) -> List[_Span]:
    kept: List[_Span] = []
    previous_timed = False
    for i, piece in enumerate(pieces):
        chunk = piece.chunk
        lower = _cut_point(pieces[i - 1].chunk, chunk) if i > 0 else None
        upper = _cut_point(chunk, pieces[i + 1].chunk) if i + 1 < len(pieces) else None

        spans = _rebase(piece)
        if spans is None:
            text = piece.transcript.text.strip()
            if text:
                kept.append((text, chunk.start, chunk.end))
            previous_timed = False
            continue

        selected = []
        for text, start, end in spans:
            midpoint = (start + end) / 2.0
            if lower is not None and midpoint < lower:
                continue
            if upper is not None and midpoint >= upper:
                continue
            selected.append((text, start, end))

        if previous_timed and lower is not None:
            selected = _trim_seam(kept, selected)
        kept.extend(selected)
        previous_timed = True
    return kept


def merge_chunk_transcripts(
    pieces: List[ChunkTranscript],
    duration: float,
    language: Optional[str] = None,
    result_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> TranscriptionResult:
    """Merge ordered chunk transcripts into one result.

    Args:
        pieces: One entry per chunk, any order (sorted by chunk index here)
        duration: Duration of the original source in seconds
        language: Caller language hint; wins over detected languages
        result_id: Result id (random if None)
        timestamp: Creation time (now if None)

    Returns:
        TranscriptionResult with globally numbered segments on the source timeline
    """
    pieces = sorted(pieces, key=lambda p: p.chunk.index)
    spans = _select(pieces)

    segments = []
    last_start = 0.0
    for index, (text, start, end) in enumerate(spans):
        start = min(max(start, last_start), duration)
        end = min(max(end, start), duration)
        last_start = start
        segments.append(TranscriptionSegment(id=index, text=text, start=start, end=end))

    if not language:
        detected = [p.transcript.language for p in pieces if p.transcript.language]
        language = detected[0] if detected else "unknown"

    return TranscriptionResult(
        id=result_id or uuid.uuid4().hex,
        text=" ".join(segment.text for segment in segments),
        language=language,
        segments=tuple(segments),
        timestamp=timestamp or datetime.now(),
        duration=duration,
    )
