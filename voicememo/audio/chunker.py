"""Split long recordings into overlapping windows for bounded-context transcription.

Recordings up to ``MAX_SINGLE_PASS_SECONDS`` are passed through untouched. Longer
ones are cut into ``CHUNK_SECONDS`` windows where each window starts
``OVERLAP_SECONDS`` before the previous one ended, so no audio falls between two
chunks. Extracted chunk files live in a private temporary directory that the
caller reclaims through ``ChunkSet.release()``.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError

from ..cancellation import CancellationToken
from ..errors import ExtractionFailed
from ..models.audio import AudioChunk, AudioSource

logger = logging.getLogger(__name__)

MAX_SINGLE_PASS_SECONDS = 600.0
CHUNK_SECONDS = 540.0
OVERLAP_SECONDS = 30.0

assert CHUNK_SECONDS - OVERLAP_SECONDS > 0, "chunk length must exceed overlap"

CHUNK_DIR_PREFIX = "voicememo_chunks_"

_DECODE_ERRORS = (OSError, CouldntDecodeError, IndexError, ValueError, MemoryError)
_EXPORT_ERRORS = (OSError, CouldntEncodeError, MemoryError)


@dataclass(frozen=True)
class ChunkingPolicy:
    """Chunking thresholds in seconds."""
    max_single_pass: float = MAX_SINGLE_PASS_SECONDS
    chunk_length: float = CHUNK_SECONDS
    overlap: float = OVERLAP_SECONDS

    def __post_init__(self):
        if self.overlap < 0:
            raise ValueError("overlap must be >= 0")
        if self.chunk_length - self.overlap <= 0:
            raise ValueError("chunk_length must be greater than overlap")
        if self.max_single_pass < self.chunk_length:
            raise ValueError("max_single_pass must be >= chunk_length")


DEFAULT_POLICY = ChunkingPolicy()


def plan_chunk_spans(duration: float, policy: ChunkingPolicy = DEFAULT_POLICY) -> List[Tuple[float, float]]:
    """Compute ``(start, end)`` spans covering ``[0, duration)``.

    Args:
        duration: Source duration in seconds
        policy: Chunking thresholds

    Returns:
        Ordered spans; a single ``(0, duration)`` span for short sources
    """
    if duration < 0:
        raise ValueError("duration must be >= 0")
    if duration <= policy.max_single_pass:
        return [(0.0, float(duration))]

    spans = []
    cursor = 0.0
    while True:
        end = min(cursor + policy.chunk_length, duration)
        spans.append((cursor, end))
        if end >= duration:
            break
        cursor = end - policy.overlap
    return spans


def probe_duration(path: Path) -> float:
    """Duration of an audio file in seconds.

    Raises:
        ExtractionFailed: if the file cannot be decoded
    """
    try:
        audio = AudioSegment.from_file(str(path))
    except _DECODE_ERRORS as e:
        raise ExtractionFailed(f"Failed to read audio duration for {path}: {e}") from e
    return len(audio) / 1000.0


class ChunkSet:
    """Ordered chunks produced by one chunking operation.

    ``release()`` must be called once the chunks are consumed (or abandoned);
    calling it again is a no-op. The set is also a context manager.
    """

    def __init__(self, source: AudioSource, chunks: List[AudioChunk], workdir: Optional[Path] = None):
        self.source = source
        self.chunks = chunks
        self.workdir = workdir
        self.released = False

    def __iter__(self) -> Iterator[AudioChunk]:
        return iter(self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)

    def __getitem__(self, index: int) -> AudioChunk:
        return self.chunks[index]

    def __enter__(self) -> "ChunkSet":
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.release()

    @property
    def is_split(self) -> bool:
        return any(chunk.owned for chunk in self.chunks)

    def release(self) -> None:
        """Delete every chunk file and the working directory this set allocated."""
        if self.released:
            return
        self.released = True
        _remove_owned(self.chunks)
        if self.workdir is not None:
            _remove_dir(self.workdir)
        logger.debug(f"Released chunk set for {self.source.path} ({len(self.chunks)} chunks)")


def _remove_owned(chunks: List[AudioChunk]) -> None:
    for chunk in chunks:
        if not chunk.owned:
            continue
        try:
            chunk.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete chunk file {chunk.path}: {e}")


def _remove_dir(directory: Path) -> None:
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not delete chunk directory {directory}: {e}")


def cleanup_stale_chunk_dirs(temp_root: Optional[Path] = None) -> int:
    """Delete chunk working directories that an interrupted run never released.

    Meant for start-up, before this process chunks anything. Recordings are
    never touched.

    Args:
        temp_root: Parent directory of chunk directories (system temp if None)

    Returns:
        Number of directories removed
    """
    root = Path(temp_root) if temp_root else Path(tempfile.gettempdir())
    if not root.is_dir():
        return 0

    removed = 0
    for path in root.glob(f"{CHUNK_DIR_PREFIX}*"):
        if not path.is_dir():
            continue
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Could not remove stale chunk directory {path}: {e}")
            continue
        removed += 1
        logger.debug(f"Removed stale chunk directory: {path}")

    if removed:
        logger.info(f"Cleaned up {removed} stale chunk directories in {root}")
    return removed


class AudioChunker:
    """Produces ChunkSets for AudioSources."""

    def __init__(
        self,
        policy: ChunkingPolicy = DEFAULT_POLICY,
        temp_root: Optional[Path] = None,
        sample_rate: int = 16000,
        loader: Callable[[str], AudioSegment] = AudioSegment.from_file,
    ):
        """Initialize chunker.

        Args:
            policy: Chunking thresholds
            temp_root: Parent directory for chunk working directories (system temp if None)
            sample_rate: Sample rate of exported chunks
            loader: Decodes a path into an AudioSegment
        """
        self.policy = policy
        self.temp_root = Path(temp_root) if temp_root else None
        self.sample_rate = sample_rate
        self.loader = loader

    def chunk(
        self,
        source: AudioSource,
        duration: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ChunkSet:
        """Split ``source`` into overlapping chunks.

        Args:
            source: Recording to split
            duration: Source duration in seconds (defaults to ``source.duration``)
            cancel_token: Checked before each extraction

        Returns:
            ChunkSet covering the whole source

        Raises:
            ExtractionFailed: if decoding or exporting fails; nothing is left on disk
            TranscriptionCancelled: if cancelled; nothing is left on disk
        """
        if duration is None:
            duration = source.duration
        spans = plan_chunk_spans(duration, self.policy)

        if len(spans) == 1:
            start, end = spans[0]
            chunk = AudioChunk(index=0, start=start, end=end, path=Path(source.path), owned=False)
            return ChunkSet(source, [chunk])

        logger.info(f"Splitting {source.path} ({duration:.1f}s) into {len(spans)} chunks")
        workdir = Path(tempfile.mkdtemp(prefix=CHUNK_DIR_PREFIX, dir=self.temp_root))
        chunks: List[AudioChunk] = []
        try:
            audio = self._decode(source)
            for index, (start, end) in enumerate(spans):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                chunks.append(self._extract(audio, workdir, index, start, end))
        except BaseException:
            _remove_owned(chunks)
            _remove_dir(workdir)
            raise

        return ChunkSet(source, chunks, workdir=workdir)

    def release(self, chunk_set: ChunkSet) -> None:
        chunk_set.release()

    def cleanup_stale(self) -> int:
        """Remove chunk directories leaked under this chunker's temp root."""
        return cleanup_stale_chunk_dirs(self.temp_root)

    def _decode(self, source: AudioSource) -> AudioSegment:
        try:
            audio = self.loader(str(source.path))
            return audio.set_channels(1).set_frame_rate(self.sample_rate)
        except _DECODE_ERRORS as e:
            raise ExtractionFailed(f"Failed to decode {source.path}: {e}") from e

    def _extract(self, audio: AudioSegment, workdir: Path, index: int, start: float, end: float) -> AudioChunk:
        path = workdir / f"chunk_{index:04d}.wav"
        start_ms = int(round(start * 1000))
        end_ms = int(round(end * 1000))
        try:
            exported = audio[start_ms:end_ms].export(str(path), format="wav")
            exported.close()
        except _EXPORT_ERRORS as e:
            # the partial file is inside workdir, which chunk() removes
            raise ExtractionFailed(f"Failed to export chunk {index} [{start:.1f}, {end:.1f}): {e}") from e

        logger.debug(f"Extracted chunk {index}: [{start:.1f}, {end:.1f}) -> {path}")
        return AudioChunk(index=index, start=start, end=end, path=path, owned=True)
