"""File storage for transcription results."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from ..errors import PersistenceFailure
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class TranscriptionStore:
    """Stores one JSON record per TranscriptionResult, keyed by result id.

    Layout under ``data_dir``::

        transcriptions/<id>.json
        recordings/
        logs/
    """

    def __init__(self, data_dir: Union[str, Path] = "./data"):
        """Initialize store with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.transcriptions_dir = self.data_dir / "transcriptions"
        self.recordings_dir = self.data_dir / "recordings"
        self.logs_dir = self.data_dir / "logs"

        self._ensure_directories()

        logger.info(f"TranscriptionStore initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        for directory in [self.data_dir, self.transcriptions_dir, self.recordings_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def path_for(self, result_id: str) -> Path:
        if not result_id or Path(result_id).name != result_id or result_id.startswith("."):
            raise PersistenceFailure(f"Invalid transcription id: {result_id!r}")
        return self.transcriptions_dir / f"{result_id}.json"

    def save(self, result: TranscriptionResult) -> Path:
        """Write a result, replacing any record with the same id.

        The record is written to a temporary file first and moved into place,
        so readers never see a half-written file.

        Args:
            result: Result to persist

        Returns:
            Path of the written record

        Raises:
            PersistenceFailure: if the record cannot be written
        """
        path = self.path_for(result.id)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{result.id}.", suffix=".tmp", dir=self.transcriptions_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving transcription {result.id}: {e}")
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise PersistenceFailure(f"Failed to save transcription {result.id}: {e}") from e

        logger.info(f"Transcription saved: {path}")
        return path

    def load(self, result_id: str) -> TranscriptionResult:
        """Read one result.

        Raises:
            PersistenceFailure: if the record is missing, unreadable or malformed
        """
        return self._read(self.path_for(result_id))

    def _read(self, path: Path) -> TranscriptionResult:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return TranscriptionResult.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceFailure(f"Failed to read transcription {path.name}: {e}") from e

    def list_results(self) -> List[TranscriptionResult]:
        """All readable results, newest first.

        Unreadable or corrupt records are logged and skipped.
        """
        results = []
        for path in self.transcriptions_dir.glob("*.json"):
            try:
                results.append(self._read(path))
            except PersistenceFailure as e:
                logger.warning(f"Skipping unreadable transcription: {e}")

        results.sort(key=lambda r: r.timestamp, reverse=True)
        logger.debug(f"Found {len(results)} transcriptions")
        return results

    def search(self, query: Optional[str]) -> List[TranscriptionResult]:
        """Results whose text contains ``query`` (case-insensitive); all results for an empty query."""
        results = self.list_results()
        if not query or not query.strip():
            return results
        needle = query.strip().casefold()
        return [r for r in results if needle in r.text.casefold()]

    def delete(self, result_id: str) -> bool:
        """Delete a stored result.

        Returns:
            True if a record was deleted, False if none existed

        Raises:
            PersistenceFailure: if the record exists but cannot be removed
        """
        path = self.path_for(result_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceFailure(f"Failed to delete transcription {result_id}: {e}") from e
        logger.info(f"Transcription deleted: {path}")
        return True
