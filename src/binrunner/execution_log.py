"""Execution log.

Persists one JSON document per finished execution record under a
directory, named ``<execution_id>.json``. Recently saved records are kept
in a bounded in-memory cache; lookups fall back to disk so a restarted
process can still answer for earlier runs.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from pathlib import Path

import structlog
from pydantic import ValidationError

from binrunner.errors import ExecutionNotFoundError, StorageError
from binrunner.identifiers import validate_identifier
from binrunner.models import ExecutionRecord

logger = structlog.get_logger(__name__)


class ExecutionLog:
    """Write-once store of execution records.

    Example:
        >>> log = ExecutionLog(Path("data/executions"))
        >>> log.save(record)
        >>> log.get(record.id).status
        <ExecutionStatus.COMPLETED: 'completed'>
    """

    def __init__(self, directory: Path, *, cache_size: int = 1024) -> None:
        """Initialize the log.

        Args:
            directory: Directory for ``<id>.json`` files.
            cache_size: Number of records kept in memory (0 disables caching).
        """
        self.directory = directory
        self.cache_size = cache_size
        self._cache: OrderedDict[str, ExecutionRecord] = OrderedDict()
        self._lock = threading.Lock()
        self._log = logger.bind(component="execution_log", directory=str(directory))

    def save(self, record: ExecutionRecord) -> None:
        """Persist a finished record.

        Args:
            record: Record in a terminal state.

        Raises:
            ValueError: If the record is still running.
            InvalidIdentifierError: If the record identifier is unsafe.
            StorageError: If the file cannot be written.
        """
        if not record.finished:
            msg = f"Execution {record.id} is still running"
            raise ValueError(msg)
        validate_identifier(record.id)

        path = self._path_for(record.id)
        with self._lock:
            self._remember(record)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(record.model_dump_json(indent=2))
        except OSError as exc:
            self._log.error("execution_persist_failed", execution_id=record.id, error=str(exc))
            raise StorageError(
                "Failed to write execution record",
                path=str(path),
                cause=str(exc),
            ) from exc
        self._log.debug("execution_saved", execution_id=record.id, status=record.status.value)

    def get(self, execution_id: str) -> ExecutionRecord:
        """Return a record, from cache or disk.

        Raises:
            InvalidIdentifierError: If the identifier is unsafe.
            ExecutionNotFoundError: If no record exists.
            StorageError: If the file exists but cannot be read or parsed.
        """
        validate_identifier(execution_id)
        with self._lock:
            cached = self._cache.get(execution_id)
            if cached is not None:
                self._cache.move_to_end(execution_id)
                return cached

        path = self._path_for(execution_id)
        try:
            raw = path.read_text()
        except FileNotFoundError as exc:
            raise ExecutionNotFoundError(execution_id) from exc
        except OSError as exc:
            raise StorageError(
                "Failed to read execution record", path=str(path), cause=str(exc)
            ) from exc

        try:
            record = ExecutionRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise StorageError(
                "Execution record is corrupt", path=str(path), cause=str(exc)
            ) from exc

        with self._lock:
            self._remember(record)
        return record

    def _path_for(self, execution_id: str) -> Path:
        return self.directory / f"{execution_id}.json"

    def _remember(self, record: ExecutionRecord) -> None:
        """Add to the LRU cache. Caller must hold the lock."""
        if self.cache_size <= 0:
            return
        self._cache[record.id] = record
        self._cache.move_to_end(record.id)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
