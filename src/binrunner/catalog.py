"""Artifact catalog.

A concurrency-safe registry of artifacts, persisted as a single JSON
snapshot that is rewritten wholesale on every mutation.

Locking:
- Mutations hold the exclusive lock across the in-memory change AND the
  snapshot write, so memory and disk never diverge under concurrent writers.
- Reads hold the shared lock.

A failed snapshot write raises StorageError but leaves the in-memory
change in place.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

import structlog
from pydantic import ValidationError

from binrunner.errors import ArtifactNotFoundError, StorageError
from binrunner.identifiers import validate_identifier
from binrunner.locks import ReadWriteLock
from binrunner.models import Artifact, utc_now

logger = structlog.get_logger(__name__)


class ArtifactCatalog:
    """Persisted registry of artifacts keyed by identifier.

    The catalog is an owned instance handed to collaborators, not a
    process-wide singleton. Call ``load()`` once at startup.

    Attributes:
        snapshot_path: JSON snapshot file
        binary_dir: Directory of built executables, cleaned up on delete

    Example:
        >>> catalog = ArtifactCatalog(Path("data/metadata/binaries.json"))
        >>> catalog.load()
        >>> artifact_id = catalog.register(artifact)
        >>> catalog.get(artifact_id).status
        <ArtifactStatus.PENDING: 'pending'>
    """

    def __init__(self, snapshot_path: Path, *, binary_dir: Path | None = None) -> None:
        """Initialize an empty catalog.

        Args:
            snapshot_path: Location of the JSON snapshot.
            binary_dir: Directory holding ``<artifact_id>`` executables.
        """
        self.snapshot_path = snapshot_path
        self.binary_dir = binary_dir
        self._artifacts: dict[str, Artifact] = {}
        self._lock = ReadWriteLock()
        self._log = logger.bind(component="artifact_catalog", snapshot=str(snapshot_path))

    def load(self) -> int:
        """Load the snapshot into memory, replacing current contents.

        A missing snapshot is an empty catalog.

        Returns:
            Number of artifacts loaded.

        Raises:
            StorageError: If the snapshot cannot be read or parsed.
        """
        with self._lock.write():
            try:
                raw = self.snapshot_path.read_text()
            except FileNotFoundError:
                self._log.info("catalog_snapshot_missing")
                self._artifacts = {}
                return 0
            except OSError as exc:
                raise StorageError(
                    "Failed to read catalog snapshot",
                    path=str(self.snapshot_path),
                    cause=str(exc),
                ) from exc

            try:
                data = json.loads(raw) if raw.strip() else {}
                artifacts = {
                    artifact_id: Artifact.model_validate(record)
                    for artifact_id, record in data.items()
                }
            except (ValueError, AttributeError, ValidationError) as exc:
                raise StorageError(
                    "Catalog snapshot is corrupt",
                    path=str(self.snapshot_path),
                    cause=str(exc),
                ) from exc

            self._artifacts = artifacts
            self._log.info("catalog_loaded", count=len(artifacts))
            return len(artifacts)

    def register(self, artifact: Artifact) -> str:
        """Add an artifact.

        Args:
            artifact: Artifact to store; its ``id`` is the catalog key.

        Returns:
            The artifact identifier.

        Raises:
            StorageError: If the snapshot write fails (the artifact stays
                registered in memory).
        """
        now = utc_now()
        stored = artifact.model_copy(update={"created_at": now, "updated_at": now})
        with self._lock.write():
            self._artifacts[stored.id] = stored
            self._persist()
        self._log.info("artifact_registered", artifact_id=stored.id, name=stored.name)
        return stored.id

    def get(self, artifact_id: str) -> Artifact:
        """Return an artifact by identifier.

        Raises:
            ArtifactNotFoundError: If no such artifact exists.
        """
        with self._lock.read():
            artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(artifact_id)
        return artifact

    def list(self) -> list[Artifact]:
        """Return all artifacts, oldest first."""
        with self._lock.read():
            artifacts = list(self._artifacts.values())
        return sorted(artifacts, key=lambda a: a.created_at)

    def update(self, artifact_id: str, artifact: Artifact) -> Artifact:
        """Replace an existing artifact.

        The identifier and creation time of the stored entry are kept.
        Last writer wins.

        Args:
            artifact_id: Identifier of the entry to replace.
            artifact: New contents.

        Returns:
            The stored artifact.

        Raises:
            ArtifactNotFoundError: If no such artifact exists.
            StorageError: If the snapshot write fails.
        """
        return self.apply(artifact_id, lambda _current: artifact)

    def apply(self, artifact_id: str, change: Callable[[Artifact], Artifact]) -> Artifact:
        """Replace an artifact with ``change(current)`` in one atomic step.

        ``change`` receives the entry stored at the time the write lock is
        taken, so concurrent edits to other fields are not lost. It must not
        call back into the catalog.

        Raises:
            ArtifactNotFoundError: If no such artifact exists.
            StorageError: If the snapshot write fails.
        """
        with self._lock.write():
            current = self._artifacts.get(artifact_id)
            if current is None:
                raise ArtifactNotFoundError(artifact_id)
            stored = change(current).model_copy(
                update={
                    "id": artifact_id,
                    "created_at": current.created_at,
                    "updated_at": utc_now(),
                }
            )
            self._artifacts[artifact_id] = stored
            self._persist()
        self._log.debug(
            "artifact_updated", artifact_id=artifact_id, status=stored.status.value
        )
        return stored

    def delete(self, artifact_id: str) -> None:
        """Remove an artifact and its built executable.

        The identifier is validated before any filesystem access.

        Raises:
            InvalidIdentifierError: If the identifier is unsafe.
            ArtifactNotFoundError: If no such artifact exists.
            StorageError: If the snapshot write fails.
        """
        validate_identifier(artifact_id)
        with self._lock.write():
            if artifact_id not in self._artifacts:
                raise ArtifactNotFoundError(artifact_id)
            del self._artifacts[artifact_id]
            self._remove_binary(artifact_id)
            self._persist()
        self._log.info("artifact_deleted", artifact_id=artifact_id)

    def __len__(self) -> int:
        """Return the number of registered artifacts."""
        with self._lock.read():
            return len(self._artifacts)

    def __contains__(self, artifact_id: object) -> bool:
        """Check whether an identifier is registered."""
        with self._lock.read():
            return artifact_id in self._artifacts

    def _remove_binary(self, artifact_id: str) -> None:
        """Delete ``<binary_dir>/<artifact_id>`` if it exists."""
        if self.binary_dir is None:
            return
        binary_path = self.binary_dir / artifact_id
        try:
            binary_path.unlink(missing_ok=True)
        except OSError as exc:
            self._log.warning(
                "binary_remove_failed",
                artifact_id=artifact_id,
                path=str(binary_path),
                error=str(exc),
            )

    def _persist(self) -> None:
        """Write the snapshot. Caller must hold the write lock.

        Raises:
            StorageError: If the snapshot cannot be written.
        """
        payload = {
            artifact_id: artifact.model_dump(mode="json")
            for artifact_id, artifact in self._artifacts.items()
        }
        directory = self.snapshot_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.snapshot_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_name, self.snapshot_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            self._log.error("catalog_persist_failed", error=str(exc))
            raise StorageError(
                "Failed to write catalog snapshot",
                path=str(self.snapshot_path),
                cause=str(exc),
            ) from exc
