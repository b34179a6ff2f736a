"""Caller-facing runner operations.

RunnerService is the surface a transport layer (HTTP handlers, the CLI)
talks to. It owns the lifecycle rules: which status transitions happen
when, what gets persisted, and which failures reach the caller.

Builds run on a dedicated thread per build and are reported through a
``concurrent.futures.Future``. At most one build per artifact is in
flight at any time.
"""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import structlog

from binrunner.builder import BuildOrchestrator
from binrunner.catalog import ArtifactCatalog
from binrunner.engine import ExecutionEngine
from binrunner.errors import (
    ArtifactNotFoundError,
    ArtifactNotReadyError,
    BuildError,
    BuildInProgressError,
    RunnerError,
    StorageError,
)
from binrunner.execution_log import ExecutionLog
from binrunner.identifiers import new_identifier
from binrunner.models import (
    Artifact,
    ArtifactSpec,
    ArtifactStatus,
    ExecutionRecord,
    ExecutionRequest,
)

logger = structlog.get_logger(__name__)


class RunnerService:
    """Registers, builds and executes artifacts.

    Attributes:
        catalog: Artifact catalog
        orchestrator: Build orchestrator
        engine: Execution engine
        execution_log: Store of finished execution records

    Example:
        >>> with create_runner(load_config()) as runner:
        ...     artifact = runner.register_artifact(spec)
        ...     runner.request_build(artifact.id).result()
        ...     record = runner.execute(
        ...         ExecutionRequest(artifact_id=artifact.id, args=["hello"])
        ...     )
    """

    def __init__(
        self,
        catalog: ArtifactCatalog,
        orchestrator: BuildOrchestrator,
        engine: ExecutionEngine,
        execution_log: ExecutionLog,
    ) -> None:
        """Initialize the service from its collaborators."""
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.engine = engine
        self.execution_log = execution_log
        self._builds: dict[str, Future[Artifact]] = {}
        self._builds_lock = threading.Lock()
        self._log = logger.bind(component="runner_service")

    # Artifacts

    def register_artifact(self, spec: ArtifactSpec) -> Artifact:
        """Register a new artifact in the PENDING state.

        Raises:
            StorageError: If the catalog snapshot cannot be written.
        """
        artifact = Artifact.from_spec(spec, new_identifier())
        artifact_id = self.catalog.register(artifact)
        return self.catalog.get(artifact_id)

    def list_artifacts(self) -> list[Artifact]:
        """Return all artifacts, oldest first."""
        return self.catalog.list()

    def get_artifact(self, artifact_id: str) -> Artifact:
        """Return one artifact.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
        """
        return self.catalog.get(artifact_id)

    def update_artifact(self, artifact_id: str, spec: ArtifactSpec) -> Artifact:
        """Replace an artifact's descriptive fields, keeping its lifecycle state.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
            StorageError: If the catalog snapshot cannot be written.
        """
        return self.catalog.apply(artifact_id, lambda current: current.with_spec(spec))

    def delete_artifact(self, artifact_id: str) -> None:
        """Remove an artifact and its executable.

        Refused while a build of the artifact is in flight, since the build
        would recreate the executable afterwards.

        Raises:
            BuildInProgressError: If a build for this artifact is running.
            InvalidIdentifierError: If the identifier is unsafe.
            ArtifactNotFoundError: If the artifact does not exist.
            StorageError: If the catalog snapshot cannot be written.
        """
        if self.build_in_progress(artifact_id):
            raise BuildInProgressError(artifact_id)
        self.catalog.delete(artifact_id)

    # Builds

    def request_build(self, artifact_id: str) -> Future[Artifact]:
        """Start a background build and return immediately.

        The artifact is moved to BUILDING and persisted before this method
        returns. The future resolves with the stored READY artifact, or
        fails with the BuildError after the artifact has been stored as
        FAILED. Build failures are never raised from this method.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
            BuildInProgressError: If a build for this artifact is running.
            StorageError: If the BUILDING state cannot be persisted.
        """
        future: Future[Artifact] = Future()
        with self._builds_lock:
            if artifact_id in self._builds:
                raise BuildInProgressError(artifact_id)
            self._builds[artifact_id] = future

        try:
            building = self.catalog.apply(
                artifact_id,
                lambda current: current.model_copy(update={"status": ArtifactStatus.BUILDING}),
            )
        except RunnerError:
            self._forget_build(artifact_id)
            raise

        self._log.info("build_requested", artifact_id=artifact_id)
        thread = threading.Thread(
            target=self._run_build,
            args=(building, future),
            name=f"build-{artifact_id}",
        )
        thread.start()
        return future

    def build_in_progress(self, artifact_id: str) -> bool:
        """Check whether a build for the artifact is in flight."""
        with self._builds_lock:
            return artifact_id in self._builds

    def _run_build(self, artifact: Artifact, future: Future[Artifact]) -> None:
        future.set_running_or_notify_cancel()
        log = self._log.bind(artifact_id=artifact.id)
        try:
            built = self.orchestrator.build(artifact)
        except BuildError as exc:
            log.warning("build_failed", stage=exc.stage.value, error=exc.message)
            self._finish_build(artifact.id, future, {"status": ArtifactStatus.FAILED}, exc)
            return
        except Exception as exc:
            log.exception("build_crashed", error=str(exc))
            self._finish_build(artifact.id, future, {"status": ArtifactStatus.FAILED}, exc)
            return

        outcome = {
            "status": ArtifactStatus.READY,
            "version": built.version,
            "binary_location": built.binary_location,
            "last_built": built.last_built,
        }
        self._finish_build(artifact.id, future, outcome, None)

    def _finish_build(
        self,
        artifact_id: str,
        future: Future[Artifact],
        outcome: dict[str, Any],
        error: BaseException | None,
    ) -> None:
        """Persist a build outcome onto the current catalog entry and resolve the future.

        The outcome is applied to the latest stored artifact so that
        descriptive edits made during the build are kept.
        """
        log = self._log.bind(artifact_id=artifact_id)
        stored: Artifact | None = None
        try:
            stored = self.catalog.apply(
                artifact_id, lambda current: current.model_copy(update=outcome)
            )
        except ArtifactNotFoundError as exc:
            # deleted while building; the new executable has no owner
            log.warning("build_outcome_orphaned", error=str(exc))
            self._discard_output(self.orchestrator.binary_path(artifact_id))
            if error is None:
                error = exc
        except RunnerError as exc:
            log.error("build_outcome_persist_failed", error=str(exc))
            if error is None:
                error = exc
        finally:
            self._forget_build(artifact_id)

        if error is not None:
            future.set_exception(error)
            return
        assert stored is not None  # Type narrowing for mypy
        log.info("build_stored", status=stored.status.value, version=stored.version)
        future.set_result(stored)

    def _discard_output(self, binary_path: Path) -> None:
        try:
            binary_path.unlink(missing_ok=True)
        except OSError as exc:
            self._log.warning("binary_remove_failed", path=str(binary_path), error=str(exc))

    def _forget_build(self, artifact_id: str) -> None:
        with self._builds_lock:
            self._builds.pop(artifact_id, None)

    # Executions

    def execute(
        self,
        request: ExecutionRequest,
        *,
        on_start: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionRecord:
        """Run a ready artifact synchronously and persist the record.

        A failure to persist the record is logged; the record is still
        returned.

        Args:
            request: Execution parameters.
            on_start: Optional callback receiving the execution identifier
                once the process has started.
            cancel: Set by a caller that gives up on the run; the process is
                killed and the run ends FAILED.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
            ArtifactNotReadyError: If the artifact is not READY.
            ProcessLaunchError: If the process could not be started.
        """
        artifact = self.catalog.get(request.artifact_id)
        if not artifact.is_ready:
            raise ArtifactNotReadyError(artifact.id, artifact.status.value)

        record = self.engine.execute(
            artifact.binary_location, request, on_start=on_start, cancel=cancel
        )
        try:
            self.execution_log.save(record)
        except StorageError as exc:
            self._log.error(
                "execution_save_failed",
                execution_id=record.id,
                artifact_id=artifact.id,
                error=str(exc),
            )
        return record

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        """Return a finished execution record.

        Raises:
            InvalidIdentifierError: If the identifier is unsafe.
            ExecutionNotFoundError: If no record exists.
        """
        return self.execution_log.get(execution_id)

    def stop_execution(self, execution_id: str) -> None:
        """Forcibly terminate a live execution.

        Raises:
            ExecutionNotLiveError: If the execution is unknown or finished.
        """
        self.engine.stop(execution_id)

    def running_executions(self) -> list[str]:
        """Return identifiers of executions currently in flight."""
        return self.engine.running()

    # Lifecycle

    def shutdown(self, wait: bool = True) -> None:
        """Release the service.

        Args:
            wait: Block until in-flight builds have finished.
                Builds cannot be cancelled once started.
        """
        with self._builds_lock:
            pending = list(self._builds.values())
        if wait and pending:
            self._log.info("waiting_for_builds", count=len(pending))
            concurrent.futures.wait(pending)
        self._log.debug("runner_shutdown")

    def __enter__(self) -> RunnerService:
        """Enter context manager."""
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, waiting for in-flight builds."""
        self.shutdown()
