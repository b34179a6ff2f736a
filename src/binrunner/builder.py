"""Build orchestrator.

Drives one artifact through fetch, revision lookup, compile and chmod,
returning the built artifact. Failures are tagged with the stage that
failed. The orchestrator never reads or writes the catalog; persisting
the outcome is the caller's job.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from binrunner.errors import CommandError, CompileError, FetchError, RevisionError
from binrunner.models import Artifact, ArtifactStatus, utc_now
from binrunner.observability import runner_operation
from binrunner.source import SourceFetcher

logger = structlog.get_logger(__name__)

# Length of the short revision stored as the artifact version
VERSION_LENGTH = 8

# Mode applied to produced executables
EXECUTABLE_MODE = 0o755


class BuildOrchestrator:
    """Builds artifacts into executables.

    Attributes:
        fetcher: Source fetcher / compiler adapter
        source_dir: Parent directory of per-artifact checkouts
        binary_dir: Directory of produced executables

    Example:
        >>> orchestrator = BuildOrchestrator(GitGoFetcher(), Path("data/repos"),
        ...                                  Path("data/binaries"))
        >>> built = orchestrator.build(artifact)
        >>> built.status
        <ArtifactStatus.READY: 'ready'>
    """

    def __init__(self, fetcher: SourceFetcher, source_dir: Path, binary_dir: Path) -> None:
        """Initialize the orchestrator.

        Args:
            fetcher: Adapter that fetches and compiles sources.
            source_dir: Parent directory for ``repo_<id>`` checkouts.
            binary_dir: Output directory for ``<id>`` executables.
        """
        self.fetcher = fetcher
        self.source_dir = source_dir
        self.binary_dir = binary_dir
        self._log = logger.bind(component="build_orchestrator")

    def source_path(self, artifact_id: str) -> Path:
        """Return the checkout directory for an artifact."""
        return self.source_dir / f"repo_{artifact_id}"

    def binary_path(self, artifact_id: str) -> Path:
        """Return the executable path for an artifact."""
        return self.binary_dir / artifact_id

    def build(self, artifact: Artifact) -> Artifact:
        """Fetch, compile and mark the artifact's executable.

        Args:
            artifact: Artifact to build.

        Returns:
            Copy of the artifact with ``version``, ``binary_location`` and
            ``last_built`` set and status READY.

        Raises:
            FetchError: If cloning or updating the repository failed.
            RevisionError: If the revision could not be read.
            CompileError: If compiling or marking the executable failed.
        """
        log = self._log.bind(artifact_id=artifact.id)
        source_path = self.source_path(artifact.id)
        output_path = self.binary_path(artifact.id)

        with runner_operation("build", artifact_id=artifact.id) as span:
            log.info(
                "build_started",
                repo_url=artifact.repo_url,
                branch=artifact.branch,
                build_path=artifact.build_path,
            )

            try:
                self.fetcher.clone_or_update(artifact.repo_url, artifact.branch, source_path)
            except CommandError as exc:
                log.error("build_fetch_failed", error=exc.message)
                raise FetchError(
                    artifact.id, f"Failed to fetch source: {exc.message}", output=exc.output
                ) from exc

            try:
                revision = self.fetcher.get_revision(source_path)
            except CommandError as exc:
                log.error("build_revision_failed", error=exc.message)
                raise RevisionError(
                    artifact.id, f"Failed to read revision: {exc.message}", output=exc.output
                ) from exc
            if not revision:
                log.error("build_revision_failed", error="empty revision")
                raise RevisionError(artifact.id, "Source checkout reported an empty revision")
            version = revision[:VERSION_LENGTH]
            span.set_attribute("runner.version", version)

            try:
                self.fetcher.compile(source_path, artifact.build_path, output_path)
            except CommandError as exc:
                log.error("build_compile_failed", error=exc.message)
                raise CompileError(
                    artifact.id, f"Failed to compile: {exc.message}", output=exc.output
                ) from exc

            try:
                os.chmod(output_path, EXECUTABLE_MODE)
            except OSError as exc:
                log.error("build_chmod_failed", path=str(output_path), error=str(exc))
                raise CompileError(
                    artifact.id, f"Failed to mark executable: {exc}", output=str(exc)
                ) from exc

            built = artifact.model_copy(
                update={
                    "version": version,
                    "binary_location": str(output_path),
                    "status": ArtifactStatus.READY,
                    "last_built": utc_now(),
                }
            )
            log.info("build_completed", version=version, binary=str(output_path))
            return built
