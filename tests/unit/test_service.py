"""Unit tests for RunnerService lifecycle rules."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from binrunner.errors import (
    ArtifactNotFoundError,
    ArtifactNotReadyError,
    BuildInProgressError,
    CompileError,
    ExecutionNotLiveError,
    FetchError,
    StorageError,
)
from binrunner.models import (
    ArtifactSpec,
    ArtifactStatus,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionStatus,
    utc_now,
)
from binrunner.service import RunnerService

BUILD_TIMEOUT = 10


class BlockingFetcher:
    """Fetcher whose clone step waits until released."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def clone_or_update(self, repo_url: str, branch: str, target_path: Path) -> None:
        self.entered.set()
        self.release.wait(BUILD_TIMEOUT)
        self.inner.clone_or_update(repo_url, branch, target_path)

    def get_revision(self, path: Path) -> str:
        return self.inner.get_revision(path)

    def compile(self, source_path: Path, build_path: str, output_path: Path) -> None:
        self.inner.compile(source_path, build_path, output_path)


@pytest.fixture
def service(
    make_service: Callable[[Any], RunnerService], fake_fetcher: Any
) -> RunnerService:
    """Return a service over temporary storage with a succeeding fetcher."""
    return make_service(fake_fetcher)


class TestArtifacts:
    """Tests for artifact registration and maintenance."""

    def test_register_is_pending(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test a registered artifact starts pending with a fresh id."""
        artifact = service.register_artifact(sample_spec)

        assert artifact.status == ArtifactStatus.PENDING
        assert artifact.id
        assert service.get_artifact(artifact.id) == artifact
        assert service.list_artifacts() == [artifact]

    def test_ids_are_unique(self, service: RunnerService, sample_spec: ArtifactSpec) -> None:
        """Test two registrations with the same fields get different ids."""
        first = service.register_artifact(sample_spec)
        second = service.register_artifact(sample_spec)
        assert first.id != second.id

    def test_update_keeps_build_state(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test update changes descriptive fields and keeps lifecycle fields."""
        artifact = service.register_artifact(sample_spec)
        built = service.request_build(artifact.id).result(BUILD_TIMEOUT)

        updated = service.update_artifact(
            artifact.id, sample_spec.model_copy(update={"name": "renamed"})
        )

        assert updated.name == "renamed"
        assert updated.status == ArtifactStatus.READY
        assert updated.version == built.version
        assert updated.binary_location == built.binary_location

    def test_update_missing(self, service: RunnerService, sample_spec: ArtifactSpec) -> None:
        """Test updating an unknown artifact fails."""
        with pytest.raises(ArtifactNotFoundError):
            service.update_artifact("missing", sample_spec)

    def test_delete(self, service: RunnerService, sample_spec: ArtifactSpec) -> None:
        """Test deleted artifacts can no longer be fetched."""
        artifact = service.register_artifact(sample_spec)
        service.delete_artifact(artifact.id)

        with pytest.raises(ArtifactNotFoundError):
            service.get_artifact(artifact.id)


class TestBuilds:
    """Tests for request_build."""

    def test_successful_build(self, service: RunnerService, sample_spec: ArtifactSpec) -> None:
        """Test a successful build persists a ready artifact."""
        artifact = service.register_artifact(sample_spec)

        built = service.request_build(artifact.id).result(BUILD_TIMEOUT)

        assert built.status == ArtifactStatus.READY
        assert built.version == "abcdef12"
        assert built.binary_location
        assert service.get_artifact(artifact.id) == built
        assert not service.build_in_progress(artifact.id)

    def test_failed_build_keeps_previous_binary(
        self, service: RunnerService, fake_fetcher: Any, sample_spec: ArtifactSpec
    ) -> None:
        """Test a failed rebuild is stored as failed without losing the old binary."""
        artifact = service.register_artifact(sample_spec)
        built = service.request_build(artifact.id).result(BUILD_TIMEOUT)

        fake_fetcher.fail = "compile"
        future = service.request_build(artifact.id)

        assert isinstance(future.exception(BUILD_TIMEOUT), CompileError)
        stored = service.get_artifact(artifact.id)
        assert stored.status == ArtifactStatus.FAILED
        assert stored.binary_location == built.binary_location
        assert stored.version == built.version

    def test_failed_first_build(
        self,
        make_service: Callable[[Any], RunnerService],
        make_fetcher: Any,
        sample_spec: ArtifactSpec,
    ) -> None:
        """Test a failed first build leaves no binary location."""
        service = make_service(make_fetcher(fail="fetch"))
        artifact = service.register_artifact(sample_spec)

        future = service.request_build(artifact.id)

        assert isinstance(future.exception(BUILD_TIMEOUT), FetchError)
        stored = service.get_artifact(artifact.id)
        assert stored.status == ArtifactStatus.FAILED
        assert stored.binary_location == ""
        assert stored.version == ""

    def test_building_state_and_duplicate_rejection(
        self,
        make_service: Callable[[Any], RunnerService],
        fake_fetcher: Any,
        sample_spec: ArtifactSpec,
    ) -> None:
        """Test the artifact is building while in flight and duplicates are refused."""
        fetcher = BlockingFetcher(fake_fetcher)
        service = make_service(fetcher)
        artifact = service.register_artifact(sample_spec)

        future = service.request_build(artifact.id)
        assert fetcher.entered.wait(BUILD_TIMEOUT)

        assert service.get_artifact(artifact.id).status == ArtifactStatus.BUILDING
        assert service.build_in_progress(artifact.id)
        with pytest.raises(BuildInProgressError):
            service.request_build(artifact.id)

        fetcher.release.set()
        assert future.result(BUILD_TIMEOUT).status == ArtifactStatus.READY

        # a new build may start once the previous one finished
        service.request_build(artifact.id).result(BUILD_TIMEOUT)

    def test_unknown_artifact(self, service: RunnerService) -> None:
        """Test building an unknown artifact fails synchronously."""
        with pytest.raises(ArtifactNotFoundError):
            service.request_build("missing")

    def test_building_persist_failure_releases_slot(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test a storage failure when marking building does not leave a stuck build."""
        artifact = service.register_artifact(sample_spec)

        with (
            patch.object(service.catalog, "apply", side_effect=StorageError("disk full")),
            pytest.raises(StorageError),
        ):
            service.request_build(artifact.id)

        assert not service.build_in_progress(artifact.id)

    def test_edit_before_building_write_is_kept(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test an edit landing just before the BUILDING write survives the build."""
        artifact = service.register_artifact(sample_spec)
        real_apply = service.catalog.apply
        edited: list[bool] = []

        def apply_after_edit(artifact_id: str, change: Any) -> Any:
            if not edited:
                edited.append(True)
                service.update_artifact(
                    artifact_id, sample_spec.model_copy(update={"name": "renamed"})
                )
            return real_apply(artifact_id, change)

        with patch.object(service.catalog, "apply", side_effect=apply_after_edit):
            built = service.request_build(artifact.id).result(BUILD_TIMEOUT)

        assert built.name == "renamed"
        assert built.status == ArtifactStatus.READY
        assert service.get_artifact(artifact.id).name == "renamed"

    def test_delete_refused_during_build(
        self,
        make_service: Callable[[Any], RunnerService],
        fake_fetcher: Any,
        sample_spec: ArtifactSpec,
    ) -> None:
        """Test an artifact cannot be deleted while it is being built."""
        fetcher = BlockingFetcher(fake_fetcher)
        service = make_service(fetcher)
        artifact = service.register_artifact(sample_spec)
        future = service.request_build(artifact.id)
        assert fetcher.entered.wait(BUILD_TIMEOUT)

        with pytest.raises(BuildInProgressError):
            service.delete_artifact(artifact.id)

        fetcher.release.set()
        future.result(BUILD_TIMEOUT)
        service.delete_artifact(artifact.id)
        assert not service.orchestrator.binary_path(artifact.id).exists()

    def test_output_of_orphaned_build_is_removed(
        self,
        make_service: Callable[[Any], RunnerService],
        fake_fetcher: Any,
        sample_spec: ArtifactSpec,
    ) -> None:
        """Test a build whose artifact vanished does not leave an executable behind."""
        fetcher = BlockingFetcher(fake_fetcher)
        service = make_service(fetcher)
        artifact = service.register_artifact(sample_spec)
        future = service.request_build(artifact.id)
        assert fetcher.entered.wait(BUILD_TIMEOUT)

        service.catalog.delete(artifact.id)
        fetcher.release.set()

        assert isinstance(future.exception(BUILD_TIMEOUT), ArtifactNotFoundError)
        assert not service.orchestrator.binary_path(artifact.id).exists()
        assert not service.build_in_progress(artifact.id)

    def test_shutdown_waits_for_builds(

        self,
        make_service: Callable[[Any], RunnerService],
        fake_fetcher: Any,
        sample_spec: ArtifactSpec,
    ) -> None:
        """Test shutdown blocks until in-flight builds finish."""
        fetcher = BlockingFetcher(fake_fetcher)
        service = make_service(fetcher)
        artifact = service.register_artifact(sample_spec)
        future = service.request_build(artifact.id)
        assert fetcher.entered.wait(BUILD_TIMEOUT)

        threading.Timer(0.1, fetcher.release.set).start()
        service.shutdown()

        assert future.done()


class TestExecutions:
    """Tests for execute, get_execution and stop_execution."""

    def _finished(self, artifact_id: str) -> ExecutionRecord:
        return ExecutionRecord(
            id="exec-1",
            artifact_id=artifact_id,
            status=ExecutionStatus.COMPLETED,
            stdout="hello\n",
            finished_at=utc_now(),
        )

    def test_requires_ready_artifact(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test executing an unbuilt artifact is refused."""
        artifact = service.register_artifact(sample_spec)

        with pytest.raises(ArtifactNotReadyError) as exc_info:
            service.execute(ExecutionRequest(artifact_id=artifact.id))

        assert exc_info.value.status == "pending"

    def test_unknown_artifact(self, service: RunnerService) -> None:
        """Test executing an unknown artifact fails."""
        with pytest.raises(ArtifactNotFoundError):
            service.execute(ExecutionRequest(artifact_id="missing"))

    def test_runs_binary_and_saves_record(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test the built binary is executed and the record persisted."""
        artifact = service.register_artifact(sample_spec)
        built = service.request_build(artifact.id).result(BUILD_TIMEOUT)
        record = self._finished(artifact.id)
        service.engine = MagicMock()
        service.engine.execute.return_value = record
        request = ExecutionRequest(artifact_id=artifact.id, args=["hello"])

        assert service.execute(request) == record

        service.engine.execute.assert_called_once_with(
            built.binary_location, request, on_start=None, cancel=None
        )
        assert service.get_execution("exec-1") == record

    def test_save_failure_still_returns_record(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test a storage failure after the run is logged, not raised."""
        artifact = service.register_artifact(sample_spec)
        service.request_build(artifact.id).result(BUILD_TIMEOUT)
        record = self._finished(artifact.id)
        service.engine = MagicMock()
        service.engine.execute.return_value = record

        with patch.object(
            service.execution_log, "save", side_effect=StorageError("disk full")
        ):
            result = service.execute(ExecutionRequest(artifact_id=artifact.id))

        assert result == record

    def test_cancel_event_is_passed_to_engine(
        self, service: RunnerService, sample_spec: ArtifactSpec
    ) -> None:
        """Test the caller's cancel event reaches the engine."""
        artifact = service.register_artifact(sample_spec)
        built = service.request_build(artifact.id).result(BUILD_TIMEOUT)
        service.engine = MagicMock()
        service.engine.execute.return_value = self._finished(artifact.id)
        request = ExecutionRequest(artifact_id=artifact.id)
        cancel = threading.Event()

        service.execute(request, cancel=cancel)

        service.engine.execute.assert_called_once_with(
            built.binary_location, request, on_start=None, cancel=cancel
        )

    def test_stop_unknown(self, service: RunnerService) -> None:

        """Test stopping an unknown execution reports not found."""
        with pytest.raises(ExecutionNotLiveError):
            service.stop_execution("nope")

    def test_running_executions_empty(self, service: RunnerService) -> None:
        """Test nothing is running on a fresh service."""
        assert service.running_executions() == []
