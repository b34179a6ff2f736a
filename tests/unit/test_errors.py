"""Unit tests for the binrunner exception hierarchy."""

from __future__ import annotations

import pytest

from binrunner.errors import (
    ArtifactNotFoundError,
    ArtifactNotReadyError,
    BuildError,
    BuildInProgressError,
    BuildStage,
    CommandError,
    CompileError,
    ConfigurationError,
    ExecutionNotFoundError,
    ExecutionNotLiveError,
    FetchError,
    InvalidIdentifierError,
    ProcessLaunchError,
    RevisionError,
    RunnerError,
    StorageError,
)


class TestRunnerError:
    """Tests for the base exception."""

    def test_str_without_details(self) -> None:
        """Test message is returned unchanged without details."""
        err = RunnerError("boom")
        assert str(err) == "boom"
        assert err.details == {}

    def test_str_with_details(self) -> None:
        """Test details are appended as key=value pairs."""
        err = RunnerError("boom", details={"a": "1", "b": "2"})
        assert str(err) == "boom (a=1, b=2)"

    @pytest.mark.parametrize(
        "err",
        [
            ArtifactNotFoundError("x"),
            ExecutionNotFoundError("x"),
            ExecutionNotLiveError("x"),
            InvalidIdentifierError("../x", "bad"),
            StorageError(),
            CommandError(["git", "clone"], returncode=1),
            FetchError("x", "failed"),
            BuildInProgressError("x"),
            ArtifactNotReadyError("x", "pending"),
            ProcessLaunchError("/bin/x", "nope"),
            ConfigurationError("bad"),
        ],
    )
    def test_all_errors_derive_from_runner_error(self, err: RunnerError) -> None:
        """Test every exception can be caught as RunnerError."""
        assert isinstance(err, RunnerError)


class TestNotFoundErrors:
    """Tests for lookup failures."""

    def test_artifact_not_found_message(self) -> None:
        """Test default message names the identifier."""
        err = ArtifactNotFoundError("abc")
        assert err.artifact_id == "abc"
        assert "Artifact not found: abc" in str(err)

    def test_execution_not_live_is_not_found(self) -> None:
        """Test stopping an unknown execution reports not found."""
        err = ExecutionNotLiveError("abc")
        assert isinstance(err, ExecutionNotFoundError)
        assert err.execution_id == "abc"
        assert "not found or already finished" in str(err)


class TestCommandError:
    """Tests for external command failures."""

    def test_message_includes_exit_code(self) -> None:
        """Test exit code appears in the message."""
        err = CommandError(["git", "clone", "-b", "main"], returncode=128, output="fatal")
        assert err.message == "git clone failed with exit code 128"
        assert err.returncode == 128

    def test_str_includes_output(self) -> None:
        """Test str() appends the command output."""
        err = CommandError(["go", "build"], returncode=1, output="syntax error")
        assert str(err).endswith("Output: syntax error")

    def test_not_started(self) -> None:
        """Test a command that never started has no exit code."""
        err = CommandError(["git"], returncode=None)
        assert err.message == "git could not be started"
        assert str(err) == err.message


class TestBuildErrors:
    """Tests for stage-tagged build errors."""

    @pytest.mark.parametrize(
        ("error_cls", "stage"),
        [
            (FetchError, BuildStage.FETCH),
            (RevisionError, BuildStage.REVISION),
            (CompileError, BuildStage.COMPILE),
        ],
    )
    def test_stage_tag(self, error_cls: type[BuildError], stage: BuildStage) -> None:
        """Test each build error carries its stage."""
        err = error_cls("art", "failed", output="log")
        assert isinstance(err, BuildError)
        assert err.stage is stage
        assert err.details["stage"] == stage.value
        assert err.details["artifact_id"] == "art"
        assert err.output == "log"


class TestStateErrors:
    """Tests for lifecycle errors."""

    def test_not_ready_reports_status(self) -> None:
        """Test ArtifactNotReadyError carries the current status."""
        err = ArtifactNotReadyError("art", "building")
        assert err.status == "building"
        assert "status=building" in str(err)

    def test_storage_error_details(self) -> None:
        """Test StorageError records path and cause."""
        err = StorageError("write failed", path="/tmp/x", cause="disk full")
        assert err.details == {"path": "/tmp/x", "cause": "disk full"}
