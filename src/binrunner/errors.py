"""Custom exceptions for binrunner.

This module defines the exception hierarchy:
- RunnerError (base)
- ArtifactNotFoundError
- ExecutionNotFoundError
  - ExecutionNotLiveError
- InvalidIdentifierError
- StorageError
- CommandError
- BuildError
  - FetchError
  - RevisionError
  - CompileError
- BuildInProgressError
- ArtifactNotReadyError
- ProcessLaunchError
- ConfigurationError

A run that exceeds its deadline is not an error: it ends in the
``timeout`` execution state.
"""

from __future__ import annotations

from enum import Enum


class RunnerError(Exception):
    """Base exception for all binrunner operations.

    Attributes:
        message: Human-readable error description.
        details: Optional additional context about the error.

    Example:
        >>> try:
        ...     service.get_artifact("missing")
        ... except RunnerError as e:
        ...     print(f"Runner error: {e}")
    """

    def __init__(self, message: str, *, details: dict[str, str] | None = None) -> None:
        """Initialize RunnerError.

        Args:
            message: Human-readable error description.
            details: Optional additional context about the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details if present."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ArtifactNotFoundError(RunnerError):
    """No artifact is registered under the given identifier."""

    def __init__(self, artifact_id: str, message: str | None = None) -> None:
        """Initialize ArtifactNotFoundError.

        Args:
            artifact_id: The identifier that was looked up.
            message: Optional custom error message.
        """
        msg = message or f"Artifact not found: {artifact_id}"
        super().__init__(msg, details={"artifact_id": artifact_id})
        self.artifact_id = artifact_id


class ExecutionNotFoundError(RunnerError):
    """No execution record exists for the given identifier."""

    def __init__(self, execution_id: str, message: str | None = None) -> None:
        """Initialize ExecutionNotFoundError.

        Args:
            execution_id: The identifier that was looked up.
            message: Optional custom error message.
        """
        msg = message or f"Execution not found: {execution_id}"
        super().__init__(msg, details={"execution_id": execution_id})
        self.execution_id = execution_id


class ExecutionNotLiveError(ExecutionNotFoundError):
    """Stop was requested for an execution that is unknown or already finished.

    Example:
        >>> try:
        ...     engine.stop(execution_id)
        ... except ExecutionNotLiveError:
        ...     print("not found or already finished")
    """

    def __init__(self, execution_id: str) -> None:
        """Initialize ExecutionNotLiveError.

        Args:
            execution_id: The identifier passed to stop.
        """
        super().__init__(
            execution_id,
            message=f"Execution {execution_id} not found or already finished",
        )


class InvalidIdentifierError(RunnerError):
    """An identifier failed the path-safety check.

    Raised before any filesystem access when an externally supplied
    identifier is empty, contains a path separator, a parent-directory
    sequence, or characters outside the identifier alphabet.
    """

    def __init__(self, value: str, reason: str = "invalid identifier") -> None:
        """Initialize InvalidIdentifierError.

        Args:
            value: The rejected identifier.
            reason: Why the identifier was rejected.
        """
        super().__init__(f"Invalid identifier: {reason}", details={"identifier": repr(value)})
        self.value = value
        self.reason = reason


class StorageError(RunnerError):
    """Persisting or loading state failed.

    The in-memory view is not rolled back when a snapshot write fails, so
    memory and disk may disagree until the next successful write.
    """

    def __init__(
        self,
        message: str = "Storage operation failed",
        *,
        path: str | None = None,
        cause: str | None = None,
    ) -> None:
        """Initialize StorageError.

        Args:
            message: Human-readable error description.
            path: The file that could not be read or written.
            cause: The underlying I/O error.
        """
        details: dict[str, str] = {}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = cause
        super().__init__(message, details=details)
        self.path = path
        self.cause = cause


class CommandError(RunnerError):
    """An external command exited non-zero or could not be started.

    Attributes:
        command: The argv that was executed.
        returncode: Exit status, or None if the command never started.
        output: Combined stdout and stderr of the command.
    """

    def __init__(
        self,
        command: list[str],
        *,
        returncode: int | None,
        output: str = "",
    ) -> None:
        """Initialize CommandError.

        Args:
            command: The argv that was executed.
            returncode: Exit status, or None if the command never started.
            output: Combined stdout and stderr.
        """
        name = " ".join(command[:2])
        if returncode is None:
            message = f"{name} could not be started"
        else:
            message = f"{name} failed with exit code {returncode}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output

    def __str__(self) -> str:
        """Return the message followed by the command output."""
        if self.output:
            return f"{self.message}\nOutput: {self.output}"
        return self.message


class BuildStage(str, Enum):
    """Build step that produced a BuildError."""

    FETCH = "fetch"
    REVISION = "revision"
    COMPILE = "compile"


class BuildError(RunnerError):
    """A build failed; tagged with the stage that failed.

    Attributes:
        artifact_id: Artifact being built.
        stage: The failing stage.
        output: Diagnostic output of the failing command.
    """

    stage: BuildStage

    def __init__(self, artifact_id: str, message: str, *, output: str = "") -> None:
        """Initialize BuildError.

        Args:
            artifact_id: Artifact being built.
            message: Human-readable error description.
            output: Diagnostic output of the failing command.
        """
        super().__init__(
            message,
            details={"artifact_id": artifact_id, "stage": self.stage.value},
        )
        self.artifact_id = artifact_id
        self.output = output


class FetchError(BuildError):
    """Cloning or updating the source repository failed."""

    stage = BuildStage.FETCH


class RevisionError(BuildError):
    """Reading the fetched revision identifier failed."""

    stage = BuildStage.REVISION


class CompileError(BuildError):
    """Compiling the fetched source failed."""

    stage = BuildStage.COMPILE


class BuildInProgressError(RunnerError):
    """A build is already running for this artifact."""

    def __init__(self, artifact_id: str) -> None:
        """Initialize BuildInProgressError.

        Args:
            artifact_id: Artifact whose build is in flight.
        """
        super().__init__(
            f"Build already in progress for artifact {artifact_id}",
            details={"artifact_id": artifact_id},
        )
        self.artifact_id = artifact_id


class ArtifactNotReadyError(RunnerError):
    """Execution was requested for an artifact that is not in the ready state."""

    def __init__(self, artifact_id: str, status: str) -> None:
        """Initialize ArtifactNotReadyError.

        Args:
            artifact_id: The artifact that was requested.
            status: Its current lifecycle state.
        """
        super().__init__(
            "Artifact is not ready for execution",
            details={"artifact_id": artifact_id, "status": status},
        )
        self.artifact_id = artifact_id
        self.status = status


class ProcessLaunchError(RunnerError):
    """The child process could not be started."""

    def __init__(self, binary_location: str, cause: str) -> None:
        """Initialize ProcessLaunchError.

        Args:
            binary_location: Executable that failed to start.
            cause: The underlying OS error.
        """
        super().__init__(
            "Failed to start process",
            details={"binary": binary_location, "cause": cause},
        )
        self.binary_location = binary_location
        self.cause = cause


class ConfigurationError(RunnerError):
    """Configuration file could not be found, parsed or validated."""

    def __init__(self, message: str, *, file_path: str | None = None) -> None:
        """Initialize ConfigurationError.

        Args:
            message: Human-readable error description.
            file_path: Configuration file involved, if any.
        """
        super().__init__(message, details={"file": file_path} if file_path else None)
        self.file_path = file_path
