"""Data models for binrunner.

This module provides:
- ArtifactStatus / ExecutionStatus: lifecycle states
- ArtifactSpec: caller-supplied description of a build target
- Artifact: a registered build target as stored in the catalog
- ExecutionRequest: parameters of one run
- ExecutionRecord: outcome of one run

All models are frozen; state changes produce copies via ``model_copy``.
"""

from __future__ import annotations

import posixpath
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from binrunner.identifiers import Identifier

# Accepted repository URL prefixes (plus absolute local paths)
REPO_URL_PREFIXES = ("https://", "http://", "ssh://", "git://", "file://", "git@")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ArtifactStatus(str, Enum):
    """Lifecycle state of an artifact.

    Attributes:
        PENDING: Registered, never built
        BUILDING: A build is in progress
        READY: Last build succeeded; the binary can be executed
        FAILED: Last build failed at some stage
    """

    PENDING = "pending"
    BUILDING = "building"
    READY = "ready"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """State of a single run.

    Attributes:
        RUNNING: Process launched and not yet finished
        COMPLETED: Process exited with code zero
        FAILED: Process exited non-zero or was terminated
        TIMEOUT: Process exceeded its deadline and was killed
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ArtifactSpec(BaseModel):
    """Descriptive fields of a build target, as supplied by the caller.

    Attributes:
        name: Display name
        description: Free-form description
        repo_url: Source repository URL or absolute local path
        branch: Branch to build
        build_path: Directory inside the repository to compile

    Example:
        >>> spec = ArtifactSpec(
        ...     name="hello",
        ...     repo_url="https://github.com/example/hello.git",
        ...     branch="main",
        ...     build_path="cmd/hello",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    description: str = Field(default="", max_length=1000, description="Description")
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    branch: str = Field(..., min_length=1, description="Branch to build")
    build_path: str = Field(default="", description="Build subpath within the repository")

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        """Validate repository URL scheme."""
        v = v.strip()
        if not (v.startswith(REPO_URL_PREFIXES) or v.startswith("/")):
            msg = (
                "repo_url must be an http(s), ssh, git or file URL, "
                f"a git@host:path reference, or an absolute path, got: {v}"
            )
            raise ValueError(msg)
        return v

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        """Reject branch names that git would read as options."""
        v = v.strip()
        if not v or v.startswith("-"):
            msg = f"Invalid branch name: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("build_path")
    @classmethod
    def validate_build_path(cls, v: str) -> str:
        """Normalize the build subpath and keep it inside the repository."""
        v = v.strip().replace("\\", "/")
        if not v:
            return ""
        if v.startswith("/"):
            msg = f"build_path must be relative, got: {v}"
            raise ValueError(msg)
        normalized = posixpath.normpath(v)
        if normalized.split("/")[0] == "..":
            msg = f"build_path must stay inside the repository, got: {v}"
            raise ValueError(msg)
        return "" if normalized == "." else normalized


class Artifact(ArtifactSpec):
    """A managed build target.

    Attributes:
        id: Identifier assigned at registration (immutable)
        version: First 8 characters of the built revision
        binary_location: Path of the produced executable
        status: Lifecycle state
        last_built: Time of the last successful build
        created_at: Registration time
        updated_at: Time of the last catalog write

    Invariant:
        ``status == READY`` implies ``binary_location`` is set.
    """

    id: Identifier = Field(..., description="Artifact identifier")
    version: str = Field(default="", description="Built revision (short)")
    binary_location: str = Field(default="", description="Path of the built executable")
    status: ArtifactStatus = Field(default=ArtifactStatus.PENDING, description="Lifecycle state")
    last_built: datetime | None = Field(default=None, description="Last successful build")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update time")

    @model_validator(mode="after")
    def ready_requires_binary(self) -> Artifact:
        """A ready artifact must point at its executable."""
        if self.status == ArtifactStatus.READY and not self.binary_location:
            msg = "binary_location is required when status is 'ready'"
            raise ValueError(msg)
        return self

    @classmethod
    def from_spec(cls, spec: ArtifactSpec, artifact_id: str) -> Artifact:
        """Create a pending artifact from a caller-supplied spec.

        Args:
            spec: Descriptive fields.
            artifact_id: Identifier to assign.

        Returns:
            New Artifact in the PENDING state.
        """
        return cls(id=artifact_id, **spec.model_dump())

    def with_spec(self, spec: ArtifactSpec) -> Artifact:
        """Return a copy with descriptive fields replaced and lifecycle kept."""
        return self.model_copy(update=spec.model_dump())

    @property
    def is_ready(self) -> bool:
        """Check if the artifact can be executed."""
        return self.status == ArtifactStatus.READY


class ExecutionRequest(BaseModel):
    """Parameters of one run of a built artifact.

    Attributes:
        artifact_id: Artifact to execute
        args: Positional arguments
        env: Additional environment variables
        stdin: Content written to the process's standard input
        timeout: Timeout in seconds (0 uses the engine default)

    Example:
        >>> request = ExecutionRequest(artifact_id=artifact.id, args=["hello"])
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    artifact_id: str = Field(..., min_length=1, description="Artifact to execute")
    args: list[str] = Field(default_factory=list, description="Positional arguments")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment")
    stdin: str | None = Field(default=None, description="Standard input content")
    timeout: int = Field(default=0, ge=0, description="Timeout in seconds (0 = default)")

    @field_validator("env", mode="before")
    @classmethod
    def parse_env_pairs(cls, v: Any) -> Any:
        """Accept ``["KEY=VALUE", ...]`` in addition to a mapping."""
        if v is None:
            return {}
        if isinstance(v, list | tuple):
            parsed: dict[str, str] = {}
            for item in v:
                key, sep, value = str(item).partition("=")
                if not sep or not key:
                    msg = f"Environment entries must look like KEY=VALUE, got: {item!r}"
                    raise ValueError(msg)
                parsed[key] = value
            return parsed
        return v

    @field_validator("env")
    @classmethod
    def validate_env_keys(cls, v: dict[str, str]) -> dict[str, str]:
        """Reject keys the OS cannot represent."""
        for key in v:
            if not key or "=" in key or "\x00" in key:
                msg = f"Invalid environment variable name: {key!r}"
                raise ValueError(msg)
        return v


class ExecutionRecord(BaseModel):
    """Outcome of one run of one artifact.

    ``exit_code`` is ``-1`` when no OS exit status is available (timeout,
    or the process was killed by a signal).

    Attributes:
        id: Execution identifier, generated at launch
        artifact_id: Artifact that was executed
        status: Run state
        exit_code: Process exit status
        stdout: Captured standard output
        stderr: Captured standard error
        stdout_truncated: True if stdout exceeded the capture limit
        stderr_truncated: True if stderr exceeded the capture limit
        started_at: Launch time
        finished_at: Exit time
        duration_ms: Wall-clock duration in milliseconds
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Identifier = Field(..., description="Execution identifier")
    artifact_id: str = Field(default="", description="Executed artifact")
    status: ExecutionStatus = Field(default=ExecutionStatus.RUNNING, description="Run state")
    exit_code: int = Field(default=0, description="Process exit code")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    stdout_truncated: bool = Field(default=False, description="Stdout was truncated")
    stderr_truncated: bool = Field(default=False, description="Stderr was truncated")
    started_at: datetime = Field(default_factory=utc_now, description="Start time")
    finished_at: datetime | None = Field(default=None, description="Finish time")
    duration_ms: int = Field(default=0, ge=0, description="Duration in milliseconds")

    @property
    def finished(self) -> bool:
        """Check if the run has reached a terminal state."""
        return self.status != ExecutionStatus.RUNNING
