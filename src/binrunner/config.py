"""Pydantic configuration models for binrunner.

This module provides:
- RetryConfig: Retry policy for source fetches
- StorageConfig: Storage roots for metadata, sources, binaries and executions
- ExecutorConfig: Execution engine defaults
- BuildConfig: Toolchain commands used by the source fetcher
- LoggingConfig: structlog output settings
- RunnerConfig: Root configuration, loadable from YAML
- load_config: Configuration discovery (explicit path, env var, cwd)
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from binrunner.errors import ConfigurationError

logger = structlog.get_logger(__name__)

# Environment variable pointing at a configuration file
CONFIG_ENV_VAR = "BINRUNNER_CONFIG"

# Configuration file looked up in the working directory
CONFIG_FILE_NAME = "binrunner.yaml"

# Module constants for Pydantic field descriptions (S1192)
TIMEOUT_DESCRIPTION = "Timeout in seconds"

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024


class RetryConfig(BaseModel):
    """Retry policy for transient source fetch failures.

    Implements exponential backoff with jitter.

    Attributes:
        max_attempts: Maximum attempts (1-10, default 2; 1 disables retry).
        initial_wait_seconds: Initial backoff wait (default 1.0).
        max_wait_seconds: Maximum backoff cap (default 10.0).
        jitter_seconds: Random jitter range (default 0.5).

    Example:
        >>> config = RetryConfig(max_attempts=3, initial_wait_seconds=0.5)
        >>> config.max_attempts
        3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=2, ge=1, le=10, description="Maximum attempts")
    initial_wait_seconds: float = Field(
        default=1.0, ge=0.0, le=30.0, description="Initial backoff wait in seconds"
    )
    max_wait_seconds: float = Field(
        default=10.0, ge=0.0, le=300.0, description="Maximum backoff wait in seconds"
    )
    jitter_seconds: float = Field(
        default=0.5, ge=0.0, le=10.0, description="Random jitter range in seconds"
    )

    @field_validator("max_wait_seconds")
    @classmethod
    def max_wait_must_exceed_initial(cls, v: float, info: object) -> float:
        """Validate that max_wait_seconds >= initial_wait_seconds."""
        data = getattr(info, "data", {})
        initial = data.get("initial_wait_seconds", 1.0)
        if v < initial:
            msg = f"max_wait_seconds ({v}) must be >= initial_wait_seconds ({initial})"
            raise ValueError(msg)
        return v


class StorageConfig(BaseModel):
    """Storage locations.

    Layout under ``root``::

        metadata/binaries.json   artifact catalog snapshot
        executions/<id>.json     execution records
        repos/repo_<id>/         source checkouts (unless repo_dir is set)
        binaries/<id>            built executables (unless binary_dir is set)

    Attributes:
        root: Storage root directory
        repo_dir: Source checkout directory override
        binary_dir: Built executable directory override
        execution_cache_size: Execution records kept in memory
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    root: Path = Field(default=Path("./data"), description="Storage root")
    repo_dir: Path | None = Field(default=None, description="Source checkout directory")
    binary_dir: Path | None = Field(default=None, description="Binary output directory")
    execution_cache_size: int = Field(
        default=1024, ge=0, description="Execution records cached in memory"
    )

    @property
    def metadata_file(self) -> Path:
        """Path of the artifact catalog snapshot."""
        return self.root / "metadata" / "binaries.json"

    @property
    def executions_dir(self) -> Path:
        """Directory holding one JSON file per execution record."""
        return self.root / "executions"

    @property
    def source_dir(self) -> Path:
        """Directory holding per-artifact source checkouts."""
        return self.repo_dir if self.repo_dir is not None else self.root / "repos"

    @property
    def binaries_dir(self) -> Path:
        """Directory holding built executables."""
        return self.binary_dir if self.binary_dir is not None else self.root / "binaries"


class ExecutorConfig(BaseModel):
    """Execution engine configuration.

    Attributes:
        timeout_seconds: Default run timeout when a request gives none
        max_concurrent: Advisory concurrency limit (not enforced)
        max_output_bytes: Capture limit per output stream
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(default=300.0, gt=0, description=TIMEOUT_DESCRIPTION)
    max_concurrent: int = Field(default=10, ge=1, description="Advisory concurrency limit")
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES, ge=1, description="Capture limit per stream"
    )


class BuildConfig(BaseModel):
    """Toolchain configuration for fetching and compiling sources.

    Attributes:
        git_executable: git command
        go_executable: go command
        build_env: Extra environment for the compile step
        fetch_retry: Retry policy for clone/update
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    git_executable: str = Field(default="git", min_length=1, description="git command")
    go_executable: str = Field(default="go", min_length=1, description="go command")
    build_env: dict[str, str] = Field(
        default_factory=lambda: {"CGO_ENABLED": "0"},
        description="Extra environment for the compile step",
    )
    fetch_retry: RetryConfig = Field(
        default_factory=RetryConfig, description="Retry policy for source fetches"
    )


class LoggingConfig(BaseModel):
    """Structured logging configuration.

    Attributes:
        level: Minimum log level
        json_format: Render JSON instead of console output
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = Field(default="INFO", description="Log level")
    json_format: bool = Field(default=True, description="Emit JSON log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize and validate the level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level


class RunnerConfig(BaseModel):
    """Root binrunner configuration.

    Example:
        >>> config = RunnerConfig.from_yaml(Path("binrunner.yaml"))
        >>> config.executor.timeout_seconds
        300.0

        >>> config = RunnerConfig(storage=StorageConfig(root=Path("/var/lib/binrunner")))
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    storage: StorageConfig = Field(default_factory=StorageConfig, description="Storage")
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig, description="Executor")
    build: BuildConfig = Field(default_factory=BuildConfig, description="Build toolchain")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging")

    @classmethod
    def from_yaml(cls, path: Path) -> RunnerConfig:
        """Load RunnerConfig from a YAML file.

        Relative storage paths are kept relative to the working directory.

        Args:
            path: Path to the YAML file.

        Returns:
            Parsed and validated RunnerConfig.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid.
        """
        if not path.exists():
            raise ConfigurationError("Configuration file not found", file_path=str(path))

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Invalid YAML: {exc}", file_path=str(path)
            ) from exc

        if data is None:
            data = {}

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {exc}", file_path=str(path)
            ) from exc


def load_config(path: Path | None = None) -> RunnerConfig:
    """Resolve and load configuration.

    Resolution order:
    1. Explicit ``path``
    2. ``$BINRUNNER_CONFIG``
    3. ``./binrunner.yaml``
    4. Built-in defaults

    Args:
        path: Explicit configuration file.

    Returns:
        Validated RunnerConfig.

    Raises:
        ConfigurationError: If an explicitly named file is missing or invalid.
    """
    if path is not None:
        logger.debug("config_explicit", path=str(path))
        return RunnerConfig.from_yaml(path)

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        logger.debug("config_from_env", path=env_path, env_var=CONFIG_ENV_VAR)
        return RunnerConfig.from_yaml(Path(env_path))

    local = Path(CONFIG_FILE_NAME)
    if local.exists():
        logger.debug("config_from_cwd", path=str(local))
        return RunnerConfig.from_yaml(local)

    logger.debug("config_defaults")
    return RunnerConfig()
