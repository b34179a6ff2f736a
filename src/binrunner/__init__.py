"""binrunner: build executables from source repositories and run them on demand.

This package provides:
- An artifact catalog persisted as a JSON snapshot
- A build orchestrator driving fetch, revision lookup and compile
- An execution engine with timeouts, bounded output capture and stop
- Structured logging via structlog and OpenTelemetry span tracing

Example:
    >>> from binrunner import ArtifactSpec, ExecutionRequest, create_runner, load_config
    >>> with create_runner(load_config()) as runner:
    ...     artifact = runner.register_artifact(
    ...         ArtifactSpec(
    ...             name="hello",
    ...             repo_url="https://github.com/example/hello.git",
    ...             branch="main",
    ...         )
    ...     )
    ...     runner.request_build(artifact.id).result()
    ...     record = runner.execute(
    ...         ExecutionRequest(artifact_id=artifact.id, args=["hello"])
    ...     )
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    # Factory function
    "create_runner",
    # Service
    "RunnerService",
    # Configuration
    "RunnerConfig",
    "load_config",
    # Data models
    "Artifact",
    "ArtifactSpec",
    "ArtifactStatus",
    "ExecutionRecord",
    "ExecutionRequest",
    "ExecutionStatus",
    # Exceptions
    "RunnerError",
    "ArtifactNotFoundError",
    "ArtifactNotReadyError",
    "BuildError",
    "BuildInProgressError",
    "ExecutionNotFoundError",
    "ExecutionNotLiveError",
    "InvalidIdentifierError",
    "ProcessLaunchError",
    "StorageError",
]

_MODELS = (
    "Artifact",
    "ArtifactSpec",
    "ArtifactStatus",
    "ExecutionRecord",
    "ExecutionRequest",
    "ExecutionStatus",
)

_ERRORS = (
    "RunnerError",
    "ArtifactNotFoundError",
    "ArtifactNotReadyError",
    "BuildError",
    "BuildInProgressError",
    "ExecutionNotFoundError",
    "ExecutionNotLiveError",
    "InvalidIdentifierError",
    "ProcessLaunchError",
    "StorageError",
)


def __getattr__(name: str) -> object:
    """Lazy import of public API members."""
    if name == "create_runner":
        from binrunner.factory import create_runner

        return create_runner
    if name == "RunnerService":
        from binrunner.service import RunnerService

        return RunnerService
    if name in ("RunnerConfig", "load_config"):
        from binrunner import config as config_module

        return getattr(config_module, name)
    if name in _MODELS:
        from binrunner import models as models_module

        return getattr(models_module, name)
    if name in _ERRORS:
        from binrunner import errors as errors_module

        return getattr(errors_module, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
