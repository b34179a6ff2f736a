"""Runner factory.

This module provides the create_runner() factory function that wires a
RunnerService from a RunnerConfig.
"""

from __future__ import annotations

import structlog

from binrunner.builder import BuildOrchestrator
from binrunner.catalog import ArtifactCatalog
from binrunner.config import RunnerConfig
from binrunner.engine import ExecutionEngine
from binrunner.execution_log import ExecutionLog
from binrunner.observability import runner_operation
from binrunner.service import RunnerService
from binrunner.source import GitGoFetcher, SourceFetcher

logger = structlog.get_logger(__name__)


def create_runner(
    config: RunnerConfig | None = None,
    *,
    fetcher: SourceFetcher | None = None,
) -> RunnerService:
    """Create a runner service from configuration.

    Loads the catalog snapshot so that previously registered artifacts are
    available immediately.

    Args:
        config: Runner configuration. Defaults are used if omitted.
        fetcher: Source fetcher override. Defaults to GitGoFetcher built
            from ``config.build``.

    Returns:
        RunnerService: Ready-to-use service.

    Raises:
        StorageError: If the catalog snapshot exists but cannot be loaded.

    Example:
        >>> from binrunner import create_runner, load_config
        >>> runner = create_runner(load_config())
        >>> runner.list_artifacts()
        []
    """
    config = config or RunnerConfig()
    storage = config.storage

    with runner_operation("create_runner"):
        catalog = ArtifactCatalog(storage.metadata_file, binary_dir=storage.binaries_dir)
        loaded = catalog.load()

        orchestrator = BuildOrchestrator(
            fetcher or GitGoFetcher(config.build),
            storage.source_dir,
            storage.binaries_dir,
        )
        engine = ExecutionEngine(config.executor)
        execution_log = ExecutionLog(
            storage.executions_dir, cache_size=storage.execution_cache_size
        )

        logger.info(
            "runner_created",
            storage_root=str(storage.root),
            artifacts=loaded,
        )
        return RunnerService(catalog, orchestrator, engine, execution_log)
