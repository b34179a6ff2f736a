"""Shared pytest fixtures for binrunner tests.

This module provides common fixtures used across unit and integration
tests: structlog configuration, temporary storage roots, a scripted
source fetcher and small helper programs run by the current interpreter.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest
import structlog

from binrunner.builder import BuildOrchestrator
from binrunner.catalog import ArtifactCatalog
from binrunner.config import ExecutorConfig, RunnerConfig, StorageConfig
from binrunner.engine import ExecutionEngine
from binrunner.errors import CommandError
from binrunner.execution_log import ExecutionLog
from binrunner.models import Artifact, ArtifactSpec
from binrunner.service import RunnerService

# Echoes its first argument, or sleeps when the argument is "sleep"
ECHO_PROGRAM = """\
import sys, time
arg = sys.argv[1] if len(sys.argv) > 1 else ""
if arg == "sleep":
    time.sleep(10)
print(arg)
"""


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Configure structlog to output to stdout for test capture.

    Without this, structlog may use different processors depending on
    test execution order.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,  # Important for test isolation
    )


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    """Return a StorageConfig rooted in a temporary directory."""
    return StorageConfig(root=tmp_path / "data")


@pytest.fixture
def runner_config(storage_config: StorageConfig) -> RunnerConfig:
    """Return a RunnerConfig using temporary storage and a short timeout."""
    return RunnerConfig(
        storage=storage_config,
        executor=ExecutorConfig(timeout_seconds=30),
    )


@pytest.fixture
def sample_spec() -> ArtifactSpec:
    """Return a minimal valid ArtifactSpec."""
    return ArtifactSpec(
        name="hello",
        description="prints its argument",
        repo_url="https://github.com/example/hello.git",
        branch="main",
        build_path="cmd/hello",
    )


@pytest.fixture
def sample_artifact(sample_spec: ArtifactSpec) -> Artifact:
    """Return a pending Artifact with a fixed identifier."""
    return Artifact.from_spec(sample_spec, "artifact-1")


@pytest.fixture
def echo_binary(tmp_path: Path) -> str:
    """Return the path of an executable that echoes its first argument.

    The program is a Python script with a shebang for the running
    interpreter, so no compiler is needed.
    """
    path = tmp_path / "echo-bin"
    path.write_text(f"#!{sys.executable}\n{ECHO_PROGRAM}")
    path.chmod(0o755)
    return str(path)


class FakeFetcher:
    """Scripted SourceFetcher.

    Records every call. ``compile`` writes a copy of ``program`` to the
    output path. Any step can be made to fail by naming it in ``fail``.
    """

    def __init__(
        self,
        *,
        revision: str = "abcdef1234567890",
        program: str = ECHO_PROGRAM,
        fail: str | None = None,
    ) -> None:
        self.revision = revision
        self.program = program
        self.fail = fail
        self.calls: list[tuple[str, ...]] = []

    def _maybe_fail(self, step: str, command: list[str]) -> None:
        if self.fail == step:
            raise CommandError(command, returncode=1, output=f"{step} exploded")

    def clone_or_update(self, repo_url: str, branch: str, target_path: Path) -> None:
        self.calls.append(("clone_or_update", repo_url, branch, str(target_path)))
        self._maybe_fail("fetch", ["git", "clone"])
        target_path.mkdir(parents=True, exist_ok=True)

    def get_revision(self, path: Path) -> str:
        self.calls.append(("get_revision", str(path)))
        self._maybe_fail("revision", ["git", "rev-parse"])
        return self.revision

    def compile(self, source_path: Path, build_path: str, output_path: Path) -> None:
        self.calls.append(("compile", str(source_path), build_path, str(output_path)))
        self._maybe_fail("compile", ["go", "build"])
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(f"#!{sys.executable}\n{self.program}")


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    """Return a FakeFetcher that succeeds at every step."""
    return FakeFetcher()


@pytest.fixture
def make_fetcher() -> type[FakeFetcher]:
    """Return the FakeFetcher class for tests that need custom behavior."""
    return FakeFetcher


@pytest.fixture
def make_service(
    runner_config: RunnerConfig,
) -> Callable[[FakeFetcher], RunnerService]:
    """Factory fixture building a RunnerService over temporary storage."""

    def _make(fetcher: FakeFetcher) -> RunnerService:
        storage = runner_config.storage
        catalog = ArtifactCatalog(storage.metadata_file, binary_dir=storage.binaries_dir)
        catalog.load()
        return RunnerService(
            catalog,
            BuildOrchestrator(fetcher, storage.source_dir, storage.binaries_dir),
            ExecutionEngine(runner_config.executor),
            ExecutionLog(storage.executions_dir),
        )

    return _make
