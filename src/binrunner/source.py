"""Source fetcher and compiler adapters.

This module provides:
- SourceFetcher: the interface the build orchestrator depends on
- GitGoFetcher: default implementation shelling out to ``git`` and ``go``

Every command runs without a shell. A non-zero exit raises CommandError
carrying the command's output for diagnostics.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from binrunner.config import BuildConfig
from binrunner.errors import CommandError
from binrunner.retry import create_retry_decorator

logger = structlog.get_logger(__name__)


@runtime_checkable
class SourceFetcher(Protocol):
    """Fetches source code and compiles it into an executable."""

    def clone_or_update(self, repo_url: str, branch: str, target_path: Path) -> None:
        """Clone ``repo_url`` at ``branch`` into ``target_path``, or update it."""
        ...

    def get_revision(self, path: Path) -> str:
        """Return the revision identifier checked out at ``path``."""
        ...

    def compile(self, source_path: Path, build_path: str, output_path: Path) -> None:
        """Compile ``source_path/build_path`` into ``output_path``."""
        ...


def run_command(
    command: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> str:
    """Run a command and return its standard output.

    Args:
        command: argv to execute.
        cwd: Working directory.
        env: Full environment for the child (inherits when None).

    Returns:
        Captured standard output.

    Raises:
        CommandError: If the command cannot start or exits non-zero.
    """
    logger.debug("command_started", command=command, cwd=str(cwd) if cwd else None)
    try:
        completed = subprocess.run(  # noqa: S603
            command,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise CommandError(command, returncode=None, output=str(exc)) from exc

    if completed.returncode != 0:
        output = "".join(part for part in (completed.stdout, completed.stderr) if part)
        raise CommandError(command, returncode=completed.returncode, output=output.strip())
    return completed.stdout


class GitGoFetcher:
    """Fetches sources with git and compiles them with ``go build``.

    Attributes:
        config: Toolchain configuration.

    Example:
        >>> fetcher = GitGoFetcher(BuildConfig())
        >>> fetcher.clone_or_update(
        ...     "https://github.com/example/hello.git", "main", Path("data/repos/repo_1")
        ... )
        >>> fetcher.get_revision(Path("data/repos/repo_1"))
        'abcdef1234567890...'
    """

    def __init__(self, config: BuildConfig | None = None) -> None:
        """Initialize the fetcher.

        Args:
            config: Toolchain configuration. Defaults are used if omitted.
        """
        self.config = config or BuildConfig()
        self._log = logger.bind(component="git_go_fetcher")
        self._retrying_clone_or_update = create_retry_decorator(
            self.config.fetch_retry,
            operation_name="clone_or_update",
        )(self._clone_or_update)

    def clone_or_update(self, repo_url: str, branch: str, target_path: Path) -> None:
        """Clone the repository, or fetch, checkout and pull if already present.

        Transient failures are retried according to ``config.fetch_retry``.

        Raises:
            CommandError: If a git command fails on the final attempt.
        """
        self._retrying_clone_or_update(repo_url, branch, target_path)

    def _clone_or_update(self, repo_url: str, branch: str, target_path: Path) -> None:
        if (target_path / ".git").exists():
            self._update_repo(target_path, branch)
        else:
            self._clone_repo(repo_url, branch, target_path)

    def _clone_repo(self, repo_url: str, branch: str, target_path: Path) -> None:
        git = self.config.git_executable
        target_path.parent.mkdir(parents=True, exist_ok=True)
        self._log.info("git_clone", repo_url=repo_url, branch=branch, path=str(target_path))
        try:
            run_command([git, "clone", "-b", branch, repo_url, str(target_path)])
        except CommandError:
            # a half-written checkout would make the next attempt fail
            shutil.rmtree(target_path, ignore_errors=True)
            raise

    def _update_repo(self, repo_path: Path, branch: str) -> None:
        git = self.config.git_executable
        self._log.info("git_update", branch=branch, path=str(repo_path))
        run_command([git, "fetch", "origin"], cwd=repo_path)
        run_command([git, "checkout", branch], cwd=repo_path)
        run_command([git, "pull", "origin", branch], cwd=repo_path)

    def get_revision(self, path: Path) -> str:
        """Return the commit hash of HEAD.

        Raises:
            CommandError: If ``git rev-parse`` fails.
        """
        output = run_command([self.config.git_executable, "rev-parse", "HEAD"], cwd=path)
        return output.strip()

    def compile(self, source_path: Path, build_path: str, output_path: Path) -> None:
        """Run ``go build -o <output_path> .`` inside the build subpath.

        Raises:
            CommandError: If the output directory cannot be created or the
                build fails.
        """
        build_dir = source_path / build_path if build_path else source_path
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CommandError(
                ["mkdir", str(output_path.parent)], returncode=None, output=str(exc)
            ) from exc

        env = {**os.environ, **self.config.build_env}
        self._log.info("go_build", build_dir=str(build_dir), output=str(output_path))
        run_command(
            [self.config.go_executable, "build", "-o", str(output_path.resolve()), "."],
            cwd=build_dir,
            env=env,
        )
