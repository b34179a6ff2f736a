"""Shared CLI state and runner construction."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from binrunner.cli.errors import translate_errors

if TYPE_CHECKING:
    from binrunner.service import RunnerService


@dataclass
class CLIState:
    """Options given to the top-level group, shared with subcommands."""

    config_path: Path | None = None


@contextmanager
def open_runner(state: CLIState | None) -> Iterator[RunnerService]:
    """Load configuration, configure logging and yield a runner.

    Waits for in-flight builds when the block exits.

    Raises:
        CLIError: If configuration or storage cannot be loaded.
    """
    # Import here to avoid heavy imports at CLI startup
    from binrunner.config import load_config
    from binrunner.factory import create_runner
    from binrunner.observability import configure_logging

    with translate_errors():
        config = load_config(state.config_path if state else None)
        configure_logging(
            log_level=config.logging.level,
            json_format=config.logging.json_format,
        )
        runner = create_runner(config)

    with runner:
        yield runner
