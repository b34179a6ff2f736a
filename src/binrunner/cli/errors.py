"""CLI error handling for binrunner.

This module wraps binrunner exceptions in CLIError so that commands
print a user-friendly message and exit with an appropriate code.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click
from pydantic import ValidationError as PydanticValidationError

from binrunner.cli.output import error
from binrunner.errors import (
    ArtifactNotFoundError,
    ArtifactNotReadyError,
    BuildError,
    BuildInProgressError,
    ConfigurationError,
    ExecutionNotFoundError,
    InvalidIdentifierError,
    RunnerError,
)

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails


# Exit codes following sysexits.h convention
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1  # User error (validation, unknown id, wrong state)
EXIT_SYSTEM_ERROR = 2  # System error (storage, process launch)

# Errors caused by what the user asked for rather than by the environment
USER_ERRORS: tuple[type[RunnerError], ...] = (
    ArtifactNotFoundError,
    ArtifactNotReadyError,
    BuildError,
    BuildInProgressError,
    ConfigurationError,
    ExecutionNotFoundError,
    InvalidIdentifierError,
)


class CLIError(click.ClickException):
    """A failure reported to the user as a single message and an exit code."""

    def __init__(self, message: str, exit_code: int = EXIT_USER_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def show(self, file: object = None) -> None:
        # click passes its own stream; output goes through the Rich stderr console
        error(self.format_message())


def format_pydantic_error(err: PydanticValidationError) -> str:
    """Format Pydantic validation error into user-friendly message.

    Example:
        >>> format_pydantic_error(err)
        "Validation failed:\\n  - repo_url: Value error, repo_url must be ..."
    """
    errors: list[ErrorDetails] = err.errors()
    lines = ["Validation failed:"]

    for e in errors:
        loc = ".".join(str(x) for x in e["loc"])
        msg = e["msg"]
        lines.append(f"  - {loc}: {msg}")

    return "\n".join(lines)


def to_cli_error(err: RunnerError) -> CLIError:
    """Map a binrunner exception to a CLIError with the matching exit code.

    Build errors carry the failing command's output, which is appended to
    the message.
    """
    message = str(err)
    if isinstance(err, BuildError) and err.output:
        message = f"{message}\n{err.output}"
    exit_code = EXIT_USER_ERROR if isinstance(err, USER_ERRORS) else EXIT_SYSTEM_ERROR
    return CLIError(message, exit_code=exit_code)


@contextmanager
def translate_errors() -> Iterator[None]:
    """Convert binrunner and validation errors raised in the block to CLIError.

    Example:
        >>> with translate_errors():
        ...     runner.get_artifact(artifact_id)
    """
    try:
        yield
    except PydanticValidationError as err:
        raise CLIError(format_pydantic_error(err)) from None
    except RunnerError as err:
        raise to_cli_error(err) from None
