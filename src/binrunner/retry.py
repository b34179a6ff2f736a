"""Configurable retry policies with tenacity.

Source fetches talk to remote repositories and occasionally fail for
transient reasons; this module wraps them with exponential backoff.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from binrunner.config import RetryConfig
from binrunner.errors import CommandError
from binrunner.observability import log_retry_attempt

P = ParamSpec("P")
R = TypeVar("R")

# Default exceptions that trigger retry
DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (CommandError,)


def create_retry_decorator(
    config: RetryConfig,
    *,
    retry_exceptions: tuple[type[Exception], ...] | None = None,
    operation_name: str | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Create a retry decorator with the specified configuration.

    The last exception is re-raised unchanged once attempts are exhausted.

    Args:
        config: RetryConfig with retry policy settings.
        retry_exceptions: Exception types that trigger retry.
            Defaults to CommandError.
        operation_name: Name for logging purposes.

    Returns:
        Decorator function that adds retry behavior.

    Example:
        >>> config = RetryConfig(max_attempts=3)
        >>> @create_retry_decorator(config, operation_name="git_clone")
        ... def clone() -> None:
        ...     run_git(["clone", url, path])
    """
    exceptions = retry_exceptions or DEFAULT_RETRY_EXCEPTIONS

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        op_name = operation_name or func.__name__

        def before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            log_retry_attempt(
                operation=op_name,
                attempt=state.attempt_number,
                max_attempts=config.max_attempts,
                wait_seconds=state.next_action.sleep if state.next_action else 0.0,
                error=str(exc),
            )

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            retrying = Retrying(
                retry=retry_if_exception_type(exceptions),
                stop=stop_after_attempt(config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=config.initial_wait_seconds,
                    max=config.max_wait_seconds,
                    jitter=config.jitter_seconds,
                ),
                before_sleep=before_sleep,
                reraise=True,
            )
            return retrying(func, *args, **kwargs)

        return wrapper

    return decorator
