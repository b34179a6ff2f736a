"""Structured logging and OpenTelemetry spans for binrunner.

Log events go to stderr so that command output on stdout (tables, JSON
records, captured program output) stays machine readable. Spans come from
the global OpenTelemetry tracer provider; without an SDK they are no-ops.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer

logger = structlog.get_logger(__name__)

TRACER_NAME = "binrunner"

_tracer: Tracer | None = None


def get_tracer() -> Tracer:
    """Return the binrunner tracer, created on first use."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(TRACER_NAME)
    return _tracer


def configure_logging(
    *,
    log_level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Render JSON lines; otherwise use the console renderer.

    Example:
        >>> configure_logging(log_level="DEBUG", json_format=False)
    """
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        stream=sys.stderr,
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        force=True,
    )


@contextmanager
def span(
    name: str,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span]:
    """Create an OpenTelemetry span that records failures.

    Args:
        name: Span name.
        kind: Span kind.
        attributes: Optional span attributes.

    Yields:
        OpenTelemetry Span instance.
    """
    with get_tracer().start_as_current_span(
        name, kind=kind, attributes=attributes or {}, record_exception=False
    ) as s:
        try:
            yield s
        except Exception as exc:
            s.set_attribute("runner.error_type", type(exc).__name__)
            s.set_status(Status(StatusCode.ERROR, str(exc)))
            s.record_exception(exc)
            raise
        s.set_status(Status(StatusCode.OK))


@contextmanager
def runner_operation(
    operation: str,
    *,
    artifact_id: str | None = None,
    execution_id: str | None = None,
) -> Iterator[Span]:
    """Create a span for a runner operation with standard attributes.

    Args:
        operation: Operation name (e.g., "build", "execute").
        artifact_id: Artifact being operated on.
        execution_id: Execution being operated on.

    Yields:
        OpenTelemetry Span instance.

    Example:
        >>> with runner_operation("build", artifact_id=artifact.id):
        ...     orchestrator.build(artifact)
    """
    attrs: dict[str, Any] = {"runner.operation": operation}
    if artifact_id:
        attrs["runner.artifact_id"] = artifact_id
    if execution_id:
        attrs["runner.execution_id"] = execution_id

    with span(f"binrunner.{operation}", attributes=attrs) as s:
        yield s


def log_retry_attempt(
    operation: str,
    attempt: int,
    max_attempts: int,
    wait_seconds: float,
    error: str,
) -> None:
    """Log a retry attempt.

    Args:
        operation: Operation being retried.
        attempt: Current attempt number.
        max_attempts: Maximum attempts configured.
        wait_seconds: Time waiting before retry.
        error: Error message that triggered retry.
    """
    logger.warning(
        "operation_retry",
        operation=operation,
        attempt=attempt,
        max_attempts=max_attempts,
        wait_seconds=wait_seconds,
        error=error,
    )
