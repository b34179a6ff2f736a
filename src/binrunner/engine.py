"""Execution engine.

This module provides:
- LiveJobRegistry: execution id -> live process handle, used for stop
- ExecutionEngine: runs a built executable under a timeout and captures output

Each run gets a fresh execution identifier and a registry entry BEFORE the
process is spawned; a stop that lands in that window is honoured as soon as
the process exists. Children start in their own session so that a kill
reaches the whole process group. A run leaves the registry as soon as the
child is reaped, before its output pipes are drained; anything still left
in its process group is killed at that point.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from typing import IO

import structlog

from binrunner.config import ExecutorConfig
from binrunner.errors import ExecutionNotLiveError, ProcessLaunchError
from binrunner.identifiers import new_identifier
from binrunner.locks import ReadWriteLock
from binrunner.models import ExecutionRecord, ExecutionRequest, ExecutionStatus, utc_now
from binrunner.observability import runner_operation

logger = structlog.get_logger(__name__)

# Exit code reported when no OS exit status is available
NO_EXIT_CODE = -1

# Appended to a stream that exceeded the capture limit
TRUNCATION_MARKER = "\n[output truncated]"

_READ_CHUNK_SIZE = 64 * 1024

# Upper bound on waiting for pipe readers once the child has exited;
# a detached grandchild may keep a pipe open indefinitely
_READER_JOIN_SECONDS = 5.0

# How often a caller-supplied cancel event is checked
_CANCEL_POLL_SECONDS = 0.1


class _LiveJob:
    """Handle for one in-flight execution."""

    def __init__(self) -> None:
        self.process: subprocess.Popen[bytes] | None = None
        self.stop_requested = False
        self._lock = threading.Lock()

    def attach(self, process: subprocess.Popen[bytes]) -> bool:
        """Record the spawned process. Returns True if a stop is pending."""
        with self._lock:
            self.process = process
            return self.stop_requested

    def request_stop(self) -> None:
        """Flag the job as stopped and kill the process if it exists."""
        with self._lock:
            self.stop_requested = True
            process = self.process
        if process is not None:
            kill_process_group(process)


def kill_process_group(process: subprocess.Popen[bytes]) -> None:
    """Forcibly terminate a child and everything in its process group."""
    if process.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


def _kill_orphaned_group(pgid: int) -> None:
    """Kill whatever is left in the process group of a reaped child."""
    if not hasattr(os, "killpg"):
        return
    try:
        os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _wait(
    process: subprocess.Popen[bytes],
    job: _LiveJob,
    timeout: float,
    cancel: threading.Event | None,
) -> bool:
    """Wait for the child to exit. Returns True if the deadline passed first.

    A set ``cancel`` event stops the job the same way ``stop`` does.
    """
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return True
        if cancel is not None and cancel.is_set():
            job.request_stop()
            process.wait()
            return False
        step = remaining if cancel is None else min(remaining, _CANCEL_POLL_SECONDS)
        try:
            process.wait(timeout=step)
            return False
        except subprocess.TimeoutExpired:
            continue


class LiveJobRegistry:
    """Concurrency-safe map of running executions.

    Lookups hold the shared side of a reader/writer lock; insertions and
    removals hold the exclusive side. No signal is ever sent while the
    lock is held.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._jobs: dict[str, _LiveJob] = {}
        self._lock = ReadWriteLock()

    def add(self, execution_id: str, job: _LiveJob) -> None:
        """Register a job."""
        with self._lock.write():
            self._jobs[execution_id] = job

    def get(self, execution_id: str) -> _LiveJob | None:
        """Return the job for an execution, or None."""
        with self._lock.read():
            return self._jobs.get(execution_id)

    def remove(self, execution_id: str) -> None:
        """Deregister a job. Unknown identifiers are ignored."""
        with self._lock.write():
            self._jobs.pop(execution_id, None)

    def ids(self) -> list[str]:
        """Return identifiers of all live executions."""
        with self._lock.read():
            return list(self._jobs)

    def __len__(self) -> int:
        """Return the number of live executions."""
        with self._lock.read():
            return len(self._jobs)


class _BoundedCapture:
    """Drains a pipe into a buffer that keeps at most ``limit`` bytes.

    Bytes past the limit are read and discarded so the child never blocks
    on a full pipe.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.truncated = False
        self._chunks: list[bytes] = []
        self._size = 0
        self._lock = threading.Lock()

    def drain(self, stream: IO[bytes]) -> None:
        try:
            while True:
                chunk = stream.read1(_READ_CHUNK_SIZE)  # type: ignore[attr-defined]
                if not chunk:
                    break
                self._append(chunk)
        except (OSError, ValueError):
            # pipe closed underneath us after the reader was abandoned
            pass
        finally:
            stream.close()

    def _append(self, chunk: bytes) -> None:
        with self._lock:
            room = self.limit - self._size
            if room <= 0:
                self.truncated = True
                return
            if len(chunk) > room:
                chunk = chunk[:room]
                self.truncated = True
            self._chunks.append(chunk)
            self._size += len(chunk)

    def text(self) -> str:
        with self._lock:
            data = b"".join(self._chunks).decode("utf-8", errors="replace")
            truncated = self.truncated
        return data + TRUNCATION_MARKER if truncated else data


def _feed_stdin(stream: IO[bytes], data: bytes) -> None:
    try:
        stream.write(data)
    except BrokenPipeError:
        # the child exited or closed stdin without reading everything
        pass
    finally:
        try:
            stream.close()
        except BrokenPipeError:
            pass


class ExecutionEngine:
    """Runs built executables with a timeout, capture and cancellation.

    Attributes:
        config: Executor configuration (default timeout, capture limit)
        registry: Live job registry

    Example:
        >>> engine = ExecutionEngine(ExecutorConfig(timeout_seconds=30))
        >>> record = engine.execute(
        ...     "data/binaries/abc", ExecutionRequest(artifact_id="abc", args=["hello"])
        ... )
        >>> record.status, record.stdout
        (<ExecutionStatus.COMPLETED: 'completed'>, 'hello\\n')
    """

    def __init__(self, config: ExecutorConfig | None = None) -> None:
        """Initialize the engine.

        Args:
            config: Executor configuration. Defaults are used if omitted.
        """
        self.config = config or ExecutorConfig()
        self.registry = LiveJobRegistry()
        self._log = logger.bind(component="execution_engine")

    def effective_timeout(self, request: ExecutionRequest) -> float:
        """Return the request timeout, or the configured default if unset."""
        if request.timeout > 0:
            return float(request.timeout)
        return self.config.timeout_seconds

    def execute(
        self,
        binary_location: str,
        request: ExecutionRequest,
        *,
        on_start: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionRecord:
        """Run an executable to completion, timeout or stop.

        Blocks the calling thread until the process has exited and its
        output has been collected.

        Args:
            binary_location: Path of the executable.
            request: Arguments, environment, stdin and timeout.
            on_start: Called with the execution identifier once the process
                is running, so that callers can stop it from another thread.
            cancel: Event a caller sets when it gives up on the run. The
                process group is killed and the run ends FAILED, as with stop.

        Returns:
            Terminal ExecutionRecord (completed, failed or timeout).

        Raises:
            ProcessLaunchError: If the process could not be started.
        """
        record = ExecutionRecord(
            id=new_identifier(),
            artifact_id=request.artifact_id,
            status=ExecutionStatus.RUNNING,
            started_at=utc_now(),
        )
        log = self._log.bind(execution_id=record.id, artifact_id=request.artifact_id)
        timeout = self.effective_timeout(request)

        job = _LiveJob()
        self.registry.add(record.id, job)
        try:
            with runner_operation(
                "execute", artifact_id=request.artifact_id, execution_id=record.id
            ) as span:
                result = self._run(
                    binary_location, request, record, job, timeout, log, on_start, cancel
                )
                span.set_attribute("runner.status", result.status.value)
                span.set_attribute("runner.exit_code", result.exit_code)
                return result
        finally:
            self.registry.remove(record.id)

    def _run(
        self,
        binary_location: str,
        request: ExecutionRequest,
        record: ExecutionRecord,
        job: _LiveJob,
        timeout: float,
        log: structlog.stdlib.BoundLogger,
        on_start: Callable[[str], None] | None,
        cancel: threading.Event | None,
    ) -> ExecutionRecord:
        env = {**os.environ, **request.env}
        started = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                [binary_location, *request.args],
                stdin=subprocess.PIPE if request.stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            log.error("execution_launch_failed", binary=binary_location, error=str(exc))
            raise ProcessLaunchError(binary_location, str(exc)) from exc

        log.info(
            "execution_started",
            binary=binary_location,
            pid=process.pid,
            timeout_seconds=timeout,
        )

        stdout = _BoundedCapture(self.config.max_output_bytes)
        stderr = _BoundedCapture(self.config.max_output_bytes)
        threads = [
            threading.Thread(target=stdout.drain, args=(process.stdout,), daemon=True),
            threading.Thread(target=stderr.drain, args=(process.stderr,), daemon=True),
        ]
        if request.stdin is not None:
            threads.append(
                threading.Thread(
                    target=_feed_stdin,
                    args=(process.stdin, request.stdin.encode()),
                    daemon=True,
                )
            )
        for thread in threads:
            thread.start()

        timed_out = False
        try:
            if job.attach(process):
                kill_process_group(process)
            if on_start is not None:
                on_start(record.id)
            timed_out = _wait(process, job, timeout, cancel)
        finally:
            if process.returncode is None:
                kill_process_group(process)
                process.wait()
            finished_at = utc_now()
            duration_ms = int((time.monotonic() - started) * 1000)
            # the run is over once the child is reaped; stop must not find it
            self.registry.remove(record.id)
            # leftovers in the group would hold the pipes open
            _kill_orphaned_group(process.pid)
            for thread in threads:
                thread.join(_READER_JOIN_SECONDS)

        returncode = process.returncode

        if timed_out:
            status = ExecutionStatus.TIMEOUT
            exit_code = NO_EXIT_CODE
        elif returncode == 0:
            status = ExecutionStatus.COMPLETED
            exit_code = 0
        else:
            status = ExecutionStatus.FAILED
            # negative return codes mean the child died from a signal
            exit_code = returncode if returncode > 0 else NO_EXIT_CODE

        result = record.model_copy(
            update={
                "status": status,
                "exit_code": exit_code,
                "stdout": stdout.text(),
                "stderr": stderr.text(),
                "stdout_truncated": stdout.truncated,
                "stderr_truncated": stderr.truncated,
                "finished_at": finished_at,
                "duration_ms": duration_ms,
            }
        )
        log_event = {
            ExecutionStatus.COMPLETED: "execution_completed",
            ExecutionStatus.FAILED: "execution_failed",
            ExecutionStatus.TIMEOUT: "execution_timeout",
        }[status]
        log.info(
            log_event,
            exit_code=exit_code,
            duration_ms=duration_ms,
            stopped=job.stop_requested,
        )
        return result

    def stop(self, execution_id: str) -> None:
        """Forcibly terminate a live execution.

        The run finishes in the ``failed`` state. The signal is sent outside
        the registry lock.

        Raises:
            ExecutionNotLiveError: If no live execution has this identifier.
        """
        job = self.registry.get(execution_id)
        if job is None:
            raise ExecutionNotLiveError(execution_id)
        self._log.info("execution_stop_requested", execution_id=execution_id)
        job.request_stop()

    def running(self) -> list[str]:
        """Return identifiers of executions currently in flight."""
        return self.registry.ids()
