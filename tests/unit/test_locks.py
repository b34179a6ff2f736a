"""Unit tests for the reader/writer lock."""

from __future__ import annotations

import threading
import time

from binrunner.locks import ReadWriteLock


class TestReadWriteLock:
    """Tests for ReadWriteLock."""

    def test_readers_share(self) -> None:
        """Test two readers can hold the lock at the same time."""
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=2)

        def reader() -> None:
            with lock.read():
                both_inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert not any(t.is_alive() for t in threads)
        assert not both_inside.broken

    def test_writer_excludes_readers(self) -> None:
        """Test a reader waits while a writer holds the lock."""
        lock = ReadWriteLock()
        events: list[str] = []
        lock.acquire_write()

        def reader() -> None:
            with lock.read():
                events.append("read")

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)
        events.append("write-done")
        lock.release_write()
        t.join(timeout=5)

        assert events == ["write-done", "read"]

    def test_waiting_writer_blocks_new_readers(self) -> None:
        """Test a queued writer goes before readers that arrive after it."""
        lock = ReadWriteLock()
        events: list[str] = []
        lock.acquire_read()

        def writer() -> None:
            with lock.write():
                events.append("write")

        def late_reader() -> None:
            with lock.read():
                events.append("read")

        w = threading.Thread(target=writer)
        w.start()
        time.sleep(0.05)
        r = threading.Thread(target=late_reader)
        r.start()
        time.sleep(0.05)
        assert events == []

        lock.release_read()
        w.join(timeout=5)
        r.join(timeout=5)

        assert events == ["write", "read"]

    def test_context_manager_releases_on_error(self) -> None:
        """Test the lock is released when the block raises."""
        lock = ReadWriteLock()
        try:
            with lock.write():
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        acquired = threading.Event()

        def writer() -> None:
            with lock.write():
                acquired.set()

        t = threading.Thread(target=writer)
        t.start()
        t.join(timeout=5)
        assert acquired.is_set()
