"""Tests for the document read-write lock."""

import threading
import time

import pytest

from clihub.utils.rwlock import ReadWriteLock


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_readers_share_the_lock():
    lock = ReadWriteLock("test")
    with lock.read_lock():
        with lock.read_lock():
            assert lock.readers == 2
    assert lock.readers == 0


def test_writer_excludes_readers_and_writers():
    lock = ReadWriteLock("test")
    with lock.read_lock():
        with pytest.raises(TimeoutError):
            lock.acquire_write(timeout=0.05)
    with lock.write_lock():
        assert lock.writer_active
        with pytest.raises(TimeoutError):
            lock.acquire_read(timeout=0.05)
    assert not lock.writer_active


def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock("test")
    acquired = threading.Event()

    def _writer():
        with lock.write_lock():
            acquired.set()

    lock.acquire_read()
    thread = threading.Thread(target=_writer)
    thread.start()
    try:
        assert _wait_until(lambda: len(lock._writer_queue) == 1)
        with pytest.raises(TimeoutError):
            lock.acquire_read(timeout=0.05)
        assert not acquired.is_set()
    finally:
        lock.release_read()
    thread.join(timeout=2.0)
    assert acquired.is_set()


def test_release_without_holder_raises():
    lock = ReadWriteLock("test")
    with pytest.raises(RuntimeError):
        lock.release_read()
    with pytest.raises(RuntimeError):
        lock.release_write()


def test_timed_out_writer_leaves_queue():
    lock = ReadWriteLock("test")
    with lock.read_lock():
        with pytest.raises(TimeoutError):
            lock.acquire_write(timeout=0.02)
    # A new reader must not wait for the abandoned writer.
    lock.acquire_read(timeout=0.1)
    lock.release_read()
