"""Read-write lock for the shared configuration document.

Concurrent readers, exclusive writers, writer preference: once a writer is
waiting, new readers queue behind it so a steady stream of queries cannot
starve a mutation. Writers are served in FIFO order.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator, Optional

from clihub.utils.log import get_logger

logger = get_logger()


class ReadWriteLock:
    """Threading-based read-write lock with writer preference."""

    def __init__(self, name: str = "", contention_warn_s: float = 1.0) -> None:
        self._name = name or f"ReadWriteLock-{id(self):x}"
        self._contention_warn_s = contention_warn_s
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writer_queue: Deque[object] = deque()

    def acquire_read(self, timeout: Optional[float] = None) -> None:
        deadline = (time.monotonic() + timeout) if timeout is not None else None
        with self._cond:
            while self._writer_active or self._writer_queue:
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError(f"[{self._name}] Read lock acquire timed out after {timeout}s")
                self._cond.wait(timeout=remaining)
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError(f"[{self._name}] release_read called with no active readers")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> None:
        started = time.monotonic()
        deadline = (started + timeout) if timeout is not None else None
        my_turn = object()
        with self._cond:
            self._writer_queue.append(my_turn)
            try:
                while (
                    self._writer_queue[0] is not my_turn
                    or self._readers > 0
                    or self._writer_active
                ):
                    remaining = None
                    if deadline is not None:
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            raise TimeoutError(
                                f"[{self._name}] Write lock acquire timed out after {timeout}s"
                            )
                    self._cond.wait(timeout=remaining)
                self._writer_queue.popleft()
                self._writer_active = True
            except BaseException:
                try:
                    self._writer_queue.remove(my_turn)
                except ValueError:
                    pass
                self._cond.notify_all()
                raise

        waited = time.monotonic() - started
        if waited > self._contention_warn_s:
            logger.warning(
                "[rwlock] Write lock acquisition took %.1fms",
                waited * 1000.0,
                extra={"lock": self._name},
            )

    def release_write(self) -> None:
        with self._cond:
            if not self._writer_active:
                raise RuntimeError(f"[{self._name}] release_write called with no active writer")
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_lock(self, timeout: Optional[float] = None) -> Iterator[None]:
        self.acquire_read(timeout)
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_lock(self, timeout: Optional[float] = None) -> Iterator[None]:
        self.acquire_write(timeout)
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer_active


__all__ = ["ReadWriteLock"]
