"""
Read/write lock for the connection registry.
"""

from contextlib import contextmanager
from threading import Condition, Lock


class ReadWriteLock:
    """
    Many readers or one writer.

    Writers are preferred: once a writer is waiting, new readers block
    until it has finished, so a steady stream of lookups cannot starve
    connect/disconnect.

    Usage:
        lock = ReadWriteLock()
        with lock.read():
            adapter = registry.get(key)
        with lock.write():
            registry[key] = adapter
    """

    def __init__(self):
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
