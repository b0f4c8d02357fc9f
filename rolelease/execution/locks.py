from __future__ import annotations

import threading

# ==================================================
# Read/Write Lock
# ==================================================


class ReadWriteLock:
    """
    Writer-preferring read/write lock with atomic write-to-read downgrade.

    Not re-entrant: a thread holding either mode must not acquire again.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a read lock held.")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() called without the write lock held.")
            self._writer = False
            self._cond.notify_all()

    def downgrade(self) -> None:
        """
        Turns the held write lock into a read lock with no release window.
        """
        with self._cond:
            if not self._writer:
                raise RuntimeError("downgrade() called without the write lock held.")
            self._writer = False
            self._readers += 1
            self._cond.notify_all()
