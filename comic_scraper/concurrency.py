"""Cancellation token and the write gate that serializes catalog commits.

The crawler and the download scheduler can run at the same time against the
same source. Each of them fetches, parses and downloads without any locking,
but every catalog commit is wrapped in ``WriteGate.commit_section()`` so that
two commits never interleave. The gate only covers commit sections; reads and
network I/O never wait on it.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import Cancelled


class CancelToken:
    """Cooperative cancellation flag passed through crawl and download calls."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise Cancelled()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class WriteGate:
    """Pause/resume coordination point for catalog commits.

    ``pause()`` marks a commit as in progress, ``resume()`` ends it and wakes
    every waiter. Pauses are counted so overlapping writers resume correctly.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pauses = 0

    @property
    def paused(self) -> bool:
        with self._cond:
            return self._pauses > 0

    def pause(self):
        with self._cond:
            self._pauses += 1

    def resume(self):
        with self._cond:
            if self._pauses > 0:
                self._pauses -= 1
            if self._pauses == 0:
                self._cond.notify_all()

    def wait_if_paused(self, timeout: Optional[float] = None) -> bool:
        """Block while a pause is active. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._pauses == 0, timeout)

    @contextmanager
    def commit_section(self) -> Iterator[None]:
        # Waiting and pausing happen under one lock acquisition so two
        # writers cannot both slip through after the same resume().
        with self._cond:
            self._cond.wait_for(lambda: self._pauses == 0)
            self._pauses += 1
        try:
            yield
        finally:
            self.resume()
