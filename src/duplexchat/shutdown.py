# src/duplexchat/shutdown.py
"""
Cooperative shutdown latch.

A ShutdownController is a one-way flag (False -> True, never back) passed
explicitly to every loop that must stop. Besides the flag it owns a
non-blocking self-pipe: request() drops one byte into it, so any selector
waiting on fileno() wakes immediately instead of at its next natural I/O
event.

request() only sets an Event and writes one byte, which keeps it safe to call
from a signal handler.
"""

from __future__ import annotations

import os
import signal
import threading
from typing import Any, Optional


class ShutdownController:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._rfd, self._wfd = os.pipe()
        os.set_blocking(self._rfd, False)
        os.set_blocking(self._wfd, False)
        self._closed = False

        self._signum: Optional[int] = None
        self._prev_handler: Any = None

    # -------------------------
    # latch
    # -------------------------

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def request(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        if self._closed:
            return
        try:
            os.write(self._wfd, b"\x00")
        except OSError:
            # Pipe full or already torn down; the flag alone is enough.
            pass

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def fileno(self) -> int:
        """Read end of the wakeup pipe; readable once request() has run."""
        return self._rfd

    # -------------------------
    # signal wiring
    # -------------------------

    def install(self, signum: int = getattr(signal, "SIGTSTP", signal.SIGINT)) -> Any:
        """Route signum to request(). Main thread only. Returns the previous handler."""
        prev = signal.signal(signum, self._on_signal)
        self._signum = signum
        self._prev_handler = prev
        return prev

    def restore(self) -> None:
        if self._signum is None:
            return
        prev = self._prev_handler if self._prev_handler is not None else signal.SIG_DFL
        signal.signal(self._signum, prev)
        self._signum = None
        self._prev_handler = None

    def _on_signal(self, signum: int, frame: Any) -> None:
        self.request()

    # -------------------------
    # lifecycle
    # -------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.restore()
        for fd in (self._rfd, self._wfd):
            try:
                os.close(fd)
            except OSError:
                pass

    def __enter__(self) -> "ShutdownController":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
