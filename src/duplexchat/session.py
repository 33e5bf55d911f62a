# src/duplexchat/session.py
"""
duplexchat duplex session

One ConnectedSocket, two loops, each owning one direction of the stream:

  inbound:  socket -> FrameDecoder -> local output
  outbound: local input -> lines -> send_frame -> socket

Neither loop blocks indefinitely. Each waits on a selector that also watches
the process shutdown controller and a session-local halt token, with the wait
bounded by the configured poll interval. Whichever loop ends first records the
outcome and halts the other; run() then joins both, closes the socket once and
reports how the conversation ended.
"""

from __future__ import annotations

import logging
import os
import selectors
import threading
from enum import Enum
from typing import BinaryIO, List, Optional

from duplexchat.chat_logging import log_event
from duplexchat.codec import FrameDecodeError, FrameDecoder, FrameEncodeError, send_frame
from duplexchat.config import ChatConfig
from duplexchat.endpoint import ConnectedSocket
from duplexchat.errors import SessionFailure
from duplexchat.metrics import inc_counter, snapshot
from duplexchat.shutdown import ShutdownController

_log = logging.getLogger("duplexchat.session")

_WAKE = "wake"


class SessionOutcome(str, Enum):
    SHUTDOWN_REQUESTED = "shutdown_requested"
    PEER_CLOSED = "peer_closed"
    LOCAL_EOF = "local_eof"


def _input_selector(fd: int) -> selectors.BaseSelector:
    sel: selectors.BaseSelector = selectors.DefaultSelector()
    try:
        sel.register(fd, selectors.EVENT_READ, data="input")
    except PermissionError:
        # epoll refuses regular files and /dev/null; select() reports them always readable.
        sel.close()
        sel = selectors.SelectSelector()
        sel.register(fd, selectors.EVENT_READ, data="input")
    return sel


def split_lines(buf: bytearray, max_frame_bytes: int) -> List[bytes]:
    """Pop every complete line (newline kept) off buf, cut to frame-sized pieces.

    A partial line that already fills a frame is cut too; a shorter tail stays
    in buf until its newline arrives.
    """
    out: List[bytes] = []
    while True:
        idx = buf.find(b"\n")
        if idx < 0:
            break
        line = bytes(buf[: idx + 1])
        del buf[: idx + 1]
        out.extend(_chunks(line, max_frame_bytes))

    while len(buf) >= max_frame_bytes:
        out.append(bytes(buf[:max_frame_bytes]))
        del buf[:max_frame_bytes]
    return out


def _chunks(data: bytes, size: int) -> List[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class DuplexSession:
    def __init__(
        self,
        conn: ConnectedSocket,
        shutdown: ShutdownController,
        *,
        stdin_fd: int,
        stdout: BinaryIO,
        cfg: Optional[ChatConfig] = None,
    ) -> None:
        self._conn = conn
        self._shutdown = shutdown
        self._stdin_fd = int(stdin_fd)
        self._stdout = stdout
        self._cfg = cfg or ChatConfig()

        self._halt = ShutdownController()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._outcome: Optional[SessionOutcome] = None
        self._error: Optional[BaseException] = None

    # -------------------------
    # state
    # -------------------------

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        return self._outcome

    def _stopping(self) -> bool:
        return self._shutdown.requested or self._halt.requested

    def _finish(self, outcome: Optional[SessionOutcome] = None, error: Optional[BaseException] = None) -> None:
        with self._lock:
            if self._outcome is None and self._error is None:
                if error is not None:
                    self._error = error
                else:
                    self._outcome = outcome
        self._halt.request()
        self._done.set()

    def _finish_on_stop(self) -> None:
        if self._shutdown.requested:
            self._finish(SessionOutcome.SHUTDOWN_REQUESTED)
        else:
            # Halted by the other loop, which already recorded the outcome.
            self._finish()

    def _register_wakeups(self, sel: selectors.BaseSelector) -> None:
        sel.register(self._shutdown.fileno(), selectors.EVENT_READ, data=_WAKE)
        sel.register(self._halt.fileno(), selectors.EVENT_READ, data=_WAKE)

    # -------------------------
    # inbound: socket -> output
    # -------------------------

    def _emit(self, payload: bytes) -> None:
        self._stdout.write(payload)
        self._stdout.flush()

    def _inbound(self) -> None:
        sock = self._conn.sock
        decoder = FrameDecoder(self._cfg.max_frame_bytes)
        tick = self._cfg.poll_interval_s

        try:
            with selectors.DefaultSelector() as sel:
                sel.register(sock, selectors.EVENT_READ, data="socket")
                self._register_wakeups(sel)

                while not self._stopping():
                    for key, _mask in sel.select(timeout=tick):
                        if key.data != "socket" or self._stopping():
                            continue
                        try:
                            data = sock.recv(self._cfg.recv_chunk_bytes)
                        except ConnectionResetError:
                            data = b""
                        if not data:
                            log_event(_log, "peer_closed", peer=self._conn.peer, pending=decoder.pending)
                            self._finish(SessionOutcome.PEER_CLOSED)
                            return

                        inc_counter("bytes_received", len(data))
                        for frame in decoder.feed(data):
                            self._emit(frame.payload)
                            inc_counter("frames_received")
        except (OSError, ValueError, FrameDecodeError) as e:
            log_event(_log, "inbound_failed", error=str(e), level=logging.ERROR)
            self._finish(error=e)
            return

        self._finish_on_stop()

    # -------------------------
    # outbound: input -> socket
    # -------------------------

    def _send(self, piece: bytes) -> None:
        n = send_frame(self._conn.sock, piece, self._cfg.max_frame_bytes)
        inc_counter("frames_sent")
        inc_counter("bytes_sent", n)

    def _outbound(self) -> None:
        max_frame = self._cfg.max_frame_bytes
        tick = self._cfg.poll_interval_s
        pending = bytearray()

        try:
            with _input_selector(self._stdin_fd) as sel:
                self._register_wakeups(sel)

                while not self._stopping():
                    for key, _mask in sel.select(timeout=tick):
                        if key.data != "input" or self._stopping():
                            continue
                        data = os.read(self._stdin_fd, self._cfg.recv_chunk_bytes)
                        if not data:
                            for piece in _chunks(bytes(pending), max_frame):
                                self._send(piece)
                            pending.clear()
                            log_event(_log, "local_eof")
                            self._finish(SessionOutcome.LOCAL_EOF)
                            return

                        pending += data
                        for piece in split_lines(pending, max_frame):
                            self._send(piece)
        except (OSError, ValueError, FrameEncodeError) as e:
            log_event(_log, "outbound_failed", error=str(e), level=logging.ERROR)
            self._finish(error=e)
            return

        self._finish_on_stop()

    # -------------------------
    # lifecycle
    # -------------------------

    def run(self) -> SessionOutcome:
        log_event(_log, "session_started", peer=self._conn.peer)

        threads = [
            threading.Thread(target=self._inbound, name="duplexchat-inbound", daemon=True),
            threading.Thread(target=self._outbound, name="duplexchat-outbound", daemon=True),
        ]
        started: List[threading.Thread] = []
        try:
            for t in threads:
                try:
                    t.start()
                except RuntimeError as e:
                    self._finish(error=e)
                    break
                started.append(t)

            # Bounded waits keep the main thread responsive to signal handlers.
            tick = self._cfg.poll_interval_s
            while not self._done.wait(tick):
                continue
        finally:
            self._halt.request()
            for t in started:
                t.join()
            self._conn.close()
            self._halt.close()

            inc_counter("sessions_closed")
            log_event(
                _log,
                "session_closed",
                peer=self._conn.peer,
                outcome=self._outcome.value if self._outcome is not None else None,
                error=str(self._error) if self._error is not None else None,
                counters=snapshot()["counters"],
            )

        if self._error is not None:
            raise SessionFailure(f"session I/O failed: {self._error}", details={"peer": self._conn.peer}) from self._error

        if self._outcome is None:
            raise SessionFailure("session ended without an outcome", details={"peer": self._conn.peer})
        return self._outcome
