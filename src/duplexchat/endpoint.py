# src/duplexchat/endpoint.py
"""
duplexchat socket endpoints

Two ways to end up holding one connected TCP stream:

  - Listener: socket -> SO_REUSEADDR -> bind -> listen -> accept exactly one peer
  - Dialer:   socket -> connect

Both satisfy the Establisher protocol and hand back the same ConnectedSocket,
so the duplex session never needs to know which role produced it.

Setup failures are raised as duplexchat.errors subclasses (chained to the
underlying OSError) and are fatal for the process; only an interrupted
accept() is retried.
"""

from __future__ import annotations

import logging
import selectors
import socket
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from duplexchat.address import NetworkAddress
from duplexchat.chat_logging import log_event
from duplexchat.config import ChatConfig
from duplexchat.errors import (
    AcceptFailure,
    AddressFamilyMismatch,
    BindFailure,
    ConnectFailure,
    Interrupted,
    ListenFailure,
    SocketCreateFailure,
)
from duplexchat.schemas import Role
from duplexchat.shutdown import ShutdownController

_log = logging.getLogger("duplexchat.endpoint")


# ---------------------------------------------------------------------
# Connected socket
# ---------------------------------------------------------------------

@dataclass(slots=True)
class ConnectedSocket:
    sock: socket.socket
    peer: str

    closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def fileno(self) -> int:
        return self.sock.fileno()

    def close(self) -> bool:
        """Close the stream once. Returns True only for the call that closed it."""
        with self._lock:
            if self.closed:
                return False
            self.closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer may already be gone (ENOTCONN); close() below still runs.
            pass
        self.sock.close()
        return True


@runtime_checkable
class Establisher(Protocol):
    """Anything that can produce one ConnectedSocket."""

    @property
    def address(self) -> NetworkAddress: ...

    def establish(self) -> Optional[ConnectedSocket]: ...
    def close(self) -> None: ...


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _create_socket(address: NetworkAddress) -> socket.socket:
    if address.family not in (socket.AF_INET, socket.AF_INET6):
        raise AddressFamilyMismatch(
            f"address family must be AF_INET or AF_INET6, was: {address.family}",
        )
    try:
        return socket.socket(address.family, socket.SOCK_STREAM, 0)
    except OSError as e:
        raise SocketCreateFailure(f"socket creation failed: {e}", details={"errno": e.errno}) from e


def _peer_label(sock_addr: tuple) -> tuple[str, Optional[str]]:
    """Return (label, service) via reverse lookup; service is None when it fails."""
    try:
        host, service = socket.getnameinfo(sock_addr, 0)
        return f"{host}:{service}", service
    except (socket.gaierror, OSError):
        host, port = sock_addr[0], sock_addr[1]
        if ":" in str(host):
            return f"[{host}]:{port}", None
        return f"{host}:{port}", None


# ---------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------

class Listener:
    def __init__(
        self,
        address: NetworkAddress,
        *,
        backlog: int = socket.SOMAXCONN,
        shutdown: Optional[ShutdownController] = None,
        poll_interval_s: float = 0.2,
    ) -> None:
        self._address = address
        self.backlog = int(backlog)
        self._shutdown = shutdown
        self._poll_interval_s = float(poll_interval_s)
        self._sock: Optional[socket.socket] = None

    @property
    def address(self) -> NetworkAddress:
        return self._address

    @property
    def listening_socket(self) -> Optional[socket.socket]:
        return self._sock

    def bound_port(self) -> int:
        if self._sock is None:
            return int(self._address.port)
        return int(self._sock.getsockname()[1])

    def prepare(self) -> socket.socket:
        if self._sock is not None:
            return self._sock

        addr = self._address
        s = _create_socket(addr)
        try:
            try:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            except OSError as e:
                raise BindFailure(f"setsockopt failed: {e}", details={"errno": e.errno}) from e

            log_event(_log, "binding", addr=addr.display())
            try:
                s.bind(addr.sockaddr())
            except OSError as e:
                raise BindFailure(
                    f"binding {addr.display()} failed: {e}",
                    details={"errno": e.errno},
                ) from e
            log_event(_log, "bound", addr=addr.display(), port=int(s.getsockname()[1]))

            try:
                s.listen(self.backlog)
            except OSError as e:
                raise ListenFailure(f"listen failed: {e}", details={"errno": e.errno}) from e
            log_event(_log, "listening", backlog=self.backlog)
        except Exception:
            s.close()
            raise

        self._sock = s
        return s

    def _wait_readable(self, s: socket.socket) -> bool:
        """Block until s is readable; False if shutdown was requested first."""
        sd = self._shutdown
        if sd is None:
            return True

        with selectors.DefaultSelector() as sel:
            sel.register(s, selectors.EVENT_READ, data="listener")
            sel.register(sd.fileno(), selectors.EVENT_READ, data="shutdown")
            while not sd.requested:
                for key, _mask in sel.select(timeout=self._poll_interval_s):
                    if key.data == "listener" and not sd.requested:
                        return True
        return False

    def accept_one(self) -> Optional[ConnectedSocket]:
        s = self.prepare()

        if not self._wait_readable(s):
            log_event(_log, "accept_cancelled")
            return None

        try:
            client, peer_addr = s.accept()
        # Only seen when a signal handler raises; plain EINTR is retried by the runtime.
        except InterruptedError as e:
            raise Interrupted("accept interrupted by signal") from e
        except OSError as e:
            raise AcceptFailure(f"accept failed: {e}", details={"errno": e.errno}) from e

        label, service = _peer_label(peer_addr)
        if service is not None:
            log_event(_log, "accepted", peer=label)
        else:
            log_event(_log, "peer_lookup_failed", peer=label, level=logging.WARNING)

        return ConnectedSocket(sock=client, peer=label)

    def establish(self) -> Optional[ConnectedSocket]:
        self.prepare()
        while True:
            try:
                return self.accept_one()
            except Interrupted:
                log_event(_log, "accept_interrupted")
                continue

    def close(self) -> None:
        s = self._sock
        self._sock = None
        if s is not None:
            s.close()


# ---------------------------------------------------------------------
# Dialer
# ---------------------------------------------------------------------

class Dialer:
    def __init__(self, address: NetworkAddress) -> None:
        self._address = address

    @property
    def address(self) -> NetworkAddress:
        return self._address

    def connect_to(self) -> ConnectedSocket:
        addr = self._address
        s = _create_socket(addr)

        log_event(_log, "connecting", addr=addr.display())
        try:
            s.connect(addr.sockaddr())
        except OSError as e:
            s.close()
            raise ConnectFailure(
                f"connecting to {addr.display()} failed: {e}",
                details={"errno": e.errno},
            ) from e
        log_event(_log, "connected", addr=addr.display())

        return ConnectedSocket(sock=s, peer=addr.display())

    def establish(self) -> ConnectedSocket:
        return self.connect_to()

    def close(self) -> None:
        # The dialer owns no socket beyond the ConnectedSocket it handed out.
        return


def make_endpoint(
    role: Role,
    address: NetworkAddress,
    *,
    cfg: Optional[ChatConfig] = None,
    shutdown: Optional[ShutdownController] = None,
) -> Establisher:
    cfg = cfg or ChatConfig()
    if role == Role.LISTEN:
        return Listener(address, backlog=cfg.backlog, shutdown=shutdown, poll_interval_s=cfg.poll_interval_s)
    if role == Role.CONNECT:
        return Dialer(address)
    raise ValueError(f"unknown role: {role!r}")
