from __future__ import annotations

import socket
import threading

import pytest

from duplexchat.address import resolve_address
from duplexchat.config import ChatConfig
from duplexchat.endpoint import ConnectedSocket, Dialer, Establisher, Listener, make_endpoint
from duplexchat.errors import AcceptFailure, BindFailure, ConnectFailure, Interrupted
from duplexchat.schemas import Role
from duplexchat.shutdown import ShutdownController


def _ipv6_loopback_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            s.bind(("::1", 0))
        return True
    except OSError:
        return False


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def _accept_in_thread(listener: Listener) -> tuple[threading.Thread, dict]:
    box: dict = {}

    def run() -> None:
        box["conn"] = listener.establish()

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t, box


def test_make_endpoint_picks_variant_by_role() -> None:
    addr = resolve_address("127.0.0.1", 0)
    listener = make_endpoint(Role.LISTEN, addr, cfg=ChatConfig(backlog=3))
    dialer = make_endpoint(Role.CONNECT, addr)
    assert isinstance(listener, Listener)
    assert listener.backlog == 3
    assert isinstance(dialer, Dialer)
    assert isinstance(listener, Establisher)
    assert isinstance(dialer, Establisher)


def test_listener_and_dialer_meet_on_ipv4_loopback() -> None:
    listener = Listener(resolve_address("127.0.0.1", 0))
    try:
        listener.prepare()
        port = listener.bound_port()
        assert port != 0

        t, box = _accept_in_thread(listener)
        dialed = Dialer(resolve_address("127.0.0.1", port)).establish()
        t.join(5)

        accepted = box["conn"]
        assert isinstance(accepted, ConnectedSocket)
        assert isinstance(dialed, ConnectedSocket)

        dialed.sock.sendall(b"ping")
        assert accepted.sock.recv(4) == b"ping"
        assert dialed.peer == f"127.0.0.1:{port}"

        accepted.close()
        dialed.close()
    finally:
        listener.close()


@pytest.mark.skipif(not _ipv6_loopback_available(), reason="no IPv6 loopback")
def test_listener_and_dialer_meet_on_ipv6_loopback() -> None:
    listener = Listener(resolve_address("::1", 0))
    try:
        listener.prepare()
        assert listener.listening_socket.family == socket.AF_INET6

        t, box = _accept_in_thread(listener)
        dialed = Dialer(resolve_address("::1", listener.bound_port())).establish()
        t.join(5)

        assert box["conn"] is not None
        assert dialed.sock.family == socket.AF_INET6
        box["conn"].close()
        dialed.close()
    finally:
        listener.close()


def test_listener_sets_reuse_address() -> None:
    listener = Listener(resolve_address("127.0.0.1", 0))
    try:
        s = listener.prepare()
        assert s.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0
    finally:
        listener.close()


def test_prepare_is_idempotent() -> None:
    listener = Listener(resolve_address("127.0.0.1", 0))
    try:
        assert listener.prepare() is listener.prepare()
    finally:
        listener.close()


def test_bind_to_port_held_by_active_listener_fails() -> None:
    first = Listener(resolve_address("127.0.0.1", 0))
    try:
        first.prepare()
        second = Listener(resolve_address("127.0.0.1", first.bound_port()))
        with pytest.raises(BindFailure) as ei:
            second.prepare()
        assert ei.value.code == "bind_failed"
        assert isinstance(ei.value.__cause__, OSError)
        assert second.listening_socket is None
    finally:
        first.close()


def test_connect_to_closed_port_fails() -> None:
    port = _free_port()
    with pytest.raises(ConnectFailure) as ei:
        Dialer(resolve_address("127.0.0.1", port)).connect_to()
    assert ei.value.code == "connect_failed"


def test_accept_returns_none_once_shutdown_is_requested() -> None:
    with ShutdownController() as sd:
        listener = Listener(resolve_address("127.0.0.1", 0), shutdown=sd, poll_interval_s=0.05)
        try:
            listener.prepare()
            threading.Timer(0.1, sd.request).start()
            assert listener.establish() is None
        finally:
            listener.close()


def test_connected_socket_closes_exactly_once() -> None:
    a, b = socket.socketpair()
    conn = ConnectedSocket(sock=a, peer="pair")
    assert conn.close() is True
    assert conn.close() is False
    assert conn.closed
    assert a.fileno() == -1
    b.close()


def _listener_with_waiting_client() -> tuple[Listener, socket.socket]:
    listener = Listener(resolve_address("127.0.0.1", 0))
    listener.prepare()
    client = socket.create_connection(("127.0.0.1", listener.bound_port()), timeout=5)
    return listener, client


def test_establish_retries_after_interrupted_accept(monkeypatch) -> None:
    listener, client = _listener_with_waiting_client()
    real_accept_one = Listener.accept_one
    calls = {"n": 0}

    def flaky_accept_one(self: Listener):
        calls["n"] += 1
        if calls["n"] == 1:
            raise Interrupted("accept interrupted by signal")
        return real_accept_one(self)

    monkeypatch.setattr(Listener, "accept_one", flaky_accept_one)
    try:
        conn = listener.establish()
        assert calls["n"] == 2
        assert isinstance(conn, ConnectedSocket)
        conn.close()
    finally:
        client.close()
        listener.close()


def test_accept_os_error_maps_to_accept_failure(monkeypatch) -> None:
    listener, client = _listener_with_waiting_client()

    def broken_accept(self):
        raise OSError(24, "Too many open files")

    monkeypatch.setattr(socket.socket, "accept", broken_accept)
    try:
        with pytest.raises(AcceptFailure) as ei:
            listener.accept_one()
        assert ei.value.code == "accept_failed"
        assert isinstance(ei.value.__cause__, OSError)
        assert ei.value.details == {"errno": 24}
    finally:
        monkeypatch.undo()
        client.close()
        listener.close()


def test_interrupted_accept_maps_to_interrupted(monkeypatch) -> None:
    listener, client = _listener_with_waiting_client()

    def interrupted_accept(self):
        raise InterruptedError(4, "Interrupted system call")

    monkeypatch.setattr(socket.socket, "accept", interrupted_accept)
    try:
        with pytest.raises(Interrupted) as ei:
            listener.accept_one()
        assert isinstance(ei.value.__cause__, InterruptedError)
    finally:
        monkeypatch.undo()
        client.close()
        listener.close()


def test_failed_peer_lookup_still_returns_connection(monkeypatch) -> None:
    listener, client = _listener_with_waiting_client()

    def no_names(sockaddr, flags):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(socket, "getnameinfo", no_names)
    try:
        conn = listener.establish()
        assert isinstance(conn, ConnectedSocket)
        assert conn.peer == f"127.0.0.1:{client.getsockname()[1]}"
        conn.close()
    finally:
        client.close()
        listener.close()
