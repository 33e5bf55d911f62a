# src/duplexchat/codec.py
"""
duplexchat wire codec (length-prefixed frames)

Frame format:
  [2-byte big-endian length][length bytes of payload]

The payload is opaque bytes (chat text, usually UTF-8 with its trailing
newline). The receiver reconstructs messages only from the declared length,
never from segment boundaries on the stream.

Both directions are bounded: a payload longer than max_frame_bytes is refused
by the encoder and a declared length above it is refused by the decoders.
Nothing is silently truncated or wrapped.
"""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from typing import List, Optional

from duplexchat.config import DEFAULT_MAX_FRAME_BYTES, WIRE_MAX_FRAME_BYTES

HEADER = struct.Struct(">H")
HEADER_SIZE = HEADER.size

MAX_FRAME_BYTES = DEFAULT_MAX_FRAME_BYTES


class FrameDecodeError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


class FrameEncodeError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


@dataclass(frozen=True, slots=True)
class Frame:
    length: int
    payload: bytes


def _limit(max_frame_bytes: int) -> int:
    return min(int(max_frame_bytes), WIRE_MAX_FRAME_BYTES)


def _check_payload(payload: bytes, max_frame_bytes: int) -> bytes:
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise FrameEncodeError("invalid_payload", f"payload must be bytes, got {type(payload).__name__}")
    data = bytes(payload)
    limit = _limit(max_frame_bytes)
    if len(data) > limit:
        raise FrameEncodeError("oversize", f"payload of {len(data)} bytes exceeds frame limit {limit}")
    return data


def encode_frame(payload: bytes, max_frame_bytes: int = MAX_FRAME_BYTES) -> bytes:
    data = _check_payload(payload, max_frame_bytes)
    return HEADER.pack(len(data)) + data


def send_frame(sock: socket.socket, payload: bytes, max_frame_bytes: int = MAX_FRAME_BYTES) -> int:
    """Write one frame: header, then payload, as two separate writes.

    Returns the payload length.
    """
    data = _check_payload(payload, max_frame_bytes)
    sock.sendall(HEADER.pack(len(data)))
    if data:
        sock.sendall(data)
    return len(data)


def recv_exact(sock: socket.socket, n: int) -> Optional[bytes]:
    """Read exactly n bytes, or None if the stream ends first."""
    if n <= 0:
        return b""
    buf = bytearray()
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            return None
        buf.extend(chunk)
    return bytes(buf)


def recv_frame(sock: socket.socket, max_frame_bytes: int = MAX_FRAME_BYTES) -> Optional[Frame]:
    """Blocking read of one frame.

    Returns None (end of stream) when the peer closed before a full header or
    a full payload arrived.
    """
    header = recv_exact(sock, HEADER_SIZE)
    if header is None:
        return None

    (n,) = HEADER.unpack(header)
    limit = _limit(max_frame_bytes)
    if n > limit:
        raise FrameDecodeError("oversize", f"declared frame length {n} exceeds limit {limit}")

    payload = recv_exact(sock, n)
    if payload is None:
        return None
    return Frame(length=n, payload=payload)


class FrameDecoder:
    """
    Bounded incremental decoder for readiness-driven reads.

    feed() accepts whatever recv() returned and yields every complete frame;
    partial frames stay buffered until the rest arrives. The buffer never
    holds more than one header plus one maximal payload.
    """

    def __init__(self, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self.max_frame_bytes = _limit(max_frame_bytes)
        self._buf = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> List[Frame]:
        out: List[Frame] = []
        buf = self._buf
        view = memoryview(data)

        while True:
            # Only pull in as much as the next frame can use.
            if len(buf) < HEADER_SIZE:
                take = HEADER_SIZE - len(buf)
                buf += view[:take]
                view = view[take:]
                if len(buf) < HEADER_SIZE:
                    break

            (n,) = HEADER.unpack(buf[:HEADER_SIZE])
            if n > self.max_frame_bytes:
                buf.clear()
                raise FrameDecodeError(
                    "oversize",
                    f"declared frame length {n} exceeds limit {self.max_frame_bytes}",
                )

            need = HEADER_SIZE + n - len(buf)
            buf += view[:need]
            view = view[need:]
            if len(buf) < HEADER_SIZE + n:
                break

            out.append(Frame(length=n, payload=bytes(buf[HEADER_SIZE:])))
            buf.clear()

            if not view:
                break

        return out
