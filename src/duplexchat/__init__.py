# src/duplexchat/__init__.py
"""
duplexchat: one-to-one text chat over a single TCP connection

This package provides:
  - address: IP literal -> NetworkAddress (IPv4 first, then IPv6)
  - endpoint: Listener / Dialer establishing one ConnectedSocket
  - codec: 2-byte big-endian length-prefixed frames, bounded both ways
  - session: duplex loops (socket -> stdout, stdin -> socket)
  - shutdown: one-way shutdown latch wired to the suspend signal
  - app / cli: process wiring and the command line entry point
"""

from __future__ import annotations

__all__ = [
    "address",
    "codec",
    "endpoint",
    "session",
    "shutdown",
    "app",
    "cli",
]

__version__ = "0.1.0"
