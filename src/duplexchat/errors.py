# src/duplexchat/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class ChatError(Exception):
    """Canonical error type for address, socket setup and session failures."""

    reason: str
    code: str = "chat_error"
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass(eq=False)
class InvalidAddress(ChatError):
    code: str = "invalid_address"


@dataclass(eq=False)
class AddressFamilyMismatch(ChatError):
    code: str = "address_family_mismatch"


@dataclass(eq=False)
class SocketCreateFailure(ChatError):
    code: str = "socket_create_failed"


@dataclass(eq=False)
class BindFailure(ChatError):
    code: str = "bind_failed"


@dataclass(eq=False)
class ListenFailure(ChatError):
    code: str = "listen_failed"


@dataclass(eq=False)
class ConnectFailure(ChatError):
    code: str = "connect_failed"


@dataclass(eq=False)
class AcceptFailure(ChatError):
    code: str = "accept_failed"


@dataclass(eq=False)
class Interrupted(ChatError):
    """accept() was interrupted by a signal; the caller retries."""

    code: str = "interrupted"


@dataclass(eq=False)
class SessionFailure(ChatError):
    code: str = "session_failed"
