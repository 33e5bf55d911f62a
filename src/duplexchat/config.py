# src/duplexchat/config.py
from __future__ import annotations

import os
import socket
from dataclasses import dataclass

# Reference line buffer size; also the default frame cap.
DEFAULT_MAX_FRAME_BYTES = 1024

# Hard ceiling imposed by the 2-byte length header.
WIRE_MAX_FRAME_BYTES = 0xFFFF


def _env_str(name: str, default: str = "") -> str:
    v = os.environ.get(name)
    return str(default if v is None else v).strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return bool(default)
    if raw in {"1", "true", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return int(default)


@dataclass(frozen=True, slots=True)
class ChatConfig:
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES
    poll_interval_ms: int = 200
    recv_chunk_bytes: int = 4096
    backlog: int = socket.SOMAXCONN

    log_level: str = "INFO"
    log_json: bool = True

    @property
    def poll_interval_s(self) -> float:
        return float(self.poll_interval_ms) / 1000.0


def chat_config_from_env() -> ChatConfig:
    max_frame = _env_int("DUPLEXCHAT_MAX_FRAME_BYTES", DEFAULT_MAX_FRAME_BYTES)
    max_frame = min(max(1, max_frame), WIRE_MAX_FRAME_BYTES)

    poll_ms = max(10, _env_int("DUPLEXCHAT_POLL_INTERVAL_MS", 200))
    chunk = max(64, _env_int("DUPLEXCHAT_RECV_CHUNK_BYTES", 4096))
    backlog = max(1, _env_int("DUPLEXCHAT_BACKLOG", socket.SOMAXCONN))

    level = (_env_str("DUPLEXCHAT_LOG_LEVEL", "INFO") or "INFO").upper()
    log_json = _env_bool("DUPLEXCHAT_LOG_JSON", True)

    return ChatConfig(
        max_frame_bytes=int(max_frame),
        poll_interval_ms=int(poll_ms),
        recv_chunk_bytes=int(chunk),
        backlog=int(backlog),
        log_level=str(level),
        log_json=bool(log_json),
    )
