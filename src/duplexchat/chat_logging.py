# src/duplexchat/chat_logging.py
from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any, Dict, Optional, TextIO


Json = Dict[str, Any]

_JSON_ENABLED = True


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level_name: str = "INFO", *, json_events: bool = True, stream: Optional[TextIO] = None) -> None:
    """Configure the "duplexchat" logger tree for one-event-per-line output.

    - Diagnostics go to stderr so they never mix with chat text on stdout.
    - Safe to call multiple times; later calls only adjust level/format.
    """
    global _JSON_ENABLED
    _JSON_ENABLED = bool(json_events)

    level = getattr(logging, (level_name or "INFO").strip().upper(), logging.INFO)
    root = logging.getLogger("duplexchat")

    if getattr(root, "_duplexchat_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        for h in root.handlers:
            h.setLevel(level)
        return

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    root.propagate = False
    setattr(root, "_duplexchat_configured", True)  # type: ignore[attr-defined]


def _kv_line(event: str, fields: Json) -> str:
    parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
    return " ".join(parts)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSONL log event (or key=value when JSON output is off)."""
    if not logger.isEnabledFor(level):
        return
    if not _JSON_ENABLED:
        logger.log(level, _kv_line(event, fields))
        return

    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        logger.log(level, _kv_line(event, fields))
