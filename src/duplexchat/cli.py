from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from pydantic import ValidationError

from duplexchat.schemas import ChatTarget, Role


def _port(value: str) -> int:
    try:
        port = int(value, 10)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid characters in port: {value!r}") from e
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port value out of range: {port}")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="duplexchat",
        description=(
            "Two-way text chat over one TCP connection. "
            "One side listens (-a) for a single peer, the other connects (-c). "
            "Press Ctrl+Z to end the conversation."
        ),
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("-a", dest="listen", action="store_true", help="Listen and accept one connection")
    mode.add_argument("-c", dest="connect", action="store_true", help="Connect to a listening peer")
    parser.add_argument("address", help="IPv4 or IPv6 address")
    parser.add_argument("port", type=_port, help="TCP port (0-65535)")
    return parser


def parse_target(argv: Optional[Sequence[str]] = None) -> ChatTarget:
    parser = build_parser()
    args = parser.parse_args(argv)
    role = Role.LISTEN if args.listen else Role.CONNECT
    try:
        return ChatTarget(role=role, address=args.address, port=args.port)
    except ValidationError as e:
        parser.error(str(e))
        raise  # pragma: no cover


def main(argv: Optional[Sequence[str]] = None) -> int:
    from duplexchat.env import load_dotenv_if_present

    # Load .env before anything reads DUPLEXCHAT_* vars.
    load_dotenv_if_present()

    from duplexchat.app import run_chat
    from duplexchat.chat_logging import configure_logging
    from duplexchat.config import chat_config_from_env

    target = parse_target(argv)
    cfg = chat_config_from_env()
    configure_logging(cfg.log_level, json_events=cfg.log_json, stream=sys.stderr)
    return run_chat(target, cfg=cfg)


if __name__ == "__main__":
    raise SystemExit(main())
