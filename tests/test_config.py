from __future__ import annotations

import os
import socket
from pathlib import Path

from duplexchat import env
from duplexchat.config import ChatConfig, chat_config_from_env


def test_defaults_match_reference_buffer() -> None:
    cfg = ChatConfig()
    assert cfg.max_frame_bytes == 1024
    assert cfg.backlog == socket.SOMAXCONN
    assert cfg.poll_interval_s == 0.2


def test_env_overrides_and_clamps(monkeypatch) -> None:
    monkeypatch.setenv("DUPLEXCHAT_MAX_FRAME_BYTES", "999999")
    monkeypatch.setenv("DUPLEXCHAT_POLL_INTERVAL_MS", "1")
    monkeypatch.setenv("DUPLEXCHAT_BACKLOG", "7")
    monkeypatch.setenv("DUPLEXCHAT_LOG_LEVEL", "debug")
    monkeypatch.setenv("DUPLEXCHAT_LOG_JSON", "off")

    cfg = chat_config_from_env()
    assert cfg.max_frame_bytes == 65535
    assert cfg.poll_interval_ms == 10
    assert cfg.backlog == 7
    assert cfg.log_level == "DEBUG"
    assert cfg.log_json is False


def test_garbage_env_falls_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DUPLEXCHAT_MAX_FRAME_BYTES", "lots")
    monkeypatch.setenv("DUPLEXCHAT_LOG_JSON", "maybe")
    cfg = chat_config_from_env()
    assert cfg.max_frame_bytes == 1024
    assert cfg.log_json is True


def test_dotenv_loads_once_without_overriding(tmp_path: Path, monkeypatch) -> None:
    dotenv = tmp_path / "chat.env"
    dotenv.write_text("DUPLEXCHAT_BACKLOG=3\nDUPLEXCHAT_LOG_LEVEL=WARNING\n", encoding="utf-8")
    monkeypatch.delenv("DUPLEXCHAT_BACKLOG", raising=False)
    monkeypatch.setenv("DUPLEXCHAT_LOG_LEVEL", "ERROR")

    env._reset_for_tests()
    try:
        assert env.load_dotenv_if_present(str(dotenv)) is True
        assert env.load_dotenv_if_present(str(dotenv)) is False
        assert os.environ["DUPLEXCHAT_BACKLOG"] == "3"
        assert os.environ["DUPLEXCHAT_LOG_LEVEL"] == "ERROR"
    finally:
        os.environ.pop("DUPLEXCHAT_BACKLOG", None)
        env._reset_for_tests()


def test_missing_dotenv_is_not_an_error(tmp_path: Path) -> None:
    env._reset_for_tests()
    try:
        assert env.load_dotenv_if_present(str(tmp_path / "absent.env")) is False
    finally:
        env._reset_for_tests()
