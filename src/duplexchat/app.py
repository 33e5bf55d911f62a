# src/duplexchat/app.py
from __future__ import annotations

import logging
import sys
from typing import BinaryIO, Optional, TextIO

from duplexchat.address import resolve_address
from duplexchat.chat_logging import log_event
from duplexchat.config import ChatConfig
from duplexchat.endpoint import make_endpoint
from duplexchat.errors import ChatError
from duplexchat.schemas import ChatTarget
from duplexchat.session import DuplexSession, SessionOutcome
from duplexchat.shutdown import ShutdownController

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

_log = logging.getLogger("duplexchat.app")


def run_chat(
    target: ChatTarget,
    *,
    cfg: Optional[ChatConfig] = None,
    shutdown: Optional[ShutdownController] = None,
    stdin_fd: Optional[int] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[TextIO] = None,
    install_signal: bool = True,
) -> int:
    """Run one chat process end to end and return its exit status.

    Success covers a requested shutdown, the peer hanging up and local input
    running dry. Any address, setup or session I/O error is reported on stderr
    and yields EXIT_FAILURE.
    """
    cfg = cfg or ChatConfig()
    err = stderr if stderr is not None else sys.stderr
    owns_shutdown = shutdown is None
    sd = shutdown if shutdown is not None else ShutdownController()

    endpoint = None
    try:
        address = resolve_address(target.address, target.port)

        if install_signal:
            sd.install()

        endpoint = make_endpoint(target.role, address, cfg=cfg, shutdown=sd)
        conn = endpoint.establish()
        if conn is None:
            log_event(_log, "exit", outcome=SessionOutcome.SHUTDOWN_REQUESTED.value)
            return EXIT_SUCCESS

        session = DuplexSession(
            conn,
            sd,
            stdin_fd=stdin_fd if stdin_fd is not None else sys.stdin.fileno(),
            stdout=stdout if stdout is not None else sys.stdout.buffer,
            cfg=cfg,
        )
        outcome = session.run()
        log_event(_log, "exit", outcome=outcome.value)
        return EXIT_SUCCESS
    except ChatError as e:
        log_event(_log, "fatal", code=e.code, reason=e.reason, level=logging.ERROR)
        print(e.reason, file=err)
        return EXIT_FAILURE
    finally:
        if endpoint is not None:
            endpoint.close()
        if owns_shutdown:
            sd.close()
        elif install_signal:
            sd.restore()
