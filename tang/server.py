"""Serving, signal handling and zero-downtime re-exec."""

import logging
import os
import signal
import socket
import sys
import threading
from typing import IO, Optional

import uvicorn
from fastapi import FastAPI

from .config import GRACEFUL_TIMEOUT
from .listener import ListenerHandoff

logger = logging.getLogger(__name__)


def resolve_self() -> tuple[str, list[str]]:
    """
    Interpreter path and argv that start this process again.

    Call this first thing: after a privilege drop the executable may no
    longer be readable.
    """
    exe = os.path.realpath(sys.executable)
    argv = list(getattr(sys, "orig_argv", None) or [sys.executable] + sys.argv)
    return exe, argv


class Supervisor:
    """Runs uvicorn on a handed-off listener.

    SIGHUP stops serving gracefully and re-executes the process on the same
    listening socket. SIGINT/SIGTERM (handled by uvicorn) just shut down.

    Background builds run inside their request task; shutdown waits for them
    at most `graceful_timeout` seconds, then cancels them.
    """

    def __init__(
        self,
        app: FastAPI,
        listener: socket.socket,
        exe: str,
        argv: list[str],
        log_level: str = "info",
        graceful_timeout: float = GRACEFUL_TIMEOUT,
    ):
        self.listener = listener
        self.exe = exe
        self.argv = argv
        self.reload = False
        self.server = uvicorn.Server(
            uvicorn.Config(
                app,
                log_level=log_level,
                lifespan="on",
                timeout_graceful_shutdown=graceful_timeout,
            )
        )

    def request_reload(self, signum=None, frame=None) -> None:
        logger.info("HUPPING!")
        self.reload = True
        self.server.should_exit = True

    def request_exit(self) -> None:
        logger.info("Exiting")
        self.reload = False
        self.server.should_exit = True

    def watch_stdin(self, stream: Optional[IO[str]] = None) -> threading.Thread:
        """Shut down when a line (or EOF) arrives on `stream`."""
        stream = stream or sys.stdin

        def _wait():
            stream.readline()
            self.request_exit()

        thread = threading.Thread(target=_wait, name="stdin-exit", daemon=True)
        thread.start()
        return thread

    def serve(self) -> None:
        """Serve until told to stop; re-exec if the stop was a reload."""
        signal.signal(signal.SIGHUP, self.request_reload)
        self.server.run(sockets=[ListenerHandoff.serving_socket(self.listener)])
        if self.reload:
            self.reexec()

    def reexec(self) -> None:
        """Replace this process with a fresh copy; the listener fd survives."""
        logger.info(f"My exe = {self.exe!r}, argv = {self.argv!r}")
        os.execve(self.exe, self.argv, dict(os.environ))
