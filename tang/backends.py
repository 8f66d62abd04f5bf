"""Ephemeral preview backends: one spawned process per (ref, repository)."""

import logging
import os
import signal
import socket
import subprocess
import threading
import time
from typing import Callable, Optional

from .errors import BackendError
from .models import BackendKey

logger = logging.getLogger(__name__)

PROBE_ATTEMPTS = 600
PROBE_INTERVAL = 0.1


def free_port() -> int:
    """Ask the kernel for a currently unused TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for_listener(
    port: int,
    attempts: int = PROBE_ATTEMPTS,
    interval: float = PROBE_INTERVAL,
    gave_up: Callable[[], Optional[str]] = lambda: None,
) -> None:
    """
    Poll until something accepts connections on localhost:`port`.

    `gave_up` is consulted between attempts; a non-None return aborts the
    wait with that message. Raises BackendError on timeout or abort.
    """
    for _ in range(attempts):
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=interval):
                return
        except OSError:
            pass
        reason = gave_up()
        if reason:
            raise BackendError(reason)
        time.sleep(interval)
    raise BackendError(f"Timed out trying to connect to :{port}")


class Backend:
    """A preview server process bound to its own port.

    Starting is asynchronous: `start()` returns at once and `ready()` blocks
    until the port answers or startup fails.
    """

    def __init__(self, key: BackendKey, command: str, port: int, env: Optional[dict] = None):
        self.key = key
        self.command = command
        self.port = port
        self.env = env
        self.process: Optional[subprocess.Popen] = None
        self.error: Optional[BackendError] = None
        self._up = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False

    @classmethod
    def spawn(cls, key: BackendKey, command_template: str, env: Optional[dict] = None) -> "Backend":
        """Start a backend for `key` running `command_template` on a fresh port.

        `env` is added to the process environment.
        """
        port = free_port()
        env = {**os.environ, **(env or {})}
        env["PORT"] = str(port)
        env["TANG_REF"] = key.ref
        env["TANG_REPO"] = key.repository
        backend = cls(key, command_template.format(port=port), port, env)
        backend.start()
        return backend

    def __repr__(self) -> str:
        return f"<Backend {self.key.ref}.{self.key.repository} :{self.port}>"

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/"

    def start(self) -> None:
        threading.Thread(target=self._start, name=f"backend-{self.port}", daemon=True).start()

    def _exited(self) -> Optional[str]:
        if self._stopped:
            return f"Backend on :{self.port} was stopped before it became ready"
        if self.process is not None and self.process.poll() is not None:
            return f"Backend on :{self.port} exited with status {self.process.returncode}"
        return None

    def _start(self) -> None:
        logger.info(f"About to start {self!r}: {self.command}")
        try:
            with self._lock:
                if self._stopped:
                    raise BackendError(f"Backend on :{self.port} was stopped before it started")
                self.process = subprocess.Popen(
                    ["sh", "-c", self.command],
                    env=self.env,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,
                )
            wait_for_listener(self.port, gave_up=self._exited)
        except OSError as e:
            self.error = BackendError(f"Failed to start backend: {e}")
        except BackendError as e:
            self.error = e
        except Exception as e:
            logger.exception(f"Unexpected error starting {self!r}")
            self.error = BackendError(f"Failed to start backend: {e}")
        finally:
            logger.info(f"Server ready. {self!r} err: {self.error}")
            self._up.set()

    def ready(self, timeout: Optional[float] = None) -> int:
        """Wait for startup to finish. Returns the port, raises BackendError."""
        if not self._up.wait(timeout):
            raise BackendError(f"Backend on :{self.port} not ready after {timeout}s")
        if self.error is not None:
            raise self.error
        return self.port

    def stop(self) -> None:
        """Kill the backend and anything it spawned."""
        with self._lock:
            self._stopped = True
            process = self.process
        if process is None:
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.error(f"Error when killing process on :{self.port}: {e}")
        process.wait()
        logger.info(f"Stopped {self!r}")
