"""Listening socket handoff across re-exec.

The first process binds the socket and records its descriptor number in the
environment. A replacement started with that environment adopts the same
descriptor instead of binding again, so no connection is refused in between.
"""

import logging
import os
import socket
from typing import MutableMapping, Optional

from .config import LISTEN_FD_ENV
from .errors import ListenerError

logger = logging.getLogger(__name__)


def parse_address(address: str) -> tuple[str, int]:
    """Split `host:port`; an empty host means all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ListenerError(f"Invalid address {address!r}, expected [host]:port")
    try:
        return host or "0.0.0.0", int(port)
    except ValueError:
        raise ListenerError(f"Invalid port in address {address!r}") from None


class ListenerHandoff:
    """Acquires the listening socket and exports it to a successor process."""

    def __init__(self, env_var: str = LISTEN_FD_ENV, environ: Optional[MutableMapping[str, str]] = None):
        self.env_var = env_var
        self.environ = os.environ if environ is None else environ

    def inherited_fd(self) -> Optional[int]:
        """Descriptor named in the environment, if any."""
        token = self.environ.get(self.env_var)
        if not token:
            return None
        try:
            return int(token)
        except ValueError:
            logger.warning(f"Ignoring {self.env_var}={token!r}: not a descriptor number")
            return None

    def acquire(self, address: str) -> socket.socket:
        """
        Adopt the inherited listener if there is one, else bind `address`.

        Either way the socket is exported for the next generation.
        """
        fd = self.inherited_fd()
        if fd is not None:
            sock = self._adopt(fd)
            logger.info(f"Inherited listener on fd {fd}: {sock.getsockname()}")
        else:
            sock = self._bind(address)
            logger.info(f"Listening on: {address}")
        self.export(sock)
        return sock

    def _adopt(self, fd: int) -> socket.socket:
        try:
            sock = socket.socket(fileno=fd)
        except OSError as e:
            raise ListenerError(f"Cannot adopt fd {fd}: {e}") from e
        if sock.type != socket.SOCK_STREAM:
            sock.detach()
            raise ListenerError(f"fd {fd} is not a stream socket")
        return sock

    def _bind(self, address: str) -> socket.socket:
        host, port = parse_address(address)
        try:
            return socket.create_server((host, port), family=socket.AF_INET, backlog=128)
        except OSError as e:
            raise ListenerError(f"unable to listen on {address}: {e}") from e

    def export(self, sock: socket.socket) -> str:
        """
        Keep `sock` open across exec and record it in the environment.

        Only this descriptor is made inheritable. Returns the token written.
        """
        fd = sock.fileno()
        os.set_inheritable(fd, True)
        token = str(fd)
        self.environ[self.env_var] = token
        return token

    @staticmethod
    def serving_socket(sock: socket.socket) -> socket.socket:
        """
        A private duplicate of `sock` for the server to use.

        Servers close their sockets on shutdown; closing the duplicate leaves
        the exported descriptor listening for the next generation.
        """
        return socket.socket(fileno=os.dup(sock.fileno()))
