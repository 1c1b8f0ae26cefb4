from __future__ import annotations

import errno
import logging
import socket
from dataclasses import dataclass, field

from ..errors import PortAllocationError


MAX_TCP_PORT = 65535

# bind() errors that only mean "somebody else has this port".
_CONTENTION_ERRNOS = {errno.EADDRINUSE, errno.EACCES}

logger = logging.getLogger("vxmlsession.ports")


@dataclass
class PortAllocation:
    port: int
    used_fallback: bool
    sock: socket.socket = field(repr=False)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


def _try_bind(host: str, port: int, backlog: int) -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((host, port))
        s.listen(backlog)
    except OSError:
        s.close()
        raise
    return s


def allocate(min_port: int, max_port: int, *, host: str = "", backlog: int = 5) -> PortAllocation:
    """Bind the lowest free port in [min_port, max_port].

    When the range is exhausted the scan keeps going upward and the result is
    flagged `used_fallback` so the caller can switch to the proxy tunnel.
    The returned socket is already listening.
    """
    if min_port > max_port:
        raise ValueError(f"min_port {min_port} is greater than max_port {max_port}")
    if min_port < 1:
        raise ValueError(f"invalid min_port: {min_port}")

    port = min_port
    while port <= MAX_TCP_PORT:
        try:
            sock = _try_bind(host, port, backlog)
        except OSError as e:
            if e.errno not in _CONTENTION_ERRNOS:
                raise PortAllocationError(f"cannot bind port {port}: {e}") from e
            if port == max_port:
                logger.info("no unused port between %s and %s, continuing above range", min_port, max_port)
            port += 1
            continue
        used_fallback = port > max_port
        logger.debug("bound port %s", port, extra={"port": port})
        return PortAllocation(port=port, used_fallback=used_fallback, sock=sock)

    raise PortAllocationError(f"no bindable port at or above {min_port}")
