from __future__ import annotations

import logging
import socket
import time
from typing import Any, Callable, Optional, Union

from ..contracts.v1 import SessionEndpoint, TurnRequest
from ..errors import ConversationAbandoned, ConversationEnded
from ..util.obslog import conversation_logger
from .httpio import read_request, send_error, send_response


def _close_quietly(conn: Optional[socket.socket]) -> None:
    if conn is None:
        return
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        conn.close()
    except OSError:
        pass


class SessionDaemon:
    """Owns the worker's listening socket and the one connection in flight.

    The voice client opens a fresh connection for every turn, so each turn is
    accept -> read request -> (later) respond -> close. Waiting for the next
    connection is bounded by `idle_timeout`; running out of time means the
    caller is gone and the conversation is abandoned.
    """

    def __init__(
        self,
        sock: socket.socket,
        endpoint: SessionEndpoint,
        *,
        idle_timeout: float,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self._sock = sock
        self.endpoint = endpoint
        self.idle_timeout = float(idle_timeout)
        self.log = log or conversation_logger("vxmlsession.daemon", port=endpoint.port)
        self._conn: Optional[socket.socket] = None
        self.rejected = 0

    @property
    def has_connection(self) -> bool:
        return self._conn is not None

    def _accept(self, deadline: float) -> socket.socket:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConversationAbandoned("idle timeout")
            self._sock.settimeout(remaining)
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except InterruptedError:
                continue
            self.log.debug("accepted connection from %s", addr[0] if addr else "?")
            return conn

    def wait_for_connection(self) -> socket.socket:
        """Replace the held connection with a new one, waiting at most `idle_timeout` seconds."""
        self.close_connection()
        conn = self._accept(time.monotonic() + self.idle_timeout)
        conn.settimeout(self.idle_timeout)
        self._conn = conn
        return conn

    def close_connection(self) -> None:
        _close_quietly(self._conn)
        self._conn = None

    def await_turn(self, accept: Callable[[TurnRequest], bool]) -> TurnRequest:
        """Drop the held connection and wait for the next acceptable request.

        Requests `accept` refuses are answered with 403 and dropped; the
        conversation goes on. The whole wait shares one idle deadline.
        """
        self.close_connection()
        self.log.debug("waiting for new connection")
        deadline = time.monotonic() + self.idle_timeout
        while True:
            conn = self._accept(deadline)
            try:
                req = read_request(conn, deadline)
            except (socket.timeout, OSError) as e:
                self.log.info("connection failed before sending a request: %s", e)
                _close_quietly(conn)
                continue
            if req is None:
                self.log.info("connection went away without getting anything from it")
                _close_quietly(conn)
                continue
            if not accept(req):
                self.rejected += 1
                self.log.warning("invalid request <%s> %s", req.query, req.method)
                try:
                    send_error(conn, 403)
                except OSError:
                    pass
                _close_quietly(conn)
                continue
            conn.settimeout(self.idle_timeout)
            self._conn = conn
            return req

    def accept_initial(self) -> TurnRequest:
        """Take the request that followed the invoker's redirect.

        Its content carries nothing; the connection is kept for the first
        real response.
        """
        return self.await_turn(lambda _req: True)

    def respond(self, body: Union[str, bytes], *, status: int = 200) -> None:
        if self._conn is None:
            raise RuntimeError("no connection to respond on")
        data = body.encode("utf-8") if isinstance(body, str) else body
        try:
            send_response(self._conn, data, status=status)
        except OSError as e:
            # The caller hung up mid-turn; the next await_turn decides whether they come back.
            self.log.info("failed to send response: %s", e)

    def close(self) -> None:
        self.close_connection()
        try:
            self._sock.close()
        except OSError:
            pass


def serve_one_conversation(
    endpoint: SessionEndpoint,
    idle_timeout: float,
    conversation: Callable[[Any], None],
    *,
    sock: Optional[socket.socket] = None,
    origin_url: str = "",
    log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
) -> int:
    """Run `conversation(session)` against one endpoint until it ends.

    Binds `endpoint.port` unless an already listening `sock` is given.
    Returns the worker's exit code; completion and abandonment are both clean.
    """
    from .session import ConversationSession

    if sock is None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", endpoint.port))
        sock.listen(5)
    daemon = SessionDaemon(sock, endpoint, idle_timeout=idle_timeout, log=log)
    session = ConversationSession(daemon, origin_url=origin_url, log=daemon.log)
    try:
        daemon.accept_initial()
        conversation(session)
    except ConversationEnded as e:
        daemon.log.info("conversation ended: %s", e.reason or type(e).__name__)
    finally:
        daemon.close()
    return 0
