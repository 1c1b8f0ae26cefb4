from __future__ import annotations

import socket
import time
from http import HTTPStatus
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from ..contracts.v1 import TurnRequest


MAX_HEADER_BYTES = 64 * 1024
MAX_BODY_BYTES = 16 * 1024 * 1024


def _recv(conn: socket.socket, size: int, deadline: Optional[float]) -> bytes:
    if deadline is not None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("request not received before the deadline")
        conn.settimeout(remaining)
    return conn.recv(size)


def _recv_head(conn: socket.socket, deadline: Optional[float] = None) -> Tuple[bytes, bytes]:
    buf = b""
    while b"\r\n\r\n" not in buf and b"\n\n" not in buf:
        chunk = _recv(conn, 65536, deadline)
        if not chunk:
            break
        buf += chunk
        if len(buf) > MAX_HEADER_BYTES:
            break
    for sep in (b"\r\n\r\n", b"\n\n"):
        if sep in buf:
            head, rest = buf.split(sep, 1)
            return head, rest
    return buf, b""


def parse_query(query: str) -> Dict[str, str]:
    return {k: v for k, v in parse_qsl(query or "", keep_blank_values=True)}


def read_request(conn: socket.socket, deadline: Optional[float] = None) -> Optional[TurnRequest]:
    """Read one HTTP request; None if the peer went away without sending one.

    With a `deadline` (a `time.monotonic()` value) the whole read, not each
    recv, must finish in time, otherwise `socket.timeout` is raised.
    """
    head, rest = _recv_head(conn, deadline)
    if not head.strip():
        return None
    lines = head.decode("iso-8859-1", errors="replace").splitlines()
    parts = lines[0].split()
    if len(parts) < 2:
        return None
    method, target = parts[0].upper(), parts[1]

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()

    body: Optional[bytes] = None
    try:
        length = int(headers.get("content-length") or "0")
    except ValueError:
        length = 0
    if length > 0:
        length = min(length, MAX_BODY_BYTES)
        data = rest
        while len(data) < length:
            chunk = _recv(conn, min(65536, length - len(data)), deadline)
            if not chunk:
                break
            data += chunk
        body = data[:length]

    split = urlsplit(target)
    return TurnRequest(
        method=method,
        path=split.path or "/",
        query=split.query,
        params=parse_query(split.query),
        headers=headers,
        body=body,
    )


def send_response(
    conn: socket.socket,
    body: bytes,
    *,
    status: int = 200,
    content_type: str = "text/vxml",
) -> None:
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = "Unknown"
    head = (
        f"HTTP/1.0 {status} {reason}\r\n"
        "Cache-Control: no-cache\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode("ascii")
    conn.sendall(head + body)


def send_error(conn: socket.socket, status: int) -> None:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = "Error"
    body = f"<html><head><title>{status} {phrase}</title></head><body><h1>{status} {phrase}</h1></body></html>\n"
    send_response(conn, body.encode("utf-8"), status=status, content_type="text/html")
