"""Relay a voice-client request through the front-end URL to a local worker.

Used when the caller cannot reach the worker's port directly: the front end
is invoked with `proxyfor=<port>&<rest>` and forwards `<rest>` to
http://localhost:<port>/. Failures turn into a spoken error document, never
into a transport error the voice client could not render.
"""
from __future__ import annotations

import logging
from typing import Optional

import requests

from ..contracts.v1 import ProxyRequest
from ..kernel.cgi_env import PROXY_QUERY_RE
from ..kernel.markup import cgi_response, render_error_document


RECORDING_MARKER = "vxmllib.recordvalue"


logger = logging.getLogger("vxmlsession.proxy")


def parse_proxy_query(query: str) -> Optional[ProxyRequest]:
    m = PROXY_QUERY_RE.search(query or "")
    if not m:
        return None
    port = int(m.group(1))
    if port < 1 or port > 65535:
        return None
    return ProxyRequest(target_port=port, remainder=m.group(2))


class ProxyTunnel:
    def __init__(self, *, timeout: float = 60.0, session: Optional[requests.Session] = None) -> None:
        self.timeout = float(timeout)
        self._session = session or requests.Session()

    def target_url(self, req: ProxyRequest) -> str:
        return f"http://localhost:{req.target_port}/?{req.remainder}"

    def relay(self, req: ProxyRequest, body: Optional[bytes] = None, *, method: str = "GET") -> bytes:
        """Forward one request and return the complete CGI output."""
        url = self.target_url(req)
        is_recording = RECORDING_MARKER in req.remainder or str(method).upper() == "POST"
        verb = "POST" if is_recording else "GET"
        try:
            resp = self._session.request(
                verb,
                url,
                data=(body or b"") if verb == "POST" else None,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            logger.warning("relay to %s failed: %s", url, e, extra={"port": req.target_port})
            return cgi_response(render_error_document(_describe(e, req.target_port)))

        if resp.status_code >= 400:
            reason = resp.reason or f"HTTP {resp.status_code}"
            logger.warning("relay to %s got %s", url, resp.status_code, extra={"port": req.target_port})
            return cgi_response(render_error_document(reason))
        return cgi_response("") + resp.content


def _describe(e: requests.RequestException, port: int) -> str:
    if isinstance(e, requests.Timeout):
        return "The application took too long to respond."
    if isinstance(e, requests.ConnectionError):
        return f"Can't connect to localhost port {port}."
    return "The application could not be reached."
