from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal, Mapping, Optional


InvocationMode = Literal["proxy", "vxml", "cmdline"]

PROXY_QUERY_RE = re.compile(r"proxyfor=(\d+)&(.*)$")


@dataclass(frozen=True)
class CgiEnvironment:
    """The slice of the CGI environment the session bridge cares about."""
    query_string: str = ""
    server_name: str = ""
    script_name: str = ""
    request_method: str = "GET"
    content_length: int = 0

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "CgiEnvironment":
        env = os.environ if environ is None else environ
        try:
            length = int(str(env.get("CONTENT_LENGTH") or "0").strip() or "0")
        except ValueError:
            length = 0
        return cls(
            query_string=str(env.get("QUERY_STRING") or ""),
            server_name=str(env.get("SERVER_NAME") or ""),
            script_name=str(env.get("SCRIPT_NAME") or ""),
            request_method=str(env.get("REQUEST_METHOD") or "GET").upper(),
            content_length=max(0, length),
        )

    @property
    def is_proxy_request(self) -> bool:
        return bool(self.query_string) and PROXY_QUERY_RE.search(self.query_string) is not None

    @property
    def mode(self) -> InvocationMode:
        if self.is_proxy_request:
            return "proxy"
        if self.server_name and self.script_name:
            return "vxml"
        return "cmdline"

    def origin_url(self, server_name: Optional[str] = None) -> str:
        """URL of the front-end script itself, e.g. http://host/cgi-bin/app.cgi."""
        if not self.script_name:
            return ""
        host = (server_name or "").strip() or self.server_name
        return f"http://{host}{self.script_name}"


def make_absolute_url(origin_url: str, url: str) -> str:
    """Resolve `url` against the front-end script URL.

    Absolute http(s) URLs pass through, a leading slash is relative to the
    origin's host root, anything else is relative to the script's directory.
    The special target `_home` is returned as-is.
    """
    if url == "_home":
        return url
    m = re.match(r"""^['"](.*)["']$""", url)
    if m:
        url = m.group(1)
    if re.match(r"^https?:", url, re.IGNORECASE):
        return url
    if not origin_url:
        return url
    if url.startswith("/"):
        root = re.sub(r"(^https?://[^/]*)/.*$", r"\1", origin_url)
        return root + url
    base = re.sub(r"/[^/]*$", "/", origin_url)
    return base + url
