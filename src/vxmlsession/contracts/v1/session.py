from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EndpointMode = Literal["direct", "proxied"]


class SessionEndpoint(BaseModel):
    """Where the voice client reaches the worker for every later turn."""
    host: str
    port: int = Field(ge=1, le=65535)
    base_path: str = "/"
    mode: EndpointMode = "direct"
    origin_url: str = ""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def url(self) -> str:
        """Continuation URL prefix; query parameters are appended directly."""
        if self.mode == "proxied":
            return f"{self.origin_url}?proxyfor={self.port}&"
        path = self.base_path if self.base_path.startswith("/") else "/" + self.base_path
        return f"http://{self.host}:{self.port}{path}?"


class TurnRequest(BaseModel):
    method: str
    path: str = "/"
    query: str = ""
    params: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def result(self) -> Optional[str]:
        return self.params.get("result")


class ProxyRequest(BaseModel):
    target_port: int = Field(ge=1, le=65535)
    remainder: str = ""

    model_config = ConfigDict(extra="forbid")


class RecordingResult(BaseModel):
    audio: Optional[bytes] = None
    disposition: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
