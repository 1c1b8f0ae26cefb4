from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ServerOptions(BaseModel):
    """Knobs for one conversation worker."""
    v: int = 1
    min_port: int = Field(default=7500, ge=1, le=65535)
    max_port: int = Field(default=7550, ge=1, le=65535)
    # Always hand out the tunnelled front-end URL instead of the worker port.
    avoid_firewall: bool = False
    # Seconds to wait for the caller's next request before giving up.
    timeout_interval: float = Field(default=60.0, gt=0)
    debug: bool = False
    server_name: Optional[str] = None
    public_host: Optional[str] = None
    bind_host: str = ""
    handoff_timeout: float = Field(default=30.0, gt=0)
    proxy_timeout: float = Field(default=60.0, gt=0)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_range(self) -> "ServerOptions":
        if self.min_port > self.max_port:
            raise ValueError(f"min_port {self.min_port} is greater than max_port {self.max_port}")
        return self
