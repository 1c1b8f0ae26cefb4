from __future__ import annotations

from .options import ServerOptions
from .session import EndpointMode, ProxyRequest, RecordingResult, SessionEndpoint, TurnRequest
from .turns import AudioArgs, ListenArgs, PauseArgs, RecordArgs, audio_items

__all__ = [
    "AudioArgs",
    "EndpointMode",
    "ListenArgs",
    "PauseArgs",
    "ProxyRequest",
    "RecordArgs",
    "RecordingResult",
    "ServerOptions",
    "SessionEndpoint",
    "TurnRequest",
    "audio_items",
]
