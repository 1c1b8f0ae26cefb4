"""Settings for conversation workers.

Settings are read from ~/.vxmlsession/settings.yaml (or $VXMLSESSION_HOME),
then from VXMLSESSION_* environment variables, then from the keyword
arguments the application passes to VoiceServer. Later sources win.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml  # type: ignore

from ..contracts.v1 import ServerOptions
from ..paths import vxmlsession_home
from ..util.conv import coerce_bool, coerce_float, coerce_int


_BOOL_KEYS = ("avoid_firewall", "debug")
_INT_KEYS = ("min_port", "max_port")
_FLOAT_KEYS = ("timeout_interval", "handoff_timeout", "proxy_timeout")

_ENV_KEYS = {
    "VXMLSESSION_MIN_PORT": "min_port",
    "VXMLSESSION_MAX_PORT": "max_port",
    "VXMLSESSION_AVOID_FIREWALL": "avoid_firewall",
    "VXMLSESSION_TIMEOUT": "timeout_interval",
    "VXMLSESSION_DEBUG": "debug",
    "VXMLSESSION_PUBLIC_HOST": "public_host",
}


def settings_path() -> Path:
    return vxmlsession_home() / "settings.yaml"


def load_settings_file(path: Optional[Path] = None) -> Dict[str, Any]:
    p = path or settings_path()
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(doc, dict):
        return {}
    return {str(k): v for k, v in doc.items()}


def _env_settings(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for env_key, key in _ENV_KEYS.items():
        raw = str(environ.get(env_key, "") or "").strip()
        if raw:
            out[key] = raw
    return out


def _coerce(raw: Dict[str, Any], defaults: ServerOptions) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in raw.items():
        if k in _BOOL_KEYS:
            out[k] = coerce_bool(v, default=getattr(defaults, k))
        elif k in _INT_KEYS:
            out[k] = coerce_int(v, default=getattr(defaults, k))
        elif k in _FLOAT_KEYS:
            out[k] = coerce_float(v, default=getattr(defaults, k))
        else:
            out[k] = v
    return out


def load_options(
    *,
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ServerOptions:
    """Build ServerOptions from file, environment and explicit overrides.

    Unknown keys in any source are rejected by ServerOptions.
    """
    defaults = ServerOptions()
    merged: Dict[str, Any] = {}
    merged.update(_coerce(load_settings_file(path), defaults))
    merged.update(_coerce(_env_settings(os.environ if environ is None else environ), defaults))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return ServerOptions.model_validate(merged)
