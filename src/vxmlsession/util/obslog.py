from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, TextIO, Tuple


_CONFIGURED: Dict[str, bool] = {}

_CONTEXT_KEYS = ("conversation_id", "port", "turn", "op", "pid", "mode")


def _utc_ts_iso(ts: float) -> str:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    except (OverflowError, OSError, ValueError):
        return ""


class JsonlFormatter(logging.Formatter):
    """Minimal JSONL formatter for worker debugging.

    Keep fields stable and small; extra fields can be added via `logger.*(..., extra={...})`.
    """

    def __init__(self, *, component: str):
        super().__init__()
        self._component = str(component or "").strip() or "vxmlsession"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _utc_ts_iso(getattr(record, "created", 0.0) or 0.0),
            "level": str(getattr(record, "levelname", "") or ""),
            "logger": str(getattr(record, "name", "") or ""),
            "component": self._component,
            "msg": record.getMessage(),
        }

        # Conversation correlation keys (optional).
        for k in _CONTEXT_KEYS:
            v = getattr(record, k, None)
            if v is None:
                continue
            sv = str(v).strip()
            if sv:
                payload[k] = sv

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        try:
            return json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError):
            # Last resort: never crash logging.
            return '{"component":"%s","level":"%s","msg":"(log serialization failed)"}' % (
                self._component,
                payload.get("level", "INFO"),
            )


def _parse_level(level: str, default: int = logging.INFO) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return default
    return int(getattr(logging, s, default))


def setup_root_json_logging(
    *,
    component: str,
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """Configure root logging once per process.

    - Uses a single StreamHandler with JSONL formatter.
    - `force=True` clears existing handlers; a freshly detached worker uses it
      to drop handlers inherited from the invoker.
    """
    key = f"root:{component}"
    if _CONFIGURED.get(key) and not force:
        return
    _CONFIGURED[key] = True

    root = logging.getLogger()
    root.setLevel(_parse_level(level))

    if force:
        for h in list(root.handlers):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(_parse_level(level))
    handler.setFormatter(JsonlFormatter(component=component))

    # Avoid duplicate handlers on repeated calls.
    for h in list(root.handlers):
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
            fmt = getattr(h, "formatter", None)
            if isinstance(fmt, JsonlFormatter):
                h.setLevel(_parse_level(level))
                return

    root.addHandler(handler)


def setup_debug_file_logging(path: Path, *, component: str, level: str = "DEBUG") -> logging.Handler:
    """Append JSONL records for this process to `path` (debug mode)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setLevel(_parse_level(level, logging.DEBUG))
    handler.setFormatter(JsonlFormatter(component=component))
    root = logging.getLogger()
    root.setLevel(min(root.level or logging.DEBUG, handler.level))
    root.addHandler(handler)
    return handler


class ConversationLogAdapter(logging.LoggerAdapter):
    """Carries the conversation context on every record it emits.

    Per-call `extra` keys (e.g. `turn`) are merged over the bound context.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> "ConversationLogAdapter":
        merged = dict(self.extra or {})
        merged.update(context)
        return ConversationLogAdapter(self.logger, merged)


def conversation_logger(name: str, **context: Any) -> ConversationLogAdapter:
    return ConversationLogAdapter(logging.getLogger(name), dict(context))
