from __future__ import annotations

import os
from pathlib import Path


def vxmlsession_home() -> Path:
    env = os.environ.get("VXMLSESSION_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".vxmlsession").resolve()


def ensure_home() -> Path:
    home = vxmlsession_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def workers_dir() -> Path:
    return vxmlsession_home() / "workers"


def logs_dir() -> Path:
    return vxmlsession_home() / "logs"
