"""Detach a conversation worker from the invoking CGI request.

The invoker forks; the child points stdin/stdout at the null device and forks
again; the intermediate exits at once so the grandchild is orphaned, and the
grandchild starts a new session. The web server hosting the invoker then sees
it exit promptly and never waits on the worker.
"""
from __future__ import annotations

import enum
import logging
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import DetachError
from ..paths import workers_dir
from ..util.fs import atomic_write_text, read_text


logger = logging.getLogger("vxmlsession.supervisor")


class Role(enum.Enum):
    INVOKER = "invoker"
    WORKER = "worker"


class DetachOps(ABC):
    """Platform primitives used by ProcessSupervisor (overridable in tests)."""

    def flush(self) -> None:
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (OSError, ValueError, AttributeError):
                pass

    @abstractmethod
    def fork(self) -> int:
        pass

    @abstractmethod
    def waitpid(self, pid: int) -> None:
        pass

    @abstractmethod
    def setsid(self) -> None:
        pass

    @abstractmethod
    def redirect_stdin_stdout(self) -> None:
        pass

    @abstractmethod
    def redirect_stderr(self, path: Optional[Path]) -> None:
        pass

    @abstractmethod
    def exit_now(self, code: int) -> None:
        pass


class PosixDetachOps(DetachOps):
    def fork(self) -> int:
        return os.fork()

    def waitpid(self, pid: int) -> None:
        os.waitpid(pid, 0)

    def setsid(self) -> None:
        os.setsid()

    def redirect_stdin_stdout(self) -> None:
        fd_in = os.open(os.devnull, os.O_RDONLY)
        fd_out = os.open(os.devnull, os.O_WRONLY)
        try:
            os.dup2(fd_in, 0)
            os.dup2(fd_out, 1)
        finally:
            os.close(fd_in)
            os.close(fd_out)

    def redirect_stderr(self, path: Optional[Path]) -> None:
        if path is None:
            os.dup2(1, 2)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
        try:
            os.dup2(fd, 2)
        finally:
            os.close(fd)

    def exit_now(self, code: int) -> None:
        os._exit(code)


class ProcessSupervisor:
    """Splits the current process into an invoker and one detached worker."""

    def __init__(self, ops: Optional[DetachOps] = None, *, stderr_path: Optional[Path] = None) -> None:
        self._ops = ops or PosixDetachOps()
        self._stderr_path = stderr_path
        self._detached = False

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> Role:
        if self._detached:
            raise DetachError("worker already detached for this conversation")
        self._detached = True
        ops = self._ops
        ops.flush()
        try:
            pid = ops.fork()
        except OSError as e:
            logger.error("can't fork: %s", e)
            raise DetachError(f"can't fork: {e}") from e

        if pid > 0:
            # Reap the intermediate child; it exits right after its own fork.
            try:
                ops.waitpid(pid)
            except ChildProcessError:
                pass
            return Role.INVOKER

        try:
            ops.redirect_stdin_stdout()
        except OSError as e:
            logger.error("can't redirect stdin/stdout to %s: %s", os.devnull, e)
            ops.exit_now(1)
        try:
            pid = ops.fork()
        except OSError as e:
            logger.error("can't fork: %s", e)
            ops.exit_now(1)
        if pid > 0:
            ops.exit_now(0)

        try:
            ops.setsid()
        except OSError as e:
            logger.error("can't start a new session: %s", e)
            ops.exit_now(1)
        try:
            ops.redirect_stderr(self._stderr_path)
        except OSError as e:
            logger.error("can't redirect stderr: %s", e)
            ops.exit_now(1)
        return Role.WORKER


def worker_pid_path(port: int) -> Path:
    return workers_dir() / f"{int(port)}.pid"


def write_worker_pid(port: int) -> Path:
    p = worker_pid_path(port)
    atomic_write_text(p, str(os.getpid()) + "\n")
    return p


def remove_worker_pid(port: int) -> None:
    p = worker_pid_path(port)
    try:
        txt = read_text(p).strip()
        if txt == str(os.getpid()):
            p.unlink()
    except OSError:
        pass


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True


def list_workers() -> List[Tuple[int, int, bool]]:
    """(port, pid, alive) for every recorded worker, lowest port first."""
    base = workers_dir()
    out: List[Tuple[int, int, bool]] = []
    if not base.exists():
        return out
    for p in sorted(base.glob("*.pid")):
        if not p.stem.isdigit():
            continue
        txt = read_text(p).strip()
        pid = int(txt) if txt.isdigit() else 0
        out.append((int(p.stem), pid, _pid_alive(pid)))
    out.sort()
    return out
