"""One-shot pipe that carries the worker's endpoint URL back to the invoker.

Created before detaching so both processes inherit it. The worker writes a
single newline-terminated URL; the invoker reads exactly one line. After the
fork each side must close the end it does not use, otherwise the invoker
never sees EOF when the worker dies.
"""
from __future__ import annotations

import os
import select
import time
from typing import Optional

from ..errors import HandoffError


_MAX_MESSAGE = 64 * 1024


class HandoffChannel:
    def __init__(self, read_fd: int, write_fd: int) -> None:
        self._read_fd: Optional[int] = read_fd
        self._write_fd: Optional[int] = write_fd
        self._written = False
        self._read = False

    @classmethod
    def create(cls) -> "HandoffChannel":
        try:
            r, w = os.pipe()
        except OSError as e:
            raise HandoffError(f"can't create pipe: {e}") from e
        return cls(r, w)

    def close_reader(self) -> None:
        if self._read_fd is not None:
            try:
                os.close(self._read_fd)
            except OSError:
                pass
            self._read_fd = None

    def close_writer(self) -> None:
        if self._write_fd is not None:
            try:
                os.close(self._write_fd)
            except OSError:
                pass
            self._write_fd = None

    def close(self) -> None:
        self.close_reader()
        self.close_writer()

    def write_endpoint(self, url: str) -> None:
        """Worker side: send the URL once, then close the write end."""
        if self._written or self._write_fd is None:
            raise HandoffError("endpoint already handed off")
        self._written = True
        data = (str(url).strip() + "\n").encode("utf-8")
        try:
            view = memoryview(data)
            while view:
                n = os.write(self._write_fd, view)
                view = view[n:]
        except OSError as e:
            raise HandoffError(f"can't write endpoint: {e}") from e
        finally:
            self.close_writer()

    def read_endpoint(self, timeout: Optional[float] = None) -> str:
        """Invoker side: block until the worker's URL arrives.

        `timeout` bounds the whole wait; EOF before a full line means the
        worker died without binding.
        """
        if self._read or self._read_fd is None:
            raise HandoffError("endpoint already read")
        self._read = True
        deadline = None if timeout is None else time.monotonic() + float(timeout)
        buf = b""
        try:
            while b"\n" not in buf:
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise HandoffError(f"timed out after {timeout}s waiting for worker endpoint")
                ready, _, _ = select.select([self._read_fd], [], [], remaining)
                if not ready:
                    continue
                chunk = os.read(self._read_fd, 4096)
                if not chunk:
                    raise HandoffError("worker exited before reporting its endpoint")
                buf += chunk
                if len(buf) > _MAX_MESSAGE:
                    raise HandoffError("endpoint message too large")
        except OSError as e:
            raise HandoffError(f"can't read endpoint: {e}") from e
        finally:
            self.close_reader()
        url = buf.split(b"\n", 1)[0].decode("utf-8", errors="replace").strip()
        if not url:
            raise HandoffError("worker reported an empty endpoint")
        return url
