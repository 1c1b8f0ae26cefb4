"""Extract the recorded audio from the voice client's POSTed body.

The platform submits something shaped like a single multipart part: a
boundary line, a few header lines, a blank line, the audio, and the boundary
again. Its framing is not strictly MIME, so parsing is best effort and never
raises on odd input.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from ..contracts.v1 import RecordingResult


logger = logging.getLogger("vxmlsession.recording")


def parse_recording(body: Optional[bytes], *, disposition: Optional[str] = None, boundary: Optional[bytes] = None) -> RecordingResult:
    """Return the audio between the part headers and the closing boundary.

    `boundary` defaults to the body's first line (trailing whitespace
    stripped). Lines are kept newline-terminated; anything after the closing
    boundary is discarded.
    """
    lines: List[bytes] = (body or b"").split(b"\n")
    if lines and lines[-1] == b"":
        lines.pop()
    if not lines:
        return RecordingResult(audio=b"", disposition=disposition)

    if boundary is None:
        boundary = lines.pop(0).rstrip()
    elif lines and lines[0].rstrip() == boundary:
        lines.pop(0)
    logger.debug("audio boundary line: %r", boundary)

    while lines:
        line = lines.pop(0)
        if not line.strip():
            break
        logger.debug("ignoring audio header line: %r", line)

    audio = bytearray()
    while lines:
        line = lines.pop(0)
        if boundary and line.startswith(boundary):
            break
        audio += line + b"\n"

    if lines:
        logger.debug("ignoring %d trailing audio data lines", len(lines))
    return RecordingResult(audio=bytes(audio), disposition=disposition)
