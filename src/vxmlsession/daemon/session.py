from __future__ import annotations

import logging
import sys
from typing import Any, List, Optional, TextIO, Union

from ..contracts.v1 import (
    AudioArgs,
    ListenArgs,
    PauseArgs,
    RecordArgs,
    RecordingResult,
    TurnRequest,
    audio_items,
)
from ..errors import ConversationAbandoned, ConversationCompleted
from ..kernel.cgi_env import make_absolute_url
from ..kernel.markup import (
    render_audio,
    render_disconnect_document,
    render_goto_document,
    render_listen_document,
    render_pause,
    render_record_document,
)
from ..util.obslog import conversation_logger
from .recording import parse_recording
from .server import SessionDaemon


CONSOLE_RECORDING = b"insertsoundhere"


class ConsoleTransport:
    """Plays a conversation on a terminal: speech is printed, replies are typed."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        self._stdin = stdin
        self._stdout = stdout

    def say(self, text: str) -> None:
        out = self._stdout or sys.stdout
        out.write(text + "\n")
        out.flush()

    def read_line(self) -> Optional[str]:
        line = (self._stdin or sys.stdin).readline()
        if not line:
            return None
        return line.rstrip("\r\n")


def _is_listen_reply(req: TurnRequest) -> bool:
    return req.method == "GET" and req.result is not None


def _is_record_reply(req: TurnRequest) -> bool:
    return req.result is not None


class ConversationSession:
    """The conversation one worker holds across turns.

    Output accumulates in `pending` until the next listen/record/end call
    flushes it into the response on the held connection. With no daemon the
    session runs in console mode against a ConsoleTransport.
    """

    def __init__(
        self,
        daemon: Optional[SessionDaemon] = None,
        *,
        origin_url: str = "",
        console: Optional[ConsoleTransport] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.daemon = daemon
        self.origin_url = origin_url
        self.console = console if console is not None or daemon is not None else ConsoleTransport()
        self.log = log or conversation_logger("vxmlsession.session")
        self._pending: List[str] = []
        self.turns_completed = 0
        self.last_response: Optional[str] = None
        self._ended: Optional[str] = None

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    @property
    def state(self) -> str:
        if self._ended:
            return self._ended
        if self.daemon is not None and self.daemon.has_connection:
            return "rendering"
        return "awaiting_turn"

    def resolve_url(self, url: str) -> str:
        return make_absolute_url(self.origin_url, url)

    # -- output -----------------------------------------------------------

    def append_output(self, fragment: Any) -> None:
        for item in audio_items(fragment):
            if item.pause:
                self.append_pause(item.pause)
                continue
            if self.console is not None:
                self.console.say(item.tts or item.wav or item.data or "")
                continue
            rendered = render_audio(item, self.resolve_url)
            self._pending.append(rendered)
            self.log.debug("saying %s", rendered)

    def audio(self, *items: Any, **fields: Any) -> None:
        """Queue speech.

        audio("text"), audio("file.wav", "fallback text"), audio(tts=..., wav=...)
        and lists of any of these are accepted.
        """
        if fields:
            if items:
                raise TypeError("pass either positional audio items or keyword fields, not both")
            self.append_output(AudioArgs(**fields))
            return
        if len(items) == 2 and all(isinstance(i, str) for i in items) and items[0].lower().endswith(".wav"):
            self.append_output(AudioArgs(wav=items[0], tts=items[1]))
            return
        self.append_output(list(items))

    def append_pause(self, milliseconds: int) -> None:
        args = PauseArgs(milliseconds=milliseconds)
        if self.console is not None:
            return
        self._pending.append(render_pause(args.milliseconds))
        self.log.debug("pausing for %s milliseconds", args.milliseconds)

    pause = append_pause

    def flush_output(self) -> List[str]:
        out, self._pending = self._pending, []
        return out

    def _render_items(self, items: List[AudioArgs]) -> str:
        return "\n".join(render_audio(a, self.resolve_url) for a in items)

    # -- turns ------------------------------------------------------------

    def _require_daemon(self) -> SessionDaemon:
        if self._ended:
            raise RuntimeError(f"conversation already {self._ended}")
        if self.daemon is None or not self.daemon.has_connection:
            raise RuntimeError("no pending connection to answer")
        return self.daemon

    def _await(self, daemon: SessionDaemon, accept: Any) -> TurnRequest:
        try:
            return daemon.await_turn(accept)
        except ConversationAbandoned:
            self._ended = "abandoned"
            self.log.info("caller did not come back within %ss", daemon.idle_timeout)
            raise

    def _console_reply(self) -> str:
        assert self.console is not None
        line = self.console.read_line()
        if line is None:
            self._ended = "completed"
            raise ConversationCompleted("end of input")
        self.turns_completed += 1
        return line

    def collect_input(self, args: Optional[ListenArgs] = None, **fields: Any) -> str:
        """Send pending output plus a prompt, then block for the caller's reply."""
        if args is None:
            args = ListenArgs(**fields)
        elif fields:
            raise TypeError("pass either ListenArgs or keyword fields, not both")

        if self.console is not None:
            return self._console_reply()

        daemon = self._require_daemon()
        grammar_src = self.resolve_url(args.grammar_src) if args.grammar_src else None
        doc = render_listen_document(self.flush_output(), args, daemon.endpoint.url, grammar_src)
        self.last_response = doc
        daemon.respond(doc)

        req = self._await(daemon, _is_listen_reply)
        value = req.result or ""
        self.turns_completed += 1
        self.log.info("got string %s", value, extra={"turn": self.turns_completed})
        return value

    listen = collect_input

    def record(self, args: Optional[RecordArgs] = None, **fields: Any) -> RecordingResult:
        """Record the caller, then return the audio and what they chose to do with it.

        An empty or "0" disposition means the caller aborted: both fields are
        None. The null-audio word returns no audio.
        """
        if args is None:
            args = RecordArgs(**fields)
        elif fields:
            raise TypeError("pass either RecordArgs or keyword fields, not both")

        if self.console is not None:
            return RecordingResult(audio=CONSOLE_RECORDING, disposition=self._console_reply())

        daemon = self._require_daemon()
        doc = render_record_document(self.flush_output(), args, daemon.endpoint.url, self._render_items)
        self.last_response = doc
        daemon.respond(doc)

        req = self._await(daemon, _is_record_reply)
        code = req.result or ""
        self.turns_completed += 1
        self.log.info("got result code %s", code, extra={"turn": self.turns_completed})
        if not code or code == "0":
            return RecordingResult()
        if args.null_audio_word and code == args.null_audio_word:
            return RecordingResult(disposition=code)
        return parse_recording(req.body, disposition=code)

    def end_conversation(self, url: Optional[str] = None, *, hangup: bool = False) -> None:
        """Send pending output with a final goto or disconnect, then end the worker."""
        if (url is None) == (not hangup):
            raise ValueError("specify exactly one of url or hangup")

        if self.console is not None:
            if hangup:
                self.console.say("Disconnecting")
            else:
                self.console.say(f"Going to {self.resolve_url(str(url))}")
            self._ended = "completed"
            raise ConversationCompleted("hangup" if hangup else "goto")

        daemon = self._require_daemon()
        fragments = self.flush_output()
        if hangup:
            doc = render_disconnect_document(fragments)
        else:
            doc = render_goto_document(fragments, self.resolve_url(str(url)))
        self.last_response = doc
        daemon.respond(doc)
        daemon.close_connection()
        self._ended = "completed"
        self.log.info("conversation finished (%s)", "hangup" if hangup else "goto")
        raise ConversationCompleted("hangup" if hangup else "goto")

    def goto_url(self, url: str) -> None:
        self.end_conversation(url)

    def disconnect(self) -> None:
        self.end_conversation(hangup=True)
