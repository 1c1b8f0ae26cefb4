"""VoiceServer: write a phone conversation as an ordinary sequential program.

    server = VoiceServer(avoid_firewall=True)
    server.audio("Pick a number between 1 and 99.")
    guess = server.listen(grammar="NATURAL_NUMBER_THRU_99")

The CGI script runs once per call. Constructing VoiceServer splits it into
the invoker, which redirects the voice client to a freshly bound port and
exits, and a detached worker, which returns from the constructor and serves
every later turn. Run from a terminal, the same script plays the conversation
on stdin/stdout.
"""
from __future__ import annotations

import atexit
import logging
import os
import socket
import sys
import uuid
from pathlib import Path
from typing import Any, BinaryIO, Mapping, Optional, TextIO

from .contracts.v1 import RecordingResult, ServerOptions, SessionEndpoint
from .daemon.handoff import HandoffChannel
from .daemon.ports import allocate
from .daemon.proxy import RECORDING_MARKER, ProxyTunnel, parse_proxy_query
from .daemon.server import SessionDaemon
from .daemon.session import ConsoleTransport, ConversationSession
from .daemon.supervisor import ProcessSupervisor, Role, remove_worker_pid, write_worker_pid
from .errors import DetachError, HandoffError, PortAllocationError
from .kernel.cgi_env import CgiEnvironment
from .kernel.markup import cgi_response, render_error_document, render_redirect_document
from .kernel.settings import load_options
from .paths import logs_dir
from .util.obslog import conversation_logger, setup_debug_file_logging, setup_root_json_logging


logger = logging.getLogger("vxmlsession.voice")

STARTUP_FAILED = "Sorry, the application could not be started."
BAD_PROXY_PORT = "Sorry, the application asked for a port that does not exist."


def _script_name() -> str:
    return Path(sys.argv[0] or "vxmlsession").name or "vxmlsession"


class VoiceServer:
    def __init__(
        self,
        *,
        environ: Optional[Mapping[str, str]] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        cgi_in: Optional[BinaryIO] = None,
        cgi_out: Optional[BinaryIO] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        handoff: Optional[HandoffChannel] = None,
        settings_path: Optional[Path] = None,
        **options: Any,
    ) -> None:
        self.options: ServerOptions = load_options(path=settings_path, environ=environ, **options)
        self.env = CgiEnvironment.from_environ(environ)
        self._cgi_in = cgi_in
        self._cgi_out = cgi_out
        self.origin_url = self.env.origin_url(self.options.server_name)
        self.endpoint: Optional[SessionEndpoint] = None
        self.conversation_id = uuid.uuid4().hex[:12]

        mode = self.env.mode
        if mode == "proxy":
            self._run_proxy()
            raise SystemExit(0)
        if mode == "cmdline":
            self.session = ConversationSession(
                console=ConsoleTransport(stdin, stdout),
                origin_url=self.origin_url,
                log=conversation_logger("vxmlsession.session", mode="cmdline"),
            )
            return
        self.session = self._launch(supervisor, handoff)

    # -- CGI plumbing -----------------------------------------------------

    def _write_cgi(self, data: bytes) -> None:
        out = self._cgi_out or sys.stdout.buffer
        out.write(data)
        out.flush()

    def _read_cgi_body(self, *, read_all: bool) -> Optional[bytes]:
        src = self._cgi_in or sys.stdin.buffer
        if self.env.content_length > 0:
            return src.read(self.env.content_length)
        if read_all:
            return src.read()
        return None

    def _run_proxy(self) -> None:
        req = parse_proxy_query(self.env.query_string)
        if req is None:
            logger.warning("no valid target port in proxy query <%s>", self.env.query_string)
            self._write_cgi(cgi_response(render_error_document(BAD_PROXY_PORT)))
            return
        body = None
        if self.env.request_method == "POST" or RECORDING_MARKER in req.remainder:
            body = self._read_cgi_body(read_all=True)
        tunnel = ProxyTunnel(timeout=self.options.proxy_timeout)
        self._write_cgi(tunnel.relay(req, body, method=self.env.request_method))

    # -- invoker / worker split -------------------------------------------

    def _debug_base(self) -> Path:
        return logs_dir() / _script_name()

    def _launch(self, supervisor: Optional[ProcessSupervisor], handoff: Optional[HandoffChannel]) -> ConversationSession:
        opts = self.options
        try:
            channel = handoff or HandoffChannel.create()
        except HandoffError as e:
            logger.error("%s", e)
            self._write_cgi(cgi_response(render_error_document(STARTUP_FAILED)))
            raise SystemExit(1)

        stderr_path = None
        if opts.debug:
            stderr_path = Path(f"{self._debug_base()}.stderr.{os.getpid()}")
        sup = supervisor or ProcessSupervisor(stderr_path=stderr_path)
        try:
            role = sup.detach()
        except DetachError as e:
            logger.error("can't detach worker: %s", e)
            channel.close()
            self._write_cgi(cgi_response(render_error_document(STARTUP_FAILED)))
            raise SystemExit(1)

        if role is Role.INVOKER:
            self._redirect_to_worker(channel)
            raise SystemExit(0)
        return self._start_worker(channel)

    def _redirect_to_worker(self, channel: HandoffChannel) -> None:
        channel.close_writer()
        try:
            url = channel.read_endpoint(timeout=self.options.handoff_timeout)
        except HandoffError as e:
            logger.error("worker did not report an endpoint: %s", e)
            self._write_cgi(cgi_response(render_error_document(STARTUP_FAILED)))
            raise SystemExit(1)
        self._write_cgi(cgi_response(render_redirect_document(url + "x=y")))

    def _start_worker(self, channel: HandoffChannel) -> ConversationSession:
        opts = self.options
        channel.close_reader()
        setup_root_json_logging(component="vxmlsession.worker", level="DEBUG" if opts.debug else "INFO", force=True)
        if opts.debug:
            setup_debug_file_logging(Path(f"{self._debug_base()}.log.{os.getpid()}"), component="vxmlsession.worker")
        log = conversation_logger("vxmlsession.daemon", conversation_id=self.conversation_id, pid=os.getpid())

        try:
            alloc = allocate(opts.min_port, opts.max_port, host=opts.bind_host)
        except PortAllocationError as e:
            log.error("%s", e)
            channel.close_writer()
            raise SystemExit(1)
        if alloc.used_fallback:
            log.info("couldn't find an unused port between %s and %s", opts.min_port, opts.max_port)

        mode = "proxied" if (opts.avoid_firewall or alloc.used_fallback) else "direct"
        endpoint = SessionEndpoint(
            host=opts.public_host or socket.getfqdn(),
            port=alloc.port,
            mode=mode,
            origin_url=self.origin_url,
        )
        self.endpoint = endpoint
        log = log.bind(port=endpoint.port, mode=mode)
        try:
            channel.write_endpoint(endpoint.url)
        except HandoffError as e:
            log.error("%s", e)
            alloc.close()
            raise SystemExit(1)

        write_worker_pid(endpoint.port)
        atexit.register(remove_worker_pid, endpoint.port)

        daemon = SessionDaemon(alloc.sock, endpoint, idle_timeout=opts.timeout_interval, log=log)
        log.info("server ready; url is %s", endpoint.url)
        daemon.accept_initial()
        return ConversationSession(daemon, origin_url=self.origin_url, log=log)

    # -- conversation API -------------------------------------------------

    def audio(self, *items: Any, **fields: Any) -> None:
        self.session.audio(*items, **fields)

    def pause(self, milliseconds: int) -> None:
        self.session.append_pause(milliseconds)

    def listen(self, **fields: Any) -> str:
        return self.session.collect_input(**fields)

    def record(self, **fields: Any) -> RecordingResult:
        return self.session.record(**fields)

    def goto_url(self, url: str) -> None:
        self.session.goto_url(url)

    def disconnect(self) -> None:
        self.session.disconnect()
