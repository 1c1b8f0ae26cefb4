import socket
import threading
import unittest

import requests


ORIGIN = "http://front.example/cgi-bin/app.cgi"


def _listening_socket() -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    s.bind(("127.0.0.1", 0))
    s.listen(5)
    return s


class TestConversationSession(unittest.TestCase):
    def _session(self, idle_timeout: float = 5.0):
        from vxmlsession.contracts.v1 import SessionEndpoint
        from vxmlsession.daemon.server import SessionDaemon
        from vxmlsession.daemon.session import ConversationSession

        sock = _listening_socket()
        port = sock.getsockname()[1]
        daemon = SessionDaemon(sock, SessionEndpoint(host="127.0.0.1", port=port), idle_timeout=idle_timeout)
        self.addCleanup(daemon.close)
        return port, daemon, ConversationSession(daemon, origin_url=ORIGIN)

    def _client(self, port: int, steps):
        """Run (method, query, body) steps in order; collect (status, text)."""
        out = []

        def run() -> None:
            for method, query, body in steps:
                url = f"http://127.0.0.1:{port}/?{query}"
                if method == "POST":
                    r = requests.post(url, data=body, timeout=10)
                else:
                    r = requests.get(url, timeout=10)
                out.append((r.status_code, r.text))

        t = threading.Thread(target=run, daemon=True)
        t.start()
        return t, out

    def test_listen_flushes_output_and_survives_malformed_request(self) -> None:
        from vxmlsession.errors import ConversationCompleted

        port, daemon, session = self._session()
        t, out = self._client(
            port,
            [("GET", "x=y", None), ("GET", "bogus=1", None), ("GET", "result=42", None)],
        )
        daemon.accept_initial()
        self.assertEqual(session.state, "rendering")

        session.audio("hello")
        self.assertEqual(session.pending, ["<audio>hello</audio>"])
        value = session.listen(grammar="NATURAL_NUMBER_THRU_99")
        self.assertEqual(value, "42")
        self.assertEqual(session.turns_completed, 1)
        self.assertEqual(daemon.rejected, 1)
        self.assertEqual(session.pending, [])
        self.assertEqual(session.flush_output(), [])

        with self.assertRaises(ConversationCompleted):
            session.disconnect()
        t.join(10)
        self.assertEqual(session.state, "completed")

        self.assertEqual([status for status, _ in out], [200, 403, 200])
        first = out[0][1]
        self.assertEqual(first.count("<audio>hello</audio>"), 1)
        self.assertIn("<grammar><![CDATA[NATURAL_NUMBER_THRU_99]]></grammar>", first)
        self.assertIn(f'<goto next="http://127.0.0.1:{port}/?result={{session.vxmllib.result}}"/>', first)
        final = out[2][1]
        self.assertIn("<disconnect/>", final)
        self.assertNotIn("<field", final)
        self.assertNotIn("hello", final)

    def test_goto_url_ends_with_single_navigation(self) -> None:
        from vxmlsession.errors import ConversationCompleted

        port, daemon, session = self._session()
        t, out = self._client(port, [("GET", "x=y", None), ("GET", "result=yes", None)])
        daemon.accept_initial()

        self.assertEqual(session.listen(grammar_src="grammars/yesno.gsl", noinput="silence"), "yes")
        session.audio("fish & chips")
        with self.assertRaises(ConversationCompleted):
            session.goto_url("/next.vxml")
        t.join(10)

        first = out[0][1]
        self.assertIn('<grammar src="http://front.example/cgi-bin/grammars/yesno.gsl"/>', first)
        self.assertIn("result=silence", first)
        final = out[1][1]
        self.assertEqual(final.count("<goto "), 1)
        self.assertIn('<goto next="http://front.example/next.vxml"/>', final)
        self.assertIn("<audio>fish &amp; chips</audio>", final)
        self.assertNotIn("<field", final)
        self.assertEqual(session.last_response, final)

    def test_listen_rejects_post_without_consuming_turn(self) -> None:
        from vxmlsession.errors import ConversationCompleted

        port, daemon, session = self._session()
        t, out = self._client(
            port,
            [("GET", "x=y", None), ("POST", "result=1", b"x"), ("GET", "result=2", None)],
        )
        daemon.accept_initial()
        self.assertEqual(session.listen(grammar="G"), "2")
        self.assertEqual(session.turns_completed, 1)
        with self.assertRaises(ConversationCompleted):
            session.disconnect()
        t.join(10)
        self.assertEqual([status for status, _ in out], [200, 403, 200])

    def test_record_returns_audio_between_boundaries(self) -> None:
        from vxmlsession.errors import ConversationCompleted

        port, daemon, session = self._session()
        body = b"--XYZ\r\nContent-Type: audio/wav\r\n\r\nAUDIO1\nAUDIO2\n--XYZ--\r\n"
        t, out = self._client(port, [("GET", "x=y", None), ("POST", "result=save&", body)])
        daemon.accept_initial()

        session.audio("Speak after the beep.")
        res = session.record(grammar="SAVE_OR_REPLAY", replay_word="replay", null_audio_word="nothing")
        self.assertEqual(res.disposition, "save")
        self.assertEqual(res.audio, b"AUDIO1\nAUDIO2\n")
        with self.assertRaises(ConversationCompleted):
            session.disconnect()
        t.join(10)

        doc = out[0][1]
        self.assertIn('<record name="session.vxmllib.recordvalue"', doc)
        self.assertIn("<audio>Speak after the beep.</audio>", doc)
        self.assertIn('<result name="replay">', doc)
        self.assertIn('method="post" namelist="session.vxmllib.recordvalue"', doc)

    def test_record_abort_and_null_audio(self) -> None:
        from vxmlsession.errors import ConversationCompleted

        port, daemon, session = self._session()
        t, _out = self._client(
            port,
            [("GET", "x=y", None), ("GET", "result=0&", None), ("GET", "result=nothing&", None)],
        )
        daemon.accept_initial()

        aborted = session.record(grammar="G", null_audio_word="nothing")
        self.assertIsNone(aborted.audio)
        self.assertIsNone(aborted.disposition)
        empty = session.record(grammar="G", null_audio_word="nothing")
        self.assertIsNone(empty.audio)
        self.assertEqual(empty.disposition, "nothing")
        self.assertEqual(session.turns_completed, 2)
        with self.assertRaises(ConversationCompleted):
            session.disconnect()
        t.join(10)

    def test_abandoned_when_caller_never_returns(self) -> None:
        from vxmlsession.errors import ConversationAbandoned

        port, daemon, session = self._session(idle_timeout=0.3)
        t, out = self._client(port, [("GET", "x=y", None)])
        daemon.accept_initial()
        with self.assertRaises(ConversationAbandoned):
            session.listen(grammar="G")
        t.join(10)
        self.assertEqual(session.state, "abandoned")
        self.assertEqual(len(out), 1)

    def test_argument_errors_are_raised_before_any_io(self) -> None:
        from pydantic import ValidationError

        _port, daemon, session = self._session()
        with self.assertRaises(ValidationError):
            session.listen(grammar="G", grammar_src="g.gsl")
        with self.assertRaises(ValidationError):
            session.listen()
        with self.assertRaises(ValidationError):
            session.listen(grammer="G")
        with self.assertRaises(ValidationError):
            session.append_pause(0)
        with self.assertRaises(ValidationError):
            session.audio(wav="a.wav", data="xyz")
        with self.assertRaises(ValidationError):
            session.audio(tts="hi", pause=100)
        with self.assertRaises(ValueError):
            session.end_conversation()
        self.assertFalse(daemon.has_connection)
        self.assertEqual(session.pending, [])

    def test_fragment_forms(self) -> None:
        _port, _daemon, session = self._session()
        session.audio("intro.wav", "Welcome")
        session.audio({"data": "{rec}"})
        session.audio(["one", {"pause": 300}, "two"])
        session.pause(250)
        self.assertEqual(
            session.flush_output(),
            [
                '<audio src="http://front.example/cgi-bin/intro.wav">Welcome</audio>',
                '<audio data="{rec}"></audio>',
                "<audio>one</audio>",
                "<pause>300</pause>",
                "<audio>two</audio>",
                "<pause>250</pause>",
            ],
        )
        self.assertEqual(session.flush_output(), [])


if __name__ == "__main__":
    unittest.main()
