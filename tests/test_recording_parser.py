import unittest


class TestRecordingParser(unittest.TestCase):
    def test_boundary_defaults_to_first_line(self) -> None:
        from vxmlsession.daemon.recording import parse_recording

        body = (
            b"-----------7d0\r\n"
            b"Content-Disposition: form-data; name=\"session.vxmllib.recordvalue\"\r\n"
            b"Content-Type: audio/basic\r\n"
            b"\r\n"
            b"\x01\x02\x03\n"
            b"\x04\x05\n"
            b"-----------7d0--\r\n"
            b"trailing junk\n"
        )
        res = parse_recording(body, disposition="save")
        self.assertEqual(res.audio, b"\x01\x02\x03\n\x04\x05\n")
        self.assertEqual(res.disposition, "save")

    def test_explicit_boundary(self) -> None:
        from vxmlsession.daemon.recording import parse_recording

        body = b"--B\nX-Header: 1\n\nabc\n--B--\n"
        res = parse_recording(body, boundary=b"--B")
        self.assertEqual(res.audio, b"abc\n")
        self.assertIsNone(res.disposition)

    def test_missing_closing_boundary_keeps_remaining_lines(self) -> None:
        from vxmlsession.daemon.recording import parse_recording

        res = parse_recording(b"--B\nH: v\n\npart1\npart2\n")
        self.assertEqual(res.audio, b"part1\npart2\n")

    def test_empty_or_headerless_body_is_tolerated(self) -> None:
        from vxmlsession.daemon.recording import parse_recording

        self.assertEqual(parse_recording(b"").audio, b"")
        self.assertEqual(parse_recording(None).audio, b"")
        self.assertEqual(parse_recording(b"--B\nonly headers\n").audio, b"")


if __name__ == "__main__":
    unittest.main()
