import errno
import socket
import unittest
from unittest.mock import patch


def _occupy() -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("", 0))
    s.listen(1)
    return s


class TestPortAllocator(unittest.TestCase):
    def test_returns_lowest_free_port_in_range(self) -> None:
        from vxmlsession.daemon.ports import allocate

        holder = _occupy()
        port = holder.getsockname()[1]
        holder.close()

        alloc = allocate(port, port + 10)
        try:
            self.assertEqual(alloc.port, port)
            self.assertFalse(alloc.used_fallback)
        finally:
            alloc.close()

    def test_occupied_range_falls_back_above_max(self) -> None:
        from vxmlsession.daemon.ports import allocate

        occupied = _occupy()
        try:
            port = occupied.getsockname()[1]
            alloc = allocate(port, port)
            try:
                self.assertGreater(alloc.port, port)
                self.assertTrue(alloc.used_fallback)
            finally:
                alloc.close()
        finally:
            occupied.close()

    def test_skips_occupied_port_inside_range(self) -> None:
        from vxmlsession.daemon.ports import allocate

        occupied = _occupy()
        try:
            port = occupied.getsockname()[1]
            alloc = allocate(port, port + 20)
            try:
                self.assertGreater(alloc.port, port)
                self.assertEqual(alloc.used_fallback, alloc.port > port + 20)
            finally:
                alloc.close()
        finally:
            occupied.close()

    def test_returned_socket_is_listening(self) -> None:
        from vxmlsession.daemon.ports import allocate

        holder = _occupy()
        port = holder.getsockname()[1]
        holder.close()

        alloc = allocate(port, port + 10)
        try:
            with socket.create_connection(("127.0.0.1", alloc.port), timeout=2):
                pass
        finally:
            alloc.close()

    def test_inverted_range_is_rejected(self) -> None:
        from vxmlsession.daemon.ports import allocate

        with self.assertRaises(ValueError):
            allocate(7600, 7500)

    def test_systemic_bind_failure_is_fatal(self) -> None:
        from vxmlsession.daemon import ports
        from vxmlsession.errors import PortAllocationError

        def _broken(host: str, port: int, backlog: int) -> socket.socket:
            raise OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")

        with patch.object(ports, "_try_bind", _broken):
            with self.assertRaises(PortAllocationError):
                ports.allocate(7500, 7550)

    def test_contention_errors_advance_the_scan(self) -> None:
        from vxmlsession.daemon import ports

        seen = []
        real = ports._try_bind

        def _flaky(host: str, port: int, backlog: int) -> socket.socket:
            seen.append(port)
            if len(seen) < 3:
                raise OSError(errno.EADDRINUSE, "Address already in use")
            return real(host, 0, backlog)

        with patch.object(ports, "_try_bind", _flaky):
            alloc = ports.allocate(7500, 7501)
        try:
            self.assertEqual(seen, [7500, 7501, 7502])
            self.assertEqual(alloc.port, 7502)
            self.assertTrue(alloc.used_fallback)
        finally:
            alloc.close()


if __name__ == "__main__":
    unittest.main()
