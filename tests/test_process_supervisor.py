import os
import tempfile
import unittest
from pathlib import Path


class _Exit(Exception):
    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code


def _fake_ops(forks):
    from vxmlsession.daemon.supervisor import DetachOps

    class FakeOps(DetachOps):
        def __init__(self) -> None:
            self.forks = list(forks)
            self.calls = []

        def flush(self) -> None:
            self.calls.append("flush")

        def fork(self) -> int:
            self.calls.append("fork")
            v = self.forks.pop(0)
            if isinstance(v, Exception):
                raise v
            return v

        def waitpid(self, pid: int) -> None:
            self.calls.append(("waitpid", pid))

        def setsid(self) -> None:
            self.calls.append("setsid")

        def redirect_stdin_stdout(self) -> None:
            self.calls.append("redirect_stdio")

        def redirect_stderr(self, path) -> None:
            self.calls.append(("redirect_stderr", path))

        def exit_now(self, code: int) -> None:
            self.calls.append(("exit", code))
            raise _Exit(code)

    return FakeOps()


class TestProcessSupervisor(unittest.TestCase):
    def test_parent_becomes_invoker_and_reaps_child(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor, Role

        ops = _fake_ops([123])
        role = ProcessSupervisor(ops).detach()
        self.assertIs(role, Role.INVOKER)
        self.assertIn(("waitpid", 123), ops.calls)
        self.assertNotIn("setsid", ops.calls)

    def test_grandchild_becomes_worker_in_new_session(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor, Role

        ops = _fake_ops([0, 0])
        stderr_path = Path("/tmp/app.stderr.1")
        role = ProcessSupervisor(ops, stderr_path=stderr_path).detach()
        self.assertIs(role, Role.WORKER)
        self.assertEqual(
            ops.calls,
            ["flush", "fork", "redirect_stdio", "fork", "setsid", ("redirect_stderr", stderr_path)],
        )

    def test_intermediate_child_exits_immediately(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor

        ops = _fake_ops([0, 456])
        with self.assertRaises(_Exit) as cm:
            ProcessSupervisor(ops).detach()
        self.assertEqual(cm.exception.code, 0)
        self.assertNotIn("setsid", ops.calls)

    def test_fork_failure_is_fatal(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor
        from vxmlsession.errors import DetachError

        ops = _fake_ops([OSError("Resource temporarily unavailable")])
        with self.assertRaises(DetachError):
            ProcessSupervisor(ops).detach()

    def test_setsid_failure_exits_worker(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor

        ops = _fake_ops([0, 0])

        def _fail() -> None:
            raise OSError("Operation not permitted")

        ops.setsid = _fail
        with self.assertRaises(_Exit) as cm:
            ProcessSupervisor(ops).detach()
        self.assertEqual(cm.exception.code, 1)

    def test_detaches_only_once(self) -> None:
        from vxmlsession.daemon.supervisor import ProcessSupervisor
        from vxmlsession.errors import DetachError

        sup = ProcessSupervisor(_fake_ops([123, 124]))
        sup.detach()
        self.assertTrue(sup.detached)
        with self.assertRaises(DetachError):
            sup.detach()

    def test_detach_ops_requires_every_primitive(self) -> None:
        from vxmlsession.daemon.supervisor import DetachOps, PosixDetachOps

        class ForkOnly(DetachOps):
            def fork(self) -> int:
                return 0

        with self.assertRaises(TypeError):
            ForkOnly()
        self.assertIsInstance(PosixDetachOps(), DetachOps)

    def test_worker_pid_files(self) -> None:
        from vxmlsession.daemon.supervisor import list_workers, remove_worker_pid, write_worker_pid

        old_home = os.environ.get("VXMLSESSION_HOME")
        try:
            with tempfile.TemporaryDirectory() as td:
                os.environ["VXMLSESSION_HOME"] = td
                p = write_worker_pid(7501)
                self.assertTrue(p.exists())
                self.assertEqual(list_workers(), [(7501, os.getpid(), True)])
                remove_worker_pid(7501)
                self.assertEqual(list_workers(), [])
        finally:
            if old_home is None:
                os.environ.pop("VXMLSESSION_HOME", None)
            else:
                os.environ["VXMLSESSION_HOME"] = old_home


if __name__ == "__main__":
    unittest.main()
