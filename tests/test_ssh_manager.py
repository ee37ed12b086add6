"""
Tests for SSHManager: command quoting, batching and output parsing over a
mocked paramiko client.
"""
import hashlib
import shlex
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from cloudbackup.core.ssh_manager import ARGS_PER_COMMAND, SSHManager

from fakes import make_config


def _exec_result(out: bytes = b"", err: bytes = b"", status: int = 0):
    """(stdin, stdout, stderr) triple as returned by SSHClient.exec_command."""
    stdout = mock.MagicMock()
    stdout.read.return_value = out
    stdout.channel.recv_exit_status.return_value = status
    stderr = mock.MagicMock()
    stderr.read.return_value = err
    return mock.MagicMock(), stdout, stderr


def _fake_sha256sum(cmd, timeout=None):
    """Answer a quoted `sha256sum p1 p2 …` command like GNU coreutils would."""
    argv = shlex.split(cmd)
    assert argv[0] == "sha256sum"
    out = "".join(f"{hashlib.sha256(p.encode()).hexdigest()}  {p}\n" for p in argv[1:])
    return _exec_result(out.encode())


class SSHCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.cfg = make_config(Path(self.tmpdir.name), ssh_key="/keys/id_ed25519")
        self.mgr = SSHManager(self.cfg)
        self.client = mock.MagicMock()
        self.client.get_transport.return_value.is_active.return_value = True
        self.mgr._ssh = self.client

    def tearDown(self):
        self.tmpdir.cleanup()

    def commands(self) -> list[str]:
        return [c[0][0] for c in self.client.exec_command.call_args_list]


# ── Tests: run / quoting ──────────────────────────────────────────────────────

class TestRun(SSHCase):

    def test_arguments_are_quoted(self):
        self.client.exec_command.return_value = _exec_result(b"ok\n")
        res = self.mgr.run(["chmod", "a-w", "media/my photo's.jpg", "media/$x.jpg"])
        self.assertTrue(res.ok)
        self.assertEqual(res.stdout, "ok\n")
        cmd = self.commands()[0]
        self.assertEqual(shlex.split(cmd), ["chmod", "a-w", "media/my photo's.jpg", "media/$x.jpg"])
        self.assertIn("'media/$x.jpg'", cmd)

    def test_command_timeout_is_passed(self):
        self.client.exec_command.return_value = _exec_result()
        self.mgr.run(["true"])
        self.assertEqual(self.client.exec_command.call_args[1]["timeout"], self.cfg.command_timeout)

    def test_non_zero_exit_does_not_raise(self):
        self.client.exec_command.return_value = _exec_result(b"", b"no such file\n", 1)
        res = self.mgr.run(["cat", "x"])
        self.assertFalse(res.ok)
        self.assertEqual(res.status, 1)
        self.assertEqual(res.stderr, "no such file\n")


# ── Tests: sha256sum ──────────────────────────────────────────────────────────

class TestSha256sum(SSHCase):

    def test_paths_are_batched(self):
        self.client.exec_command.side_effect = _fake_sha256sum
        paths = [f"media/camera/{i} x.jpg" for i in range(120)]
        digests, errors = self.mgr.sha256sum(paths)
        self.assertEqual(ARGS_PER_COMMAND, 50)
        self.assertEqual(len(self.commands()), 3)
        self.assertEqual(errors, [])
        self.assertEqual(len(digests), 120)
        self.assertEqual(digests["media/camera/7 x.jpg"],
                         hashlib.sha256(b"media/camera/7 x.jpg").hexdigest())

    def test_binary_marker_and_stderr(self):
        d = "AB" * 32
        self.client.exec_command.return_value = _exec_result(
            f"{d} *media/a.jpg\n\n".encode(),
            b"sha256sum: media/b.jpg: No such file or directory\n",
            1,
        )
        digests, errors = self.mgr.sha256sum(["media/a.jpg", "media/b.jpg"])
        self.assertEqual(digests, {"media/a.jpg": d.lower()})
        self.assertEqual(errors, ["sha256sum: media/b.jpg: No such file or directory"])

    def test_failure_without_stderr_is_reported(self):
        self.client.exec_command.return_value = _exec_result(b"", b"", 1)
        digests, errors = self.mgr.sha256sum(["media/a.jpg"])
        self.assertEqual(digests, {})
        self.assertEqual(errors, ["remote sha256sum exited 1"])

    def test_nothing_to_hash(self):
        self.assertEqual(self.mgr.sha256sum([]), ({}, []))
        self.client.exec_command.assert_not_called()


# ── Tests: download / chmod / df ──────────────────────────────────────────────

class TestTypedCommands(SSHCase):

    def test_digest_of_download_hashes_streamed_bytes(self):
        stdin, stdout, stderr = _exec_result()
        stdout.read.side_effect = [b"photo ", b"bytes", b""]
        stderr.read.return_value = b""
        self.client.exec_command.return_value = (stdin, stdout, stderr)
        digest = self.mgr.digest_of_download("media/a b.jpg")
        self.assertEqual(digest, hashlib.sha256(b"photo bytes").hexdigest())
        self.assertEqual(self.commands()[0], "cat 'media/a b.jpg'")

    def test_digest_of_download_failure_raises(self):
        stdin, stdout, stderr = _exec_result(b"", b"cat: media/a.jpg: No such file\n", 1)
        self.client.exec_command.return_value = (stdin, stdout, stderr)
        with mock.patch("time.sleep"):
            with self.assertRaises(RuntimeError) as ctx:
                self.mgr.digest_of_download("media/a.jpg")
        self.assertIn("No such file", str(ctx.exception))

    def test_chmod_collects_errors(self):
        self.client.exec_command.side_effect = [
            _exec_result(),
            _exec_result(b"", b"chmod: media/x.jpg: Operation not permitted\n", 1),
            _exec_result(b"", b"", 1),
        ]
        paths = [f"media/{i}.jpg" for i in range(ARGS_PER_COMMAND * 2 + 1)]
        errors = self.mgr.chmod("a-w", paths)
        self.assertEqual(errors, ["chmod: media/x.jpg: Operation not permitted",
                                  "remote chmod exited 1"])
        self.assertTrue(all(shlex.split(c)[:2] == ["chmod", "a-w"] for c in self.commands()))

    def test_disk_usage(self):
        self.client.exec_command.return_value = _exec_result(b"Filesystem Size\n")
        self.assertTrue(self.mgr.disk_usage().ok)
        self.assertEqual(self.commands(), ["df -h ."])


# ── Tests: connection ─────────────────────────────────────────────────────────

class TestConnection(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.cfg = make_config(Path(self.tmpdir.name), ssh_key="/keys/id_ed25519")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_connect_uses_profile(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            mgr = SSHManager(self.cfg)
            mgr.connect()
            kw = client_cls.return_value.connect.call_args[1]
            self.assertEqual(kw["hostname"], "storage.example.com")
            self.assertEqual(kw["port"], 23)
            self.assertEqual(kw["username"], "u1")
            self.assertEqual(kw["key_filename"], "/keys/id_ed25519")
            client_cls.return_value.get_transport.return_value.set_keepalive.assert_called_once_with(30)
            mgr.disconnect()
            client_cls.return_value.close.assert_called_once()

    def test_reconnects_when_transport_is_down(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            mgr = SSHManager(self.cfg)
            dead = mock.MagicMock()
            dead.get_transport.return_value.is_active.return_value = False
            dead.get_transport.return_value.send_ignore.side_effect = EOFError
            mgr._ssh = dead
            client_cls.return_value.exec_command.return_value = _exec_result()
            mgr.run(["true"])
            dead.close.assert_called_once()
            client_cls.return_value.exec_command.assert_called_once()


if __name__ == "__main__":
    unittest.main()
