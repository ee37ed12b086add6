"""
End-to-end runs of run_backup() against a local directory posing as the remote.
"""
import os
import random
import tempfile
import time
import unittest
from pathlib import Path

from cloudbackup.core.backup_engine import run_backup
from cloudbackup.state.ledger import Ledger

from fakes import FakePinger, FakeRsync, FakeShell, make_config, sha256_bytes

DAY = "2024-05-01"


class EngineCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        tmp = Path(self.tmpdir.name)
        self.cfg = make_config(tmp)
        self.remote = tmp / "remote"
        self.remote.mkdir()
        self.camera = self.cfg.backup_root

    def tearDown(self):
        self.tmpdir.cleanup()

    def run_once(self, **kw):
        self.pinger = FakePinger()
        self.shell = kw.pop("shell", None) or FakeShell(self.remote)
        self.rsync = FakeRsync(self.cfg, self.remote)
        return run_backup(self.cfg, shell=self.shell, rsync=self.rsync, pinger=self.pinger,
                          rng=random.Random(7), today=DAY, **kw)

    def ledger(self) -> Ledger:
        return Ledger.load(self.cfg.ledger_path)

    def errors_text(self) -> str:
        p = self.cfg.log_path("ERRORS", DAY)
        return p.read_text(encoding="utf-8") if p.exists() else ""


# ── Tests: clean runs ─────────────────────────────────────────────────────────

class TestCleanRuns(EngineCase):

    def setUp(self):
        super().setUp()
        (self.camera / "a.jpg").write_bytes(b"photo a")
        (self.camera / "b.jpg").write_bytes(b"photo b")

    def test_first_run(self):
        """Two local files, empty ledger → two records, clean exit."""
        rc = self.run_once()
        self.assertEqual(rc, 0, self.errors_text())

        records = self.ledger().records()
        self.assertEqual(sorted(r.path for r in records),
                         ["media/camera/a.jpg", "media/camera/b.jpg"])
        self.assertTrue(self.ledger().contains("media/camera/a.jpg", sha256_bytes(b"photo a")))

        self.assertTrue((self.remote / "media/camera/a.jpg").exists())
        self.assertFalse(self.cfg.local_files_path.exists())
        self.assertFalse(self.cfg.lock_path.exists())

        self.assertEqual(self.pinger.calls[0], ("start",))
        self.assertEqual(self.pinger.calls[-1][:2], ("finish", 0))
        self.assertIn("Cloud storage at 42% capacity", self.pinger.calls[-1][2])

    def test_uploaded_files_are_protected(self):
        self.run_once()
        self.assertEqual(self.shell.chmod_calls,
                         [("a-w", ["media/camera/a.jpg", "media/camera/b.jpg"])])

    def test_second_run_is_idempotent(self):
        self.run_once()
        before = self.ledger().records()
        rc = self.run_once()
        self.assertEqual(rc, 0, self.errors_text())
        self.assertEqual(len(self.ledger()), 2)
        self.assertEqual(sorted(self.ledger().records(), key=lambda r: r.path),
                         sorted(before, key=lambda r: r.path))
        self.assertEqual(self.shell.chmod_calls, [])

    def test_new_file_on_later_run(self):
        self.run_once()
        (self.camera / "c.jpg").write_bytes(b"photo c")
        self.assertEqual(self.run_once(), 0, self.errors_text())
        self.assertEqual(len(self.ledger()), 3)
        self.assertEqual(self.ledger().records()[0].path, "media/camera/c.jpg")

    def test_excluded_sidecar_files(self):
        (self.camera / ".nomedia").write_bytes(b"")
        (self.camera / "x.nomedia").write_bytes(b"")
        self.assertEqual(self.run_once(), 0, self.errors_text())
        self.assertEqual(len(self.ledger()), 2)

    def test_stdout_log_written(self):
        self.run_once()
        text = self.cfg.log_path("script_stdout", DAY).read_text(encoding="utf-8")
        self.assertIn("Uploading new files", text)
        self.assertIn("Cloud storage at", text)


# ── Tests: anomalies ──────────────────────────────────────────────────────────

class TestAnomalies(EngineCase):

    def setUp(self):
        super().setUp()
        (self.camera / "a.jpg").write_bytes(b"photo a")
        (self.camera / "b.jpg").write_bytes(b"photo b")
        self.assertEqual(self.run_once(), 0)

    def test_local_mutation_detected(self):
        original = self.ledger().digest_of("media/camera/a.jpg")
        (self.camera / "a.jpg").write_bytes(b"ransomware")
        rc = self.run_once()
        self.assertGreaterEqual(rc, 1)
        self.assertIn("local checksum mismatch: media/camera/a.jpg", self.errors_text())
        self.assertEqual(self.ledger().digest_of("media/camera/a.jpg"), original)
        self.assertEqual(self.pinger.calls[-1][1], rc)

    def test_remote_deletion_detected(self):
        (self.remote / "media/camera/b.jpg").unlink()
        rc = self.run_once()
        self.assertGreaterEqual(rc, 1)
        self.assertIn("remote copy of media/camera/b.jpg was missing", self.errors_text())

    def test_unexpected_remote_file_detected(self):
        (self.remote / "media/camera/intruder.jpg").write_bytes(b"?")
        rc = self.run_once()
        self.assertGreaterEqual(rc, 1)
        self.assertIn("intruder.jpg", self.errors_text())

    def test_low_capacity(self):
        self.assertEqual(self.run_once(shell=FakeShell(self.remote, capacity="93%")), 1)
        self.assertIn("93%", self.errors_text())

    def test_protection_failure_does_not_stop_run(self):
        shell = FakeShell(self.remote)
        shell.fail_chmod = True
        (self.camera / "c.jpg").write_bytes(b"photo c")
        rc = self.run_once(shell=shell)
        self.assertEqual(rc, 1)
        self.assertEqual(len(self.ledger()), 3)
        self.assertFalse(self.cfg.lock_path.exists())


# ── Tests: fatal aborts and the lock ──────────────────────────────────────────

class TestAbort(EngineCase):

    def test_busy_lock(self):
        """A live competing run: abort, one failure ping, nothing touched."""
        (self.camera / "a.jpg").write_bytes(b"a")
        self.cfg.state_dir.mkdir(parents=True, exist_ok=True)
        self.cfg.lock_path.write_text("other\n", encoding="utf-8")
        self.cfg.ledger_path.write_text("", encoding="utf-8")
        rc = self.run_once()
        self.assertEqual(rc, 1)
        self.assertEqual([c[:2] for c in self.pinger.calls], [("finish", 1)])
        self.assertEqual(self.rsync.calls, [])
        self.assertTrue(self.cfg.lock_path.exists())

    def test_stale_lock_is_overridden(self):
        (self.camera / "a.jpg").write_bytes(b"a")
        self.cfg.state_dir.mkdir(parents=True, exist_ok=True)
        self.cfg.lock_path.write_text("crashed\n", encoding="utf-8")
        self.cfg.ledger_path.write_text("", encoding="utf-8")
        old = time.time() - 11 * 3600
        os.utime(self.cfg.ledger_path, (old, old))
        self.assertEqual(self.run_once(), 0, self.errors_text())
        self.assertFalse(self.cfg.lock_path.exists())

    def test_forbidden_path_aborts_before_upload(self):
        (self.camera / "a.jpg").write_bytes(b"a")
        (self.camera / "price$.jpg").write_bytes(b"b")
        rc = self.run_once()
        self.assertEqual(rc, 1)
        self.assertEqual(len(self.rsync.calls), 1)  # the listing only
        self.assertEqual(list(self.remote.iterdir()), [])
        self.assertFalse(self.cfg.lock_path.exists())
        self.assertFalse(self.cfg.local_files_path.exists())
        self.assertGreaterEqual(self.pinger.calls[-1][1], 1)

    def test_unexpected_error_is_reported_as_failure(self):
        """An OSError outside any step aborts the run with a failure ping."""
        class UnreadableRsync(FakeRsync):
            def run(self, args, timeout=None):
                self.calls.append(list(args))
                raise PermissionError(13, "Permission denied", "/usr/bin/rsync")

        (self.camera / "a.jpg").write_bytes(b"a")
        pinger = FakePinger()
        rsync = UnreadableRsync(self.cfg, self.remote)
        rc = run_backup(self.cfg, shell=FakeShell(self.remote), rsync=rsync, pinger=pinger,
                        rng=random.Random(7), today=DAY)
        self.assertEqual(rc, 1)
        self.assertNotIn(("finish", 0), [c[:2] for c in pinger.calls])
        self.assertGreaterEqual(pinger.calls[-1][1], 1)
        self.assertIn("PermissionError", self.errors_text())
        self.assertFalse(self.cfg.lock_path.exists())
        self.assertEqual(len(self.ledger()), 0)

    def test_missing_backup_root_aborts(self):
        self.camera.rmdir()
        self.assertEqual(self.run_once(), 1)
        self.assertEqual(self.rsync.calls, [])


if __name__ == "__main__":
    unittest.main()
