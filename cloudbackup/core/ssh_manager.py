"""
SSH connection manager and typed remote command channel
"""
import shlex
from dataclasses import dataclass
from typing import Optional, Sequence
import paramiko
from ..config import BackupConfig
from ..utils.logging import log, vlog
from ..utils.retry import retried
from ..utils.file_utils import CHUNK_SIZE, parse_digest_line, sha256_stream

# paths per remote sha256sum / chmod invocation
ARGS_PER_COMMAND = 50


@dataclass
class RemoteResult:
    stdout: str
    stderr: str
    status: int

    @property
    def ok(self) -> bool:
        return self.status == 0


class SSHManager:
    """
    Wraps a paramiko SSHClient.
    Automatically reconnects on channel errors.
    Sends SSH keep-alives to reduce mid-transfer drops.

    Commands are built from an argv list and quoted here; callers never
    compose shell text out of file paths.
    """

    def __init__(self, cfg: BackupConfig):
        self.cfg = cfg
        self._ssh: Optional[paramiko.SSHClient] = None

    # ── connection ─────────────────────────────────────────────────────────

    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except Exception:
                self._close_quietly()

        log(f"[SSH] connecting to {self.cfg.remote}:{self.cfg.port} …")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=self.cfg.server, port=self.cfg.port, username=self.cfg.user,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if self.cfg.ssh_key:
            kw["key_filename"] = self.cfg.ssh_key

        client.connect(**kw)

        # Keep-alive: send a NOP every 30s
        client.get_transport().set_keepalive(30)

        self._ssh = client
        log("[SSH] connected ✓")

    def _close_quietly(self):
        try:
            if self._ssh:
                self._ssh.close()
        except Exception:
            pass
        self._ssh = None

    def disconnect(self):
        if self._ssh:
            self._close_quietly()
            log("[SSH] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        try:
            if self._ssh and self._ssh.get_transport().is_active():
                return
        except Exception:
            pass
        self.connect()

    # ── raw exec ────────────────────────────────────────────────────────────

    @retried
    def run(self, argv: Sequence[str], timeout: Optional[int] = None) -> RemoteResult:
        """Run a command; return its output and exit status without raising on failure."""
        self.ensure_connected()
        cmd = " ".join(shlex.quote(a) for a in argv)
        vlog(f"[SSH] $ {cmd}")
        _, stdout, stderr = self._ssh.exec_command(cmd, timeout=timeout or self.cfg.command_timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        return RemoteResult(out, err, rc)

    # ── typed commands ──────────────────────────────────────────────────────

    def sha256sum(self, paths: Sequence[str]) -> tuple[dict[str, str], list[str]]:
        """
        Hash remote files (relative to the remote home).
        Returns ({path: digest}, [stderr lines]); unreadable files are absent
        from the mapping.
        """
        digests: dict[str, str] = {}
        errors: list[str] = []
        for i in range(0, len(paths), ARGS_PER_COMMAND):
            chunk = list(paths[i:i + ARGS_PER_COMMAND])
            res = self.run(["sha256sum", *chunk])
            for line in res.stdout.splitlines():
                if not line.strip():
                    continue
                digest, path = parse_digest_line(line)
                digests[path] = digest
            errors += [ln for ln in res.stderr.splitlines() if ln.strip()]
            if not res.ok and not res.stderr.strip():
                errors.append(f"remote sha256sum exited {res.status}")
        return digests, errors

    @retried
    def digest_of_download(self, path: str) -> str:
        """Stream the remote file back through `cat` and hash the received bytes."""
        self.ensure_connected()
        cmd = "cat " + shlex.quote(path)
        _, stdout, stderr = self._ssh.exec_command(cmd, timeout=self.cfg.command_timeout)
        digest = sha256_stream(iter(lambda: stdout.read(CHUNK_SIZE), b""))
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if rc != 0:
            raise RuntimeError(f"remote cat exited {rc}: {path!r}\nstderr: {err.strip()}")
        return digest

    def chmod(self, mode: str, paths: Sequence[str]) -> list[str]:
        """Change permissions of remote files; returns error lines."""
        errors: list[str] = []
        for i in range(0, len(paths), ARGS_PER_COMMAND):
            chunk = list(paths[i:i + ARGS_PER_COMMAND])
            res = self.run(["chmod", mode, *chunk])
            errors += [ln for ln in res.stderr.splitlines() if ln.strip()]
            if not res.ok and not res.stderr.strip():
                errors.append(f"remote chmod exited {res.status}")
        return errors

    def disk_usage(self) -> RemoteResult:
        """`df -h .` in the remote home."""
        return self.run(["df", "-h", "."])
