"""
Thin wrapper around the rsync binary
"""
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence
from ..config import BackupConfig
from ..utils.logging import vlog

# "%i %n" itemize output, e.g. ">f+++++++++ media/camera/a.jpg"
_ITEM_RE = re.compile(r"^([<>ch.*][fdLDS][^ ]{9}) (.+)$")

NEW_FILE_RECEIVED = ">f+++++++++"
NEW_FILE_SENT = "<f+++++++++"


@dataclass
class RsyncResult:
    returncode: int
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def itemized(lines: Iterable[str]) -> list[tuple[str, str]]:
    """Extract (item_code, path) pairs from itemize-changes output."""
    items = []
    for line in lines:
        m = _ITEM_RE.match(line.rstrip("\n"))
        if m:
            items.append((m.group(1), m.group(2)))
    return items


class Rsync:
    """Runs rsync with the configured remote shell and timeout."""

    def __init__(self, cfg: BackupConfig):
        self.cfg = cfg

    @property
    def rsh(self) -> str:
        return " ".join(shlex.quote(a) for a in self.cfg.ssh_command())

    def run(self, args: Sequence[str], timeout: Optional[int] = None) -> RsyncResult:
        cmd = ["rsync", *args]
        vlog("[rsync] " + " ".join(shlex.quote(c) for c in cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout or self.cfg.transfer_timeout,
            )
        except FileNotFoundError:
            return RsyncResult(127, stderr=["rsync not found on PATH"])
        except subprocess.TimeoutExpired as exc:
            out = exc.stdout or ""
            if isinstance(out, bytes):
                out = out.decode("utf-8", errors="replace")
            return RsyncResult(
                -1,
                stdout=out.splitlines(),
                stderr=[f"rsync timed out after {exc.timeout:.0f}s"],
                timed_out=True,
            )
        return RsyncResult(
            proc.returncode,
            stdout=proc.stdout.splitlines(),
            stderr=[ln for ln in proc.stderr.splitlines() if ln.strip()],
        )
