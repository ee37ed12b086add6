"""
Additive upload and the reverse dry-run reconciliation
"""
from dataclasses import dataclass, field
from pathlib import Path
from ..config import BackupConfig
from ..core.rsync import Rsync, itemized, NEW_FILE_SENT
from ..utils.logging import log, vlog

PARTIAL_DIR = ".rsync-partial"


@dataclass
class TransferOutcome:
    returncode: int
    uploaded: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    timed_out: bool = False

    def anomalies(self) -> list[str]:
        """Lines that belong in the error stream."""
        lines = list(self.stderr)
        if self.returncode != 0 and not self.timed_out and not lines:
            lines.append(f"upload: rsync exited {self.returncode}")
        return lines


def _common_args(rsync: Rsync, transfer_log: Path) -> list[str]:
    return [
        "--archive",
        "--relative",
        "--itemize-changes",
        "--8-bit-output",  # raw UTF-8 names, not \#ooo escapes, under a C locale
        "--ignore-existing",
        "--max-delete=-1",
        f"--rsh={rsync.rsh}",
        f"--log-file={transfer_log}",
    ]


def upload(cfg: BackupConfig, rsync: Rsync, files_from: Path, transfer_log: Path) -> TransferOutcome:
    """
    Push files listed in *files_from* that do not exist remotely yet.
    Existing remote files are never overwritten and nothing is deleted;
    interrupted files are staged in PARTIAL_DIR, never at their final path.
    """
    args = [f"--files-from={files_from}", "--stats"]
    args += _common_args(rsync, transfer_log)
    args += [f"--partial-dir={PARTIAL_DIR}", f"{cfg.local_root}/", f"{cfg.remote}:"]
    res = rsync.run(args)

    uploaded = sorted({path for code, path in itemized(res.stdout) if code == NEW_FILE_SENT})
    for rel in uploaded:
        vlog(f"  [PUSH ✓] {rel}")
    log(f"[upload] {len(uploaded)} new file(s) uploaded")
    return TransferOutcome(res.returncode, uploaded, res.stderr, res.timed_out)


def reconcile(cfg: BackupConfig, rsync: Rsync, transfer_log: Path) -> list[str]:
    """
    Dry-run a restore (remote → local) and return every file it would create
    or change. Uploads are add-only, so each one is remote-side drift or a
    file missing locally. Mutates nothing.
    """
    args = ["--dry-run"] + _common_args(rsync, transfer_log)
    args += [f"--exclude={pat}" for pat in (*cfg.excludes, *cfg.remote_excludes)]
    args += [f"{cfg.remote}:{cfg.backup_dir}/", f"{cfg.local_root}/"]
    res = rsync.run(args)

    anomalies = [f"restore would write {path} ({code})"
                 for code, path in itemized(res.stdout)
                 if code.startswith(">f")]
    anomalies += res.stderr
    if res.returncode != 0 and not res.timed_out and not res.stderr:
        anomalies.append(f"reconcile: rsync exited {res.returncode}")
    log(f"[reconcile] {len(anomalies)} unexpected item(s)")
    return anomalies


def reuploaded_known_files(uploaded: list[str], known: set[str]) -> list[str]:
    """
    Uploaded paths that already had a ledger record: their remote copy
    disappeared since an earlier run.
    """
    return [f"remote copy of {rel} was missing and has been uploaded again"
            for rel in uploaded if rel in known]
