"""
Local enumeration: the set of files that should exist remotely
"""
import tempfile
from pathlib import Path
from ..config import BackupConfig
from ..core.rsync import Rsync, itemized, NEW_FILE_RECEIVED
from ..errors import EnumerationError, ForbiddenPathError
from ..utils.file_utils import has_forbidden_chars
from ..utils.logging import log


def parse_local_listing(lines: list[str]) -> list[str]:
    """Regular files rsync would create, de-duplicated and sorted."""
    return sorted({path for code, path in itemized(lines) if code == NEW_FILE_RECEIVED})


def list_local_files(cfg: BackupConfig, rsync: Rsync) -> list[str]:
    """
    Dry-run the backup dir into an empty directory and collect what would be
    created. Paths are relative to local_root (the /./ anchor of --relative).
    Raises EnumerationError / ForbiddenPathError; both abort the run.
    """
    if not cfg.backup_root.is_dir():
        raise EnumerationError(f"backup directory does not exist: {cfg.backup_root}")

    source = f"{cfg.local_root}/./{cfg.backup_dir}/"
    with tempfile.TemporaryDirectory(prefix="cloudbackup_empty_") as empty:
        args = ["--dry-run", "--relative", "--recursive", "--itemize-changes", "--8-bit-output"]
        args += [f"--exclude={pat}" for pat in cfg.excludes]
        args += [source, empty + "/"]
        res = rsync.run(args)

    if not res.ok:
        detail = "; ".join(res.stderr) or f"exit {res.returncode}"
        raise EnumerationError(f"local listing failed: {detail}")

    files = parse_local_listing(res.stdout)
    bad = [p for p in files if has_forbidden_chars(p)]
    if bad:
        raise ForbiddenPathError(bad)
    log(f"[list] {len(files)} local file(s) under {cfg.backup_root}")
    return files


def write_file_list(path: Path, files: list[str]):
    """Persist the local file set for `rsync --files-from`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="\n") as f:
        for rel in files:
            f.write(rel + "\n")
