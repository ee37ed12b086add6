"""
Ledger verification: hash new files, re-verify the oldest window on both
sides, rotate the window to the tail
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from ..config import BackupConfig
from ..state.error_stream import ErrorStream
from ..state.ledger import FileRecord, Ledger
from ..utils.file_utils import sha256_local
from ..utils.logging import log, vlog


@dataclass
class VerificationSummary:
    new_files: int = 0
    window: int = 0
    local_mismatches: int = 0
    remote_mismatches: int = 0


def _hash_one(root: Path, rel: str) -> tuple[str, Optional[str], Optional[str]]:
    try:
        return rel, sha256_local(root / rel), None
    except OSError as exc:
        return rel, None, f"{exc.strerror or exc}"


def hash_local(root: Path, paths: list[str], workers: int = 1) -> list[tuple[str, Optional[str], Optional[str]]]:
    """[(path, digest or None, error or None)] in the order of *paths*."""
    if workers <= 1 or len(paths) <= 1:
        return [_hash_one(root, p) for p in paths]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda p: _hash_one(root, p), paths))


def hash_new_files(cfg: BackupConfig, ledger: Ledger, local_files: list[str],
                   errors: ErrorStream) -> list[FileRecord]:
    """Digest every local file that has no ledger record yet."""
    known = ledger.paths()
    todo = [p for p in local_files if p not in known]
    log(f"[checksum] hashing {len(todo)} new local file(s)")
    records = []
    for rel, digest, err in hash_local(cfg.local_root, todo, cfg.hash_workers):
        if digest is None:
            errors.record(f"cannot hash new local file {rel}: {err}")
            continue
        vlog(f"  {digest} {rel}")
        records.append(FileRecord(rel, digest))
    return records


def _compare(side: str, window: list[FileRecord], found: dict[str, Optional[str]],
             errors: ErrorStream) -> int:
    bad = 0
    for rec in window:
        got = found.get(rec.path)
        if got == rec.digest:
            continue
        bad += 1
        errors.record(f"{side} checksum mismatch: {rec.path} "
                      f"expected {rec.digest} got {got or 'nothing'}")
    return bad


def verify_local(cfg: BackupConfig, window: list[FileRecord], errors: ErrorStream) -> int:
    results = hash_local(cfg.local_root, [r.path for r in window], cfg.hash_workers)
    found = {rel: digest or f"error ({err})" for rel, digest, err in results}
    return _compare("local", window, found, errors)


def verify_remote(window: list[FileRecord], shell, errors: ErrorStream) -> int:
    if not window:
        return 0
    found, stderr = shell.sha256sum([r.path for r in window])
    errors.extend(f"remote: {ln}" for ln in stderr)
    return _compare("remote", window, found, errors)


def verify_and_rotate(cfg: BackupConfig, ledger: Ledger, local_files: list[str],
                      shell, errors: ErrorStream) -> VerificationSummary:
    """
    One verification cycle. The ledger ends up ordered
    [new records][untouched old records][window with its original digests],
    whatever the verification outcome.
    """
    summary = VerificationSummary()
    new_records = hash_new_files(cfg, ledger, local_files, errors)
    summary.new_files = len(new_records)

    window = ledger.pop_front(cfg.checksums_per_run)
    summary.window = len(window)
    log(f"[checksum] verifying {len(window)} of {len(window) + len(ledger)} known file(s)")
    try:
        try:
            summary.local_mismatches = verify_local(cfg, window, errors)
        except Exception as exc:
            errors.record(f"local verification failed: {exc}")
        try:
            summary.remote_mismatches = verify_remote(window, shell, errors)
        except Exception as exc:
            errors.record(f"remote verification failed: {exc}")
    finally:
        ledger.rotate(window, new_records)

    for rec in window:
        vlog(f"  {rec.digest} {rec.path}")
    log(f"[checksum] new={summary.new_files} verified={summary.window} "
        f"local_bad={summary.local_mismatches} remote_bad={summary.remote_mismatches}")
    return summary
