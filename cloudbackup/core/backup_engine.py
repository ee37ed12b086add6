"""
Backup engine - step orchestration for one run
"""
import time
import traceback
from datetime import date
from typing import Optional
from ..config import BackupConfig
from ..errors import BackupError
from ..core.healthchecks import HealthcheckClient
from ..core.rsync import Rsync
from ..core.ssh_manager import SSHManager
from ..operations.enumerator import list_local_files, write_file_list
from ..operations.transfer import upload, reconcile, reuploaded_known_files
from ..operations.verify import verify_and_rotate
from ..operations.protect import protect_uploaded
from ..operations.probe import probe_random_file
from ..operations.report import check_capacity, compose_status_line, last_line
from ..state.error_stream import ErrorStream
from ..state.ledger import Ledger
from ..state.lock import LockStatus, RunLock
from ..utils.logging import log, vlog, warn, section, set_verbose, set_log_file

MAX_EXIT_CODE = 255


def _step(errors: ErrorStream, name: str, fn, *args, default=None, **kwargs):
    """Run one step; an unexpected exception becomes an anomaly, never a crash."""
    try:
        return fn(*args, **kwargs)
    except Exception as exc:
        errors.record(f"{name}: {type(exc).__name__}: {exc}")
        vlog(traceback.format_exc())
        return default


def _safe_ping(fn, *args):
    try:
        fn(*args)
    except Exception as exc:
        warn(f"status ping failed: {exc}")


def run_backup(cfg: BackupConfig, verbose: bool = False,
               shell=None, rsync: Optional[Rsync] = None,
               pinger=None, rng=None, today: Optional[str] = None) -> int:
    """
    One full cycle: list → upload → reconcile → verify ledger → protect →
    probe → report. Returns the process exit status (the anomaly count,
    capped at 255; 1 for a fatal abort or a busy lock).
    """
    set_verbose(verbose)
    day = today or date.today().isoformat()
    errors_path = cfg.log_path("ERRORS", day)
    transfer_log = cfg.log_path("rsync_logs", day)
    stdout_log = cfg.log_path("script_stdout", day)

    pinger = pinger or HealthcheckClient(cfg.healthchecks_url)
    lock = RunLock(
        cfg.lock_path,
        [stdout_log, cfg.ledger_path, cfg.local_files_path, transfer_log],
        cfg.max_lock_wait_minutes,
    )

    # Nothing may touch the tracked artifacts before the lock check.
    if lock.acquire() is LockStatus.BUSY:
        msg = "A cloud backup update is already in progress. Exiting..."
        log(msg)
        _safe_ping(pinger.finish, 1, msg)
        return 1

    cfg.logs_dir.mkdir(parents=True, exist_ok=True)
    for p in (stdout_log, transfer_log):
        p.touch()
    errors = ErrorStream(errors_path)
    set_log_file(stdout_log)

    started = time.monotonic()
    _safe_ping(pinger.start)

    print(f"\n{'=' * 64}")
    log(f"Backup  {cfg.backup_root}")
    log(f"   →    {cfg.remote}:{cfg.port}:{cfg.backup_dir}")
    print(f"{'=' * 64}")

    shell = shell or SSHManager(cfg)
    rsync = rsync or Rsync(cfg)
    fatal: Optional[Exception] = None
    capacity = None

    try:
        # ── 1. Local file set (fatal on failure) ────────────────────────────
        section("Listing local files")
        local_files = list_local_files(cfg, rsync)
        write_file_list(cfg.local_files_path, local_files)

        try:
            ledger = Ledger.load(cfg.ledger_path)
        except (OSError, ValueError) as exc:
            raise BackupError(f"cannot load checksum ledger: {exc}") from exc
        log(f"[ledger] {len(ledger)} known file(s)")

        # ── 2. Upload ───────────────────────────────────────────────────────
        section("Uploading new files")
        outcome = _step(errors, "upload", upload, cfg, rsync, cfg.local_files_path, transfer_log)
        uploaded = outcome.uploaded if outcome else []
        if outcome:
            errors.extend(outcome.anomalies())

        # ── 3. Reverse dry run ──────────────────────────────────────────────
        section("Checking for missing local files")
        errors.extend(reuploaded_known_files(uploaded, ledger.paths()))
        errors.extend(_step(errors, "reconcile", reconcile, cfg, rsync, transfer_log, default=[]))

        # ── 4. Ledger ───────────────────────────────────────────────────────
        section(f"Checking consistency of {cfg.checksums_per_run} old files")
        _step(errors, "checksums", verify_and_rotate, cfg, ledger, local_files, shell, errors)
        _step(errors, "ledger save", ledger.save)

        # ── 5. Read-only protection ─────────────────────────────────────────
        section("Protecting uploaded files")
        _step(errors, "protect", protect_uploaded, uploaded, shell, cfg.protect_mode, errors)

        # ── 6. Availability probe ───────────────────────────────────────────
        section("Downloading a random file")
        _step(errors, "probe", probe_random_file, local_files, ledger, shell, errors, rng=rng)

    except BackupError as exc:
        fatal = exc
        errors.record(str(exc))

    except Exception as exc:
        fatal = exc
        errors.record(f"{type(exc).__name__}: {exc}")
        vlog(traceback.format_exc())

    finally:
        try:
            if fatal is None:
                capacity = _step(errors, "capacity", check_capacity, shell, cfg.capacity_threshold, errors)
            elapsed = time.monotonic() - started
            n_errors = errors.count
            status = compose_status_line(capacity, str(cfg.backup_dir), elapsed,
                                         n_errors, last_line(transfer_log))
            log(status)
            _safe_ping(pinger.finish, n_errors, status)
        finally:
            cfg.local_files_path.unlink(missing_ok=True)
            lock.release()
            if hasattr(shell, "disconnect"):
                shell.disconnect()
            set_log_file(None)

    if fatal is not None:
        return 1
    return min(n_errors, MAX_EXIT_CODE)
