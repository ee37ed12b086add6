"""
Remote capacity check and the final status line
"""
import re
from pathlib import Path
from typing import Optional
from ..state.error_stream import ErrorStream
from ..utils.logging import log

_PERCENT_RE = re.compile(r"^(\d+)%$")


def parse_capacity(df_output: str) -> Optional[str]:
    """Fifth column of the second `df -h` line, e.g. '42%'."""
    lines = [ln for ln in df_output.splitlines() if ln.strip()]
    if len(lines) < 2:
        return None
    cols = lines[1].split()
    if len(cols) < 5 or not _PERCENT_RE.match(cols[4]):
        return None
    return cols[4]


def check_capacity(shell, threshold: int, errors: ErrorStream) -> Optional[str]:
    """Returns the capacity string ('42%') or None; low space is an anomaly."""
    try:
        res = shell.disk_usage()
    except Exception as exc:
        errors.record(f"capacity query failed: {exc}")
        return None
    capacity = parse_capacity(res.stdout)
    if capacity is None:
        errors.record(f"cannot parse remote capacity from: {res.stdout.strip()!r} {res.stderr.strip()}")
        return None
    log(f"[capacity] remote storage at {capacity}")
    if int(capacity.rstrip("%")) >= threshold:
        errors.record(f"Remote storage at {capacity} capacity (threshold {threshold}%)")
    return capacity


def last_line(path: Path) -> str:
    """Last non-empty line of a text file, or '' if there is none."""
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            lines = [ln.rstrip("\n") for ln in f if ln.strip()]
    except OSError:
        return ""
    return lines[-1] if lines else ""


def compose_status_line(capacity: Optional[str], backup_dir: str, seconds: float,
                        n_errors: int, last_log_line: str) -> str:
    return (
        f"Cloud storage at {capacity or 'unknown'} capacity after uploading {backup_dir} "
        f"in {int(seconds)} seconds. {n_errors} lines in errors file. "
        f"Last rsync log line: {last_log_line}"
    )
