"""
Logging utilities for cloudbackup
"""
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_verbose = False
_log_file: Optional[Path] = None


def set_verbose(verbose: bool):
    """Set the verbose flag"""
    global _verbose
    _verbose = verbose


def set_log_file(path: Optional[Path]):
    """Mirror every logged line into *path* (appended), or stop mirroring with None."""
    global _log_file
    _log_file = path


def _emit(line: str, stream=None):
    print(line, file=stream or sys.stdout, flush=True)
    if _log_file is not None:
        try:
            with _log_file.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            pass


def log(msg: str):
    """Log a message with timestamp"""
    ts = datetime.now().strftime("%H:%M:%S")
    _emit(f"[{ts}] {msg}")


def vlog(msg: str):
    """Log a verbose message (only if verbose mode is enabled)"""
    if _verbose:
        log(msg)


def warn(msg: str):
    """Log a warning message"""
    log(f"⚠  {msg}")


def section(title: str):
    """Print a step banner"""
    _emit("")
    _emit("###")
    _emit(title)
    _emit("###")
