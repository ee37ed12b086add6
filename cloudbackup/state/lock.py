"""
Run lock: prevents overlapping runs while tolerating locks left by crashed runs
"""
import enum
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
from ..utils.logging import log, warn


class LockStatus(enum.Enum):
    GRANTED = "granted"
    BUSY = "busy"


class RunLock:
    """
    A marker file plus a liveness heuristic.

    The marker alone cannot tell a live run from a crashed one, so the lock
    only counts as held while at least one of the *artifacts* (ledger, file
    list, logs) was modified within the staleness window.
    """

    def __init__(self, lock_path: Path, artifacts: Iterable[Path], max_wait_minutes: int):
        self.lock_path = lock_path
        self.artifacts = list(artifacts)
        self.max_wait_seconds = max_wait_minutes * 60
        self.held = False

    def _fresh_artifacts(self, now: Optional[float] = None) -> list[Path]:
        now = time.time() if now is None else now
        fresh = []
        for p in self.artifacts:
            try:
                mtime = p.stat().st_mtime
            except OSError:
                continue
            if now - mtime < self.max_wait_seconds:
                fresh.append(p)
        return fresh

    def is_busy(self, now: Optional[float] = None) -> bool:
        return self.lock_path.exists() and bool(self._fresh_artifacts(now))

    def acquire(self, now: Optional[float] = None) -> LockStatus:
        if self.lock_path.exists():
            fresh = self._fresh_artifacts(now)
            if fresh:
                log(f"[lock] {self.lock_path} held; recently touched: "
                    + ", ".join(p.name for p in fresh))
                return LockStatus.BUSY
            warn(f"[lock] stale lock {self.lock_path} (no activity in "
                 f"{self.max_wait_seconds // 60} min), overriding")
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_path.write_text(
            f"pid={os.getpid()} started={datetime.now().isoformat(timespec='seconds')}\n",
            encoding="utf-8",
        )
        self.held = True
        return LockStatus.GRANTED

    def release(self):
        if not self.held:
            return
        self.lock_path.unlink(missing_ok=True)
        self.held = False
