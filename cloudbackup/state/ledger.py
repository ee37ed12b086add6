"""
Checksum ledger (persistent across runs)

On-disk format, one record per line, order is meaningful:

    <sha256-hex> <relative/path>

The head of the file holds the least recently verified records. Each run pops
a window from the head, verifies it, and moves it back to the tail with its
original digests.
"""
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
from ..utils.logging import warn


@dataclass(frozen=True)
class FileRecord:
    path: str
    digest: str

    def to_line(self) -> str:
        return f"{self.digest} {self.path}"

    @classmethod
    def from_line(cls, line: str) -> "FileRecord":
        digest, sep, path = line.partition(" ")
        if not sep or not digest or not path:
            raise ValueError(f"malformed ledger line: {line!r}")
        return cls(path=path, digest=digest)


class Ledger:
    """
    Ordered FIFO of FileRecords backed by a list plus a head index.

    pop_front() only advances the head; rotate() rebuilds the list in the
    final run order. At most one record per path is held.
    """

    def __init__(self, records: Iterable[FileRecord] = (), path: Optional[Path] = None):
        self.path = path
        self._records: list[FileRecord] = []
        self._head = 0
        self._index: dict[str, str] = {}
        for rec in records:
            if rec.path in self._index:
                warn(f"[ledger] duplicate entry for {rec.path!r} kept as-is")
                continue
            self._records.append(rec)
            self._index[rec.path] = rec.digest

    # ── load / save ─────────────────────────────────────────────────────────

    @classmethod
    def load(cls, path: Path) -> "Ledger":
        """Load the ledger; a missing file is an empty ledger."""
        if not path.exists():
            return cls(path=path)
        records = []
        with path.open("r", encoding="utf-8", newline="\n") as f:
            for lineno, raw in enumerate(f, 1):
                line = raw.rstrip("\n")
                if not line.strip():
                    continue
                try:
                    records.append(FileRecord.from_line(line))
                except ValueError as exc:
                    raise ValueError(f"{path}:{lineno}: malformed ledger line {line!r}") from exc
        return cls(records, path=path)

    def save(self, path: Optional[Path] = None):
        """Atomically rewrite the ledger: write a temp file, then rename over."""
        target = path or self.path
        if target is None:
            raise ValueError("ledger has no path to save to")
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                for rec in self.records():
                    line = rec.to_line()
                    if line.strip():
                        f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    # ── queries ─────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._records) - self._head

    def __contains__(self, path: str) -> bool:
        return path in self._index

    def records(self) -> list[FileRecord]:
        return self._records[self._head:]

    def paths(self) -> set[str]:
        return set(self._index)

    def digest_of(self, path: str) -> Optional[str]:
        return self._index.get(path)

    def contains(self, path: str, digest: str) -> bool:
        """True if the ledger holds exactly this (path, digest) pair."""
        return self._index.get(path) == digest

    # ── mutation ────────────────────────────────────────────────────────────

    def pop_front(self, n: int) -> list[FileRecord]:
        """Remove and return the n oldest-verified records."""
        window = self._records[self._head:self._head + max(n, 0)]
        self._head += len(window)
        for rec in window:
            self._index.pop(rec.path, None)
        return window

    def rotate(self, window: list[FileRecord], new_records: list[FileRecord]):
        """
        Rebuild the ledger as [new_records][remaining][window].
        *window* must be the unmodified records returned by pop_front().
        """
        remaining = self._records[self._head:]
        taken = set(self._index) | {rec.path for rec in window}
        fresh = []
        for rec in new_records:
            if rec.path in taken:
                raise ValueError(f"ledger already holds a record for {rec.path!r}")
            taken.add(rec.path)
            fresh.append(rec)
        self._records = fresh + remaining + list(window)
        self._head = 0
        self._index = {rec.path: rec.digest for rec in self._records}
