"""
Error record stream: every anomaly of a run, one or more lines each
"""
import sys
from pathlib import Path
from typing import Optional


class ErrorStream:
    """
    Appends anomaly lines to the daily errors file and echoes them to stderr.
    count is the number of lines written by this run.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.count = 0
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch()

    def record(self, message: str):
        lines = [ln for ln in str(message).splitlines() if ln.strip()]
        if not lines:
            return
        for ln in lines:
            print(ln, file=sys.stderr, flush=True)
        if self.path is not None:
            with self.path.open("a", encoding="utf-8") as f:
                f.write("".join(ln + "\n" for ln in lines))
        self.count += len(lines)

    def extend(self, messages):
        for m in messages:
            self.record(m)
