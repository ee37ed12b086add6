"""
Exceptions that abort a backup run before anything remote is mutated.

Everything else is an anomaly: recorded in the error stream, never raised
across step boundaries.
"""


class BackupError(Exception):
    """Base class for fatal cloudbackup errors."""


class ConfigError(BackupError):
    """Malformed or incomplete configuration."""


class EnumerationError(BackupError):
    """The local file listing could not be produced."""


class ForbiddenPathError(EnumerationError):
    """A local path contains characters that are unsafe in remote commands."""

    def __init__(self, paths: list[str]):
        self.paths = paths
        shown = "\n  ".join(paths[:20])
        more = f"\n  … and {len(paths) - 20} more" if len(paths) > 20 else ""
        super().__init__(
            f"{len(paths)} path(s) contain forbidden characters "
            f"(\" \\ * > $):\n  {shown}{more}"
        )
