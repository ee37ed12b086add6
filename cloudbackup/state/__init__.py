"""State management (checksum ledger, run lock, error stream)"""
from .ledger import FileRecord, Ledger
from .lock import LockStatus, RunLock
from .error_stream import ErrorStream

__all__ = [
    "FileRecord", "Ledger",
    "LockStatus", "RunLock",
    "ErrorStream",
]
