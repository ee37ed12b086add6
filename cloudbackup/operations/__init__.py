"""Operations (enumerate, transfer, verify, probe, protect, report)"""
from .enumerator import list_local_files, write_file_list
from .transfer import upload, reconcile, reuploaded_known_files, TransferOutcome
from .verify import verify_and_rotate, VerificationSummary
from .probe import probe_random_file
from .protect import protect_uploaded
from .report import check_capacity, compose_status_line

__all__ = [
    "list_local_files", "write_file_list",
    "upload", "reconcile", "reuploaded_known_files", "TransferOutcome",
    "verify_and_rotate", "VerificationSummary",
    "probe_random_file",
    "protect_uploaded",
    "check_capacity", "compose_status_line",
]
