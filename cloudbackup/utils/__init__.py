"""Utilities (logging, retry, hashing)"""
from .logging import log, vlog, warn, section, set_verbose, set_log_file
from .retry import retried
from .file_utils import sha256_local, sha256_stream, has_forbidden_chars, parse_digest_line

__all__ = [
    "log", "vlog", "warn", "section", "set_verbose", "set_log_file",
    "retried",
    "sha256_local", "sha256_stream", "has_forbidden_chars", "parse_digest_line",
]
