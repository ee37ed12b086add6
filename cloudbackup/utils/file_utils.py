"""
File utilities (SHA-256, path validation)
"""
import hashlib
from pathlib import Path
from typing import Iterable
from ..config import FORBIDDEN_PATH_CHARS

CHUNK_SIZE = 1024 * 1024


def sha256_local(path: Path) -> str:
    """Compute the SHA-256 hex digest of a local file"""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_stream(chunks: Iterable[bytes]) -> str:
    """SHA-256 hex digest of a byte stream"""
    h = hashlib.sha256()
    for chunk in chunks:
        h.update(chunk)
    return h.hexdigest()


def has_forbidden_chars(rel_path: str) -> bool:
    return any(c in FORBIDDEN_PATH_CHARS for c in rel_path)


def parse_digest_line(line: str) -> tuple[str, str]:
    """
    Split one line of `sha256sum` output into (digest, path).

    GNU prints "<hash>  <path>" or "<hash> *<path>" in binary mode, FreeBSD
    prints "<hash> <path>"; the separator and the '*' marker are dropped.
    """
    digest, _, rest = line.partition(" ")
    if rest.startswith(" ") or rest.startswith("*"):
        rest = rest[1:]
    return digest.lower(), rest
