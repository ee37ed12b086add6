"""
Availability probe: download one random file and check it against the ledger
"""
import random
from typing import Optional
from ..state.error_stream import ErrorStream
from ..state.ledger import Ledger
from ..utils.logging import log


def probe_random_file(local_files: list[str], ledger: Ledger, shell, errors: ErrorStream,
                      rng: Optional[random.Random] = None) -> Optional[str]:
    """
    Returns the probed path, or None when there is nothing to probe.
    A download failure, an unknown path or a digest mismatch is an anomaly.
    """
    if not local_files:
        log("[probe] no local files, skipping")
        return None
    rel = (rng or random).choice(local_files)
    log(f"[probe] downloading {rel}")
    try:
        digest = shell.digest_of_download(rel)
    except Exception as exc:
        errors.record(f"Could not download sample file {rel}: {exc}")
        return rel
    if not ledger.contains(rel, digest):
        errors.record(f"Incorrect hash {digest} for downloaded sample file {rel}")
    else:
        log(f"[probe] {digest} matches ✓")
    return rel
