"""
Mark freshly uploaded remote files read-only (best effort)
"""
from ..state.error_stream import ErrorStream
from ..utils.logging import log


def protect_uploaded(paths: list[str], shell, mode: str, errors: ErrorStream) -> int:
    """chmod *mode* on each uploaded path; failures are anomalies, never retried."""
    if not paths:
        return 0
    log(f"[protect] chmod {mode} on {len(paths)} uploaded file(s)")
    try:
        failures = shell.chmod(mode, paths)
    except Exception as exc:
        failures = [f"chmod failed: {exc}"]
    errors.extend(f"protect: {ln}" for ln in failures)
    return len(failures)
