"""
Status pings to a healthchecks.io-style endpoint
"""
import requests
from ..utils.logging import log
from ..utils.retry import retried

PING_TIMEOUT = 10  # seconds


class HealthcheckClient:
    """
    <url>/start when a run begins, <url>/<n> with the summary when it ends.
    n == 0 is a success ping, anything else marks the check as failed.
    """

    def __init__(self, url: str, session=None):
        self.url = url.rstrip("/")
        self.session = session or requests.Session()

    @retried
    def _ping(self, suffix: str, body: str = ""):
        url = f"{self.url}/{suffix}"
        if body:
            resp = self.session.post(url, data=body.encode("utf-8"), timeout=PING_TIMEOUT)
        else:
            resp = self.session.get(url, timeout=PING_TIMEOUT)
        resp.raise_for_status()

    def start(self):
        log("[ping] start")
        self._ping("start")

    def finish(self, n_errors: int, body: str):
        log(f"[ping] finish ({n_errors})")
        self._ping(str(n_errors), body)
