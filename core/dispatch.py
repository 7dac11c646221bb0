"""
core/dispatch.py -- Scan executor client.

The scanner itself is a separate service. Dispatching a scan means handing it
a website id and URL; the scanner later reports the resulting compliance score
back through POST /api/v1/websites/{id}/snapshots.

A dispatch either succeeds (scanner accepted the job) or fails. Timeouts,
connection errors and non-2xx responses are all failures -- the scheduler
rolls back its claim and the website stays eligible for the next pass.
"""

import logging
from typing import Optional, Protocol

import requests

logger = logging.getLogger("driftwatch.dispatch")


class ScanExecutor(Protocol):
    def dispatch(self, website_id: int, url: str) -> bool: ...


class HttpScanExecutor:
    """POST scan requests to the scanner service.

    One requests.Session per executor for connection pooling across the
    scheduler's worker threads. max_redirects=3 replaces the requests default
    of 30 -- the scanner is an internal service and should never redirect far.
    """

    def __init__(self, endpoint: str, timeout: float = 30.0, token: Optional[str] = None) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = requests.Session()
        self._session.max_redirects = 3
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def dispatch(self, website_id: int, url: str) -> bool:
        try:
            resp = self._session.post(
                self.endpoint,
                json={"website_id": website_id, "url": url, "type": "scheduled"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.Timeout:
            logger.warning("Scan dispatch timed out for website %s after %.1fs", website_id, self.timeout)
            return False
        except requests.RequestException as e:
            logger.warning("Scan dispatch failed for website %s: %s", website_id, e)
            return False
        return True

    def close(self) -> None:
        self._session.close()
