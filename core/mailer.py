"""
core/mailer.py -- Outbound email for monitoring digests.

Talks to the Resend HTTP API with a plain requests session. When
RESEND_API_KEY is not configured, sends are logged and reported as not
delivered so the digest pass leaves the user eligible for the next run.
"""

import logging
from typing import Protocol

import requests

from core.models import DigestPayload

logger = logging.getLogger("driftwatch.mailer")

RESEND_API = "https://api.resend.com/emails"


class EmailSender(Protocol):
    def send(self, user_id: int, payload: DigestPayload) -> bool: ...


class ResendEmailSender:
    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self._session = requests.Session()
        self._session.max_redirects = 3
        if not api_key:
            logger.warning("RESEND_API_KEY not set. Monitoring emails will be logged but not sent.")

    def send(self, user_id: int, payload: DigestPayload) -> bool:
        """Send one plain-text email. Returns True only if the provider accepted it."""
        if not self.api_key:
            logger.error("Email send skipped, no provider configured (user=%s subject=%r)", user_id, payload.subject)
            return False
        try:
            resp = self._session.post(
                RESEND_API,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.from_email,
                    "to": payload.to,
                    "subject": payload.subject,
                    "text": payload.text,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Email send failed for user %s: %s", user_id, e)
            return False
        return True

    def close(self) -> None:
        self._session.close()
