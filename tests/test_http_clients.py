"""Unit tests for the outbound HTTP clients in core/dispatch.py and core/mailer.py.

Covers:
- HttpScanExecutor posts the scan request and reports success
- Timeouts, connection errors and non-2xx responses are dispatch failures
- ResendEmailSender posts the digest with Bearer auth
- Missing API key and provider errors report not delivered

All network access is replaced with MagicMock sessions.
"""

from unittest.mock import MagicMock

import requests

from core.dispatch import HttpScanExecutor
from core.mailer import RESEND_API, ResendEmailSender
from core.models import DigestPayload

PAYLOAD = DigestPayload(to="owner@example.com", subject="Weekly summary", text="Hi there")


def _response(status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


# ---------------------------------------------------------------------------
# HttpScanExecutor
# ---------------------------------------------------------------------------


class TestHttpScanExecutor:
    def test_successful_dispatch(self) -> None:
        executor = HttpScanExecutor("http://scanner.local/scans", timeout=5.0, token="scanner-token")
        executor._session = MagicMock()
        executor._session.post.return_value = _response(202)

        assert executor.dispatch(7, "https://a.example.com") is True
        _, kwargs = executor._session.post.call_args
        assert kwargs["json"] == {"website_id": 7, "url": "https://a.example.com", "type": "scheduled"}
        assert kwargs["timeout"] == 5.0

    def test_token_sets_authorization_header(self) -> None:
        executor = HttpScanExecutor("http://scanner.local/scans", token="scanner-token")
        assert executor._session.headers["Authorization"] == "Bearer scanner-token"
        executor.close()

    def test_timeout_is_failure(self) -> None:
        executor = HttpScanExecutor("http://scanner.local/scans")
        executor._session = MagicMock()
        executor._session.post.side_effect = requests.Timeout("too slow")
        assert executor.dispatch(1, "https://a.example.com") is False

    def test_connection_error_is_failure(self) -> None:
        executor = HttpScanExecutor("http://scanner.local/scans")
        executor._session = MagicMock()
        executor._session.post.side_effect = requests.ConnectionError("refused")
        assert executor.dispatch(1, "https://a.example.com") is False

    def test_server_error_is_failure(self) -> None:
        executor = HttpScanExecutor("http://scanner.local/scans")
        executor._session = MagicMock()
        executor._session.post.return_value = _response(503)
        assert executor.dispatch(1, "https://a.example.com") is False


# ---------------------------------------------------------------------------
# ResendEmailSender
# ---------------------------------------------------------------------------


class TestResendEmailSender:
    def test_sends_plain_text_email(self) -> None:
        sender = ResendEmailSender("re_test_key", "DriftWatch <no-reply@example.com>")
        sender._session = MagicMock()
        sender._session.post.return_value = _response(200)

        assert sender.send(3, PAYLOAD) is True
        args, kwargs = sender._session.post.call_args
        assert args[0] == RESEND_API
        assert kwargs["headers"]["Authorization"] == "Bearer re_test_key"
        assert kwargs["json"]["to"] == "owner@example.com"
        assert kwargs["json"]["text"] == "Hi there"

    def test_missing_api_key_is_not_delivered(self) -> None:
        sender = ResendEmailSender("", "DriftWatch <no-reply@example.com>")
        sender._session = MagicMock()
        assert sender.send(3, PAYLOAD) is False
        sender._session.post.assert_not_called()

    def test_provider_error_is_not_delivered(self) -> None:
        sender = ResendEmailSender("re_test_key", "DriftWatch <no-reply@example.com>")
        sender._session = MagicMock()
        sender._session.post.return_value = _response(422)
        assert sender.send(3, PAYLOAD) is False
