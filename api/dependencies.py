"""
api/dependencies.py -- FastAPI Depends() helpers for shared-secret gating.

Two gates, both backed by values from core.config.Settings:

  require_cron_secret()    -- cron trigger routes. The secret may arrive as
                              ?secret=... (schedulers that can only hit a URL)
                              or as Authorization: Bearer <secret>.
  require_service_token()  -- every other mutating or per-tenant route.
                              Expects X-Service-Token: <token>.

Comparison uses hmac.compare_digest so response timing does not reveal how
many leading characters of a guess were right.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from core.config import get_settings


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def require_cron_secret(request: Request) -> None:
    """Raise HTTP 401 unless the request carries the cron secret."""
    expected = get_settings().cron_secret
    if _matches(request.query_params.get("secret"), expected) or _matches(_bearer_token(request), expected):
        return
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Valid cron secret required."},
    )


def require_service_token(request: Request) -> None:
    """Raise HTTP 401 unless X-Service-Token matches SERVICE_TOKEN."""
    if _matches(request.headers.get("X-Service-Token"), get_settings().service_token):
        return
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Valid service token required."},
    )
