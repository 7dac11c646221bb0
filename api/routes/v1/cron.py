"""
api/routes/v1/cron.py -- Cron trigger routes.

Routes:
  GET /cron/scans               -- one scan-trigger pass
  GET /cron/alerts              -- one scheduled_only alert pass
  GET /cron/weekly-monitoring   -- one digest pass over the last N days

All three are GET so that plain URL schedulers (Vercel cron, uptime pingers)
can call them. Each pass is safe to invoke while a previous one is still
running; the store's claims keep overlapping passes from double-acting.

Pass-level failures (the database is unreachable) surface as 503 with the
standard error envelope. Per-item failures never fail the request; they are
counted in the response body.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import require_cron_secret
from api.limiter import limiter
from api.models import AlertPassResponse, DigestRunResponse, ErrorDetail, ScanRunResponse
from core.config import get_settings
from jobs.alerts import ComplianceAlertService
from jobs.digest import WeeklyDigestScheduler, digest_window_start
from jobs.scans import ScanTriggerScheduler

router = APIRouter(prefix="/cron", dependencies=[Depends(require_cron_secret)])


def _cron_rate_limit() -> str:
    return get_settings().cron_rate_limit


def _pass_failed(name: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail=ErrorDetail(
            code="pass_failed",
            message=f"The {name} pass could not complete. It is safe to retry.",
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /cron/scans -- trigger due website scans
# ---------------------------------------------------------------------------


@router.get("/scans", response_model=ScanRunResponse)
@limiter.limit(_cron_rate_limit)
def run_scans(request: Request) -> ScanRunResponse:
    """Claim and dispatch every website whose plan cadence says it is due."""
    scheduler: ScanTriggerScheduler = request.app.state.scan_scheduler
    try:
        result = scheduler.run_due_website_scans()
    except SQLAlchemyError as exc:
        raise _pass_failed("scan") from exc
    return ScanRunResponse.from_result(result)


# ---------------------------------------------------------------------------
# GET /cron/alerts -- batch alert evaluation
# ---------------------------------------------------------------------------


@router.get("/alerts", response_model=AlertPassResponse)
@limiter.limit(_cron_rate_limit)
def run_alert_pass(request: Request) -> AlertPassResponse:
    """Evaluate snapshots that were not evaluated at intake (scheduled_only plans)."""
    service: ComplianceAlertService = request.app.state.alert_service
    try:
        result = service.run_scheduled_alert_pass()
    except SQLAlchemyError as exc:
        raise _pass_failed("alert") from exc
    return AlertPassResponse.from_result(result)


# ---------------------------------------------------------------------------
# GET /cron/weekly-monitoring -- weekly digest emails
# ---------------------------------------------------------------------------


@router.get("/weekly-monitoring", response_model=DigestRunResponse)
@limiter.limit(_cron_rate_limit)
def run_weekly_monitoring(
    request: Request,
    days: int = Query(default=7, ge=1, le=31),
) -> DigestRunResponse:
    """Send the monitoring digest to every eligible user with recent activity."""
    digest: WeeklyDigestScheduler = request.app.state.digest_scheduler
    now = datetime.now(timezone.utc)
    since = digest_window_start(now, days)
    try:
        result = digest.send_weekly_monitoring_emails(since=since, now=now)
    except SQLAlchemyError as exc:
        raise _pass_failed("digest") from exc
    return DigestRunResponse.from_result(result, since)
