"""
api/routes/v1/websites.py -- Website registration, monitoring and scanner intake.

Routes:
  POST   /websites                          -- register a website (plan quota enforced)
  GET    /websites/{website_id}             -- website detail
  PATCH  /websites/{website_id}/monitoring  -- pause / resume automation
  GET    /websites/{website_id}/schedule    -- due flag + next scan estimate
  POST   /websites/{website_id}/scans       -- on-demand scan (plan cadence enforced)
  POST   /websites/{website_id}/snapshots   -- scanner reports a compliance score
  GET    /websites/{website_id}/alerts      -- recent alert records

All routes require X-Service-Token. Plan entitlements always come from the
owner's stored plan resolved through core.plans, never from the request.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError

from api.dependencies import require_service_token
from api.limiter import limiter
from api.models import (
    AlertRow,
    ErrorDetail,
    ManualScanResponse,
    MonitoringUpdate,
    ScheduleResponse,
    SnapshotCreate,
    SnapshotResponse,
    WebsiteCreate,
    WebsiteResponse,
)
from core.cadence import ScanFrequencyLimitError, estimate_schedule
from core.plans import QuotaExceededError, ensure_can_add_website, resolve_plan
from jobs.alerts import ComplianceAlertService
from jobs.scans import CONFLICT, FAILED, ScanTriggerScheduler
from monitor.models import Website
from monitor.store import MonitorStore

router = APIRouter(dependencies=[Depends(require_service_token)])


def _not_found(kind: str, item_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"{kind} {item_id} not found.").model_dump(),
    )


def _get_website_or_404(store: MonitorStore, website_id: int) -> Website:
    website = store.get_website(website_id)
    if website is None:
        raise _not_found("Website", website_id)
    return website


# ---------------------------------------------------------------------------
# POST /websites -- register a website
# ---------------------------------------------------------------------------


@router.post("/websites", response_model=WebsiteResponse, status_code=201)
@limiter.limit("30/minute")
def create_website(request: Request, body: WebsiteCreate) -> WebsiteResponse:
    """Register a website for a user, enforcing the plan's website quota."""
    store: MonitorStore = request.app.state.store
    owner = store.get_user(body.user_id)
    if owner is None:
        raise _not_found("User", body.user_id)

    try:
        ensure_can_add_website(resolve_plan(owner.plan), store.count_websites(owner.id))
    except QuotaExceededError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="quota_exceeded", message="Website quota reached.", detail=str(exc)).model_dump(),
        ) from exc

    try:
        website_id = store.create_website(Website(user_id=owner.id, url=body.url, monitored=body.monitored))
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="duplicate_website", message="Website already registered for this user.").model_dump(),
        ) from exc
    return WebsiteResponse.from_website(store.get_website(website_id))


# ---------------------------------------------------------------------------
# GET /websites/{website_id}
# ---------------------------------------------------------------------------


@router.get("/websites/{website_id}", response_model=WebsiteResponse)
@limiter.limit("60/minute")
def get_website(request: Request, website_id: int) -> WebsiteResponse:
    store: MonitorStore = request.app.state.store
    return WebsiteResponse.from_website(_get_website_or_404(store, website_id))


# ---------------------------------------------------------------------------
# PATCH /websites/{website_id}/monitoring -- pause / resume
# ---------------------------------------------------------------------------


@router.patch("/websites/{website_id}/monitoring", response_model=WebsiteResponse)
@limiter.limit("30/minute")
def update_monitoring(request: Request, website_id: int, body: MonitoringUpdate) -> WebsiteResponse:
    """Pause or resume automated scans. Paused websites are skipped by the scheduler."""
    store: MonitorStore = request.app.state.store
    if not store.set_monitoring(website_id, body.monitored):
        raise _not_found("Website", website_id)
    return WebsiteResponse.from_website(_get_website_or_404(store, website_id))


# ---------------------------------------------------------------------------
# GET /websites/{website_id}/schedule
# ---------------------------------------------------------------------------


@router.get("/websites/{website_id}/schedule", response_model=ScheduleResponse)
@limiter.limit("60/minute")
def get_schedule(request: Request, website_id: int) -> ScheduleResponse:
    """Return whether a scan is due and when the next automated scan is expected.

    next_scan_at is an estimate only. The scheduler decides from fresh data
    on every pass.
    """
    store: MonitorStore = request.app.state.store
    website = _get_website_or_404(store, website_id)
    plan = resolve_plan(website.plan)
    estimate = estimate_schedule(plan, website.last_scan_at, datetime.now(timezone.utc), website.monitored)
    return ScheduleResponse(
        website_id=website.id,
        plan=plan.tier.value,
        scan_frequency=plan.scan_frequency.value,
        automated_scans=plan.automated_scans,
        monitored=website.monitored,
        due_now=estimate.due_now,
        last_scan_at=website.last_scan_at.isoformat() if website.last_scan_at else None,
        next_scan_at=estimate.next_scan_at,
    )


# ---------------------------------------------------------------------------
# POST /websites/{website_id}/scans -- on-demand scan
# ---------------------------------------------------------------------------


@router.post("/websites/{website_id}/scans", response_model=ManualScanResponse, status_code=202)
@limiter.limit("10/minute")
def trigger_scan(request: Request, website_id: int) -> ManualScanResponse:
    """Dispatch a scan now if the owner's plan cadence allows one.

    429 scan_frequency_limit when the cadence says no, 409 scan_in_progress
    when another dispatch holds the website, 502 dispatch_failed when the
    scanner rejects the job (the claim is rolled back).
    """
    scheduler: ScanTriggerScheduler = request.app.state.scan_scheduler
    try:
        outcome = scheduler.trigger_manual_scan(website_id)
    except LookupError as exc:
        raise _not_found("Website", website_id) from exc
    except ScanFrequencyLimitError as exc:
        raise HTTPException(
            status_code=429,
            detail=ErrorDetail(
                code="scan_frequency_limit", message="Plan scan frequency reached.", detail=str(exc)
            ).model_dump(),
        ) from exc

    if outcome == CONFLICT:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="scan_in_progress", message="A scan is already being dispatched.").model_dump(),
        )
    if outcome == FAILED:
        raise HTTPException(
            status_code=502,
            detail=ErrorDetail(code="dispatch_failed", message="Scanner did not accept the job.").model_dump(),
        )
    website = _get_website_or_404(request.app.state.store, website_id)
    return ManualScanResponse(
        website_id=website.id,
        status=outcome,
        last_scan_at=website.last_scan_at.isoformat() if website.last_scan_at else None,
    )


# ---------------------------------------------------------------------------
# POST /websites/{website_id}/snapshots -- scanner intake
# ---------------------------------------------------------------------------


@router.post("/websites/{website_id}/snapshots", response_model=SnapshotResponse, status_code=201)
@limiter.limit("120/minute")
def create_snapshot(request: Request, website_id: int, body: SnapshotCreate) -> SnapshotResponse:
    """Record a compliance score. Realtime plans are evaluated for a drop immediately."""
    service: ComplianceAlertService = request.app.state.alert_service
    try:
        snapshot, alert = service.record_snapshot(website_id, body.score, taken_at=body.taken_at)
    except LookupError as exc:
        raise _not_found("Website", website_id) from exc
    return SnapshotResponse.from_snapshot(snapshot, alert)


# ---------------------------------------------------------------------------
# GET /websites/{website_id}/alerts
# ---------------------------------------------------------------------------


@router.get("/websites/{website_id}/alerts", response_model=list[AlertRow])
@limiter.limit("60/minute")
def list_website_alerts(
    request: Request,
    website_id: int,
    limit: int = Query(default=20, ge=1, le=200),
    include_suppressed: bool = Query(default=True),
) -> list[AlertRow]:
    """Return the website's alert records, newest first."""
    store: MonitorStore = request.app.state.store
    _get_website_or_404(store, website_id)
    alerts = store.list_alerts(
        website_id=website_id, suppressed=None if include_suppressed else False, limit=limit
    )
    return [AlertRow.from_record(a) for a in alerts]
