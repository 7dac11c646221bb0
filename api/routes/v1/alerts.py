"""
api/routes/v1/alerts.py -- Alert acknowledgement and per-user alert settings.

Routes:
  GET  /users/{user_id}/alerts             -- the user's recent alerts across websites
  POST /alerts/{alert_id}/acknowledge      -- mark an alert as seen
  PUT  /users/{user_id}/alert-threshold    -- set or clear the drop-threshold override

Alert records are append-only; acknowledged is the only field that changes
after insert.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import require_service_token
from api.limiter import limiter
from api.models import AlertRow, ErrorDetail, ThresholdResponse, ThresholdUpdate
from core.alerts import clamp_threshold_override, effective_drop_threshold
from core.plans import resolve_plan
from monitor.store import MonitorStore

router = APIRouter(dependencies=[Depends(require_service_token)])


def _user_not_found(user_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"User {user_id} not found.").model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /users/{user_id}/alerts
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/alerts", response_model=list[AlertRow])
@limiter.limit("60/minute")
def list_user_alerts(
    request: Request,
    user_id: int,
    limit: int = Query(default=10, ge=1, le=200),
    include_suppressed: bool = Query(default=True),
) -> list[AlertRow]:
    """Return the user's alert records across all their websites, newest first."""
    store: MonitorStore = request.app.state.store
    if store.get_user(user_id) is None:
        raise _user_not_found(user_id)
    alerts = store.list_alerts(user_id=user_id, suppressed=None if include_suppressed else False, limit=limit)
    return [AlertRow.from_record(a) for a in alerts]


# ---------------------------------------------------------------------------
# POST /alerts/{alert_id}/acknowledge
# ---------------------------------------------------------------------------


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertRow)
@limiter.limit("60/minute")
def acknowledge_alert(request: Request, alert_id: int) -> AlertRow:
    """Acknowledge an alert. Acknowledging twice is a no-op."""
    store: MonitorStore = request.app.state.store
    if not store.acknowledge_alert(alert_id):
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="not_found", message=f"Alert {alert_id} not found.").model_dump(),
        )
    return AlertRow.from_record(store.get_alert(alert_id))


# ---------------------------------------------------------------------------
# PUT /users/{user_id}/alert-threshold
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/alert-threshold", response_model=ThresholdResponse)
@limiter.limit("30/minute")
def update_alert_threshold(request: Request, user_id: int, body: ThresholdUpdate) -> ThresholdResponse:
    """Set the user's drop-threshold override, clamped to 1..50.

    Only plans with alert settings enabled accept an override; others get 403
    and keep the plan default.
    """
    store: MonitorStore = request.app.state.store
    user = store.get_user(user_id)
    if user is None:
        raise _user_not_found(user_id)

    plan = resolve_plan(user.plan)
    if not plan.alerts_enabled:
        raise HTTPException(
            status_code=403,
            detail=ErrorDetail(
                code="plan_forbidden",
                message="Alert settings are not available on this plan.",
                detail=f"plan={plan.tier.value}",
            ).model_dump(),
        )

    override = clamp_threshold_override(body.threshold) if body.threshold is not None else None
    store.set_alert_threshold(user_id, override)
    return ThresholdResponse(
        user_id=user_id,
        plan=plan.tier.value,
        alert_drop_threshold=override,
        effective_threshold=effective_drop_threshold(plan, override),
    )
