"""
API request and response models for DriftWatch REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
monitor/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: core/ + monitor/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import AlertPassResult, DigestRunResult, ScanRunResult
from monitor.models import AlertRecord, ComplianceSnapshot, Website

# ---------------------------------------------------------------------------
# Cron pass results
# ---------------------------------------------------------------------------


class ScanRunResponse(BaseModel):
    """Response for GET /api/v1/cron/scans."""

    model_config = ConfigDict(frozen=True)

    triggered: int
    due: int
    conflicts: int
    failed: int
    cleaned_stale: int

    @classmethod
    def from_result(cls, result: ScanRunResult) -> "ScanRunResponse":
        return cls(
            triggered=result.triggered,
            due=result.due,
            conflicts=result.conflicts,
            failed=result.failed,
            cleaned_stale=result.cleaned_stale,
        )


class AlertPassResponse(BaseModel):
    """Response for GET /api/v1/cron/alerts."""

    model_config = ConfigDict(frozen=True)

    evaluated: int
    admitted: int
    suppressed: int

    @classmethod
    def from_result(cls, result: AlertPassResult) -> "AlertPassResponse":
        return cls(evaluated=result.evaluated, admitted=result.admitted, suppressed=result.suppressed)


class DigestRunResponse(BaseModel):
    """Response for GET /api/v1/cron/weekly-monitoring."""

    model_config = ConfigDict(frozen=True)

    processed_users: int
    emailed_users: int
    since: str

    @classmethod
    def from_result(cls, result: DigestRunResult, since: datetime) -> "DigestRunResponse":
        return cls(
            processed_users=result.processed_users,
            emailed_users=result.emailed_users,
            since=since.isoformat(),
        )


# ---------------------------------------------------------------------------
# Websites
# ---------------------------------------------------------------------------


class WebsiteCreate(BaseModel):
    """Request body for POST /api/v1/websites."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: int = Field(ge=1)
    url: str = Field(min_length=1, max_length=2048)
    monitored: bool = True

    @field_validator("url")
    @classmethod
    def require_http_scheme(cls, value: str) -> str:
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value


class MonitoringUpdate(BaseModel):
    """Request body for PATCH /api/v1/websites/{website_id}/monitoring."""

    monitored: bool


class WebsiteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    url: str
    plan: str
    monitored: bool
    last_scan_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_website(cls, website: Website) -> "WebsiteResponse":
        return cls(
            id=website.id,
            user_id=website.user_id,
            url=website.url,
            plan=website.plan,
            monitored=website.monitored,
            last_scan_at=website.last_scan_at.isoformat() if website.last_scan_at else None,
            created_at=website.created_at.isoformat() if website.created_at else None,
        )


class ScheduleResponse(BaseModel):
    """Response for GET /api/v1/websites/{website_id}/schedule.

    plan is the resolved tier, which is "free" for unknown stored values.
    """

    model_config = ConfigDict(frozen=True)

    website_id: int
    plan: str
    scan_frequency: str
    automated_scans: bool
    monitored: bool
    due_now: bool
    last_scan_at: Optional[str]
    next_scan_at: Optional[str]


class ManualScanResponse(BaseModel):
    """Response for POST /api/v1/websites/{website_id}/scans."""

    model_config = ConfigDict(frozen=True)

    website_id: int
    status: str
    last_scan_at: Optional[str]


# ---------------------------------------------------------------------------
# Snapshots and alerts
# ---------------------------------------------------------------------------


class SnapshotCreate(BaseModel):
    """Request body for POST /api/v1/websites/{website_id}/snapshots.

    taken_at defaults to the time the request is received.
    """

    score: int = Field(ge=0, le=100)
    taken_at: Optional[datetime] = None


class AlertRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    website_id: int
    user_id: int
    snapshot_id: int
    category: str
    previous_score: int
    current_score: int
    delta: int
    severity: str
    suppressed: bool
    acknowledged: bool
    created_at: str

    @classmethod
    def from_record(cls, alert: AlertRecord) -> "AlertRow":
        return cls(
            id=alert.id,
            website_id=alert.website_id,
            user_id=alert.user_id,
            snapshot_id=alert.snapshot_id,
            category=alert.category,
            previous_score=alert.previous_score,
            current_score=alert.current_score,
            delta=alert.delta,
            severity=alert.severity,
            suppressed=alert.suppressed,
            acknowledged=alert.acknowledged,
            created_at=alert.created_at.isoformat(),
        )


class SnapshotResponse(BaseModel):
    """Response for POST /api/v1/websites/{website_id}/snapshots.

    alert is present when this snapshot was evaluated at intake and the drop
    qualified. A suppressed alert is still returned, with suppressed=true.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    website_id: int
    score: int
    taken_at: str
    evaluated: bool
    alert: Optional[AlertRow] = None

    @classmethod
    def from_snapshot(cls, snapshot: ComplianceSnapshot, alert: Optional[AlertRecord]) -> "SnapshotResponse":
        return cls(
            id=snapshot.id,
            website_id=snapshot.website_id,
            score=snapshot.score,
            taken_at=snapshot.taken_at.isoformat(),
            evaluated=snapshot.evaluated,
            alert=AlertRow.from_record(alert) if alert is not None else None,
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ThresholdUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}/alert-threshold.

    Out-of-range values are clamped to 1..50 rather than rejected. null clears
    the override and restores the plan default.
    """

    threshold: Optional[int] = None


class ThresholdResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    plan: str
    alert_drop_threshold: Optional[int]
    effective_threshold: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
