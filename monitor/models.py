"""
monitor/models.py -- Domain dataclasses for the DriftWatch monitoring store.

These are pure data containers with zero logic. Policy (cadence, drop
evaluation, cooldown) lives in core/; atomic state transitions live in
monitor/store.py.

Timestamps are aware UTC datetimes. The store persists them as ISO 8601
strings and converts on the way in and out.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """An account that owns websites.

    plan is the raw stored value; resolve it through core.plans.resolve_plan()
    before reading entitlements. alert_drop_threshold is the user's override,
    already clamped when written.

    id is None before the record is written to the database.
    """

    email: Optional[str]
    plan: str = "free"
    alert_drop_threshold: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class Website:
    """A monitored website.

    plan is denormalized from the owning user on read. monitored=False means
    automation is paused; the scheduler skips the website entirely.
    """

    user_id: int
    url: str
    plan: str = "free"
    monitored: bool = True
    last_scan_at: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class ComplianceSnapshot:
    """A compliance score produced by the external scanner. Append-only.

    evaluated flips to True exactly once, when the alert evaluation for this
    snapshot has run (or been bypassed for plans without alerting).
    """

    website_id: int
    score: int  # 0..100
    taken_at: datetime
    evaluated: bool = False
    id: Optional[int] = None


@dataclass
class AlertRecord:
    """Immutable audit entry for a qualifying compliance drop.

    Suppressed alerts are still written so the history shows every drop,
    including the ones held back by the cooldown. Only acknowledged changes
    after insert.
    """

    website_id: int
    user_id: int
    snapshot_id: int
    previous_score: int
    current_score: int
    delta: int
    severity: str  # "warning" | "critical"
    created_at: datetime
    suppressed: bool = False
    acknowledged: bool = False
    category: str = "compliance_drop"
    id: Optional[int] = None


@dataclass
class ScanJob:
    """One scheduled dispatch attempt.

    previous_scan_at holds the website's last_scan_at from before the claim so
    a failed dispatch can restore it.
    """

    website_id: int
    triggered_at: datetime
    status: str = "pending"  # "pending" | "dispatched" | "failed"
    previous_scan_at: Optional[datetime] = None
    error: Optional[str] = None
    id: Optional[int] = None
