from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Alert categories that carry their own cooldown clock per website.
COMPLIANCE_DROP = "compliance_drop"
ALERT_CATEGORIES = (COMPLIANCE_DROP,)

# Fixed severity cut, independent of any plan's drop threshold.
CRITICAL_DROP_POINTS = 15

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"


@dataclass(frozen=True)
class ComplianceDropAlert:
    previous_score: int
    current_score: int
    delta: int  # current - previous, negative on regression
    severity: str  # "warning" | "critical"
    category: str = COMPLIANCE_DROP


@dataclass(frozen=True)
class CooldownDecision:
    dispatch: bool
    reason: str = ""  # "first_alert" | "cooldown_elapsed" | "cooling_down" | "lost_race"


@dataclass
class ScanRunResult:
    triggered: int = 0  # dispatches that succeeded
    due: int = 0
    conflicts: int = 0  # claims lost to an overlapping pass
    failed: int = 0
    cleaned_stale: int = 0


@dataclass
class AlertPassResult:
    evaluated: int = 0
    admitted: int = 0
    suppressed: int = 0


@dataclass
class DigestRunResult:
    processed_users: int = 0
    emailed_users: int = 0


@dataclass(frozen=True)
class DigestPayload:
    to: str
    subject: str
    text: str


@dataclass(frozen=True)
class ScheduleEstimate:
    due_now: bool
    next_scan_at: Optional[str]  # ISO 8601, None without automation
