"""
core/alerts.py -- Compliance-drop alert evaluation and cooldown gating.

Both decisions are pure functions. Persisting the outcome atomically is the
store's job (monitor/store.MonitorStore.record_alert), which calls admit()
inside its transaction so the rule lives in exactly one place.

Threshold semantics: a drop fires only when it strictly exceeds the plan's
threshold. A drop of exactly the threshold does not fire.
"""

from datetime import datetime, timedelta
from typing import Optional

from core.cadence import as_utc
from core.models import (
    CRITICAL_DROP_POINTS,
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    ComplianceDropAlert,
    CooldownDecision,
)
from core.plans import PlanConfig

# Bounds for a user-supplied threshold override.
MIN_THRESHOLD_OVERRIDE = 1
MAX_THRESHOLD_OVERRIDE = 50


def evaluate_drop(current_score: int, previous_score: int, drop_threshold: int) -> Optional[ComplianceDropAlert]:
    """Return a drop alert candidate, or None if the change does not qualify.

    delta = current - previous. Fires iff delta < -drop_threshold.
    Severity is critical iff delta <= -15, otherwise warning.
    """
    delta = current_score - previous_score
    if delta >= -drop_threshold:
        return None
    severity = SEVERITY_CRITICAL if delta <= -CRITICAL_DROP_POINTS else SEVERITY_WARNING
    return ComplianceDropAlert(
        previous_score=previous_score,
        current_score=current_score,
        delta=delta,
        severity=severity,
    )


def clamp_threshold_override(value: int) -> int:
    """Clamp a user threshold override to [1, 50]."""
    return max(MIN_THRESHOLD_OVERRIDE, min(MAX_THRESHOLD_OVERRIDE, int(value)))


def effective_drop_threshold(plan: PlanConfig, override: Optional[int] = None) -> int:
    """Return the drop threshold to apply for a user on this plan.

    Overrides only count on plans where alert settings are enabled; on any
    other plan the catalog threshold wins.
    """
    if override is None or not plan.alerts_enabled:
        return plan.drop_threshold
    return clamp_threshold_override(override)


def admit(
    candidate: ComplianceDropAlert,
    last_alert_at: Optional[datetime],
    cooldown_hours: int,
    now: datetime,
) -> CooldownDecision:
    """Decide whether a qualifying alert is dispatched or recorded as suppressed.

    Dispatch when there is no previous alert for the website/category, or when
    at least cooldown_hours have passed since it. The candidate itself does not
    influence the outcome.
    """
    if last_alert_at is None:
        return CooldownDecision(dispatch=True, reason="first_alert")
    if as_utc(now) - as_utc(last_alert_at) >= timedelta(hours=cooldown_hours):
        return CooldownDecision(dispatch=True, reason="cooldown_elapsed")
    return CooldownDecision(dispatch=False, reason="cooling_down")
