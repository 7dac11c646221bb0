"""
core/cadence.py -- Scan cadence policy.

Pure functions, no I/O. The scheduler and on-demand scans both re-evaluate
is_scan_due() against the latest last_scan_at; next_scan_at() is an estimate
for display and must never be used as a gate.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.models import ScheduleEstimate
from core.plans import FrequencyClass, PlanConfig

_PERIODS: dict[FrequencyClass, timedelta] = {
    FrequencyClass.daily: timedelta(hours=24),
    FrequencyClass.weekly: timedelta(days=7),
}


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are assumed UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_scan_due(frequency: FrequencyClass, last_scan_at: Optional[datetime], now: datetime) -> bool:
    """Return True if a website on this frequency class should be scanned now.

    once       -- only if it has never been scanned
    daily      -- never scanned, or at least 24h since the last scan
    weekly     -- never scanned, or at least 7 days since the last scan
    continuous -- always; the scheduler's claim window does the rate limiting
    """
    frequency = FrequencyClass(frequency)
    if frequency is FrequencyClass.continuous:
        return True
    if last_scan_at is None:
        return True
    if frequency is FrequencyClass.once:
        return False
    return as_utc(now) - as_utc(last_scan_at) >= _PERIODS[frequency]


def next_scan_at(from_: datetime, interval_minutes: int) -> datetime:
    """Return from_ + interval_minutes. Estimation only."""
    return from_ + timedelta(minutes=interval_minutes)


def estimate_schedule(
    plan: PlanConfig, last_scan_at: Optional[datetime], now: datetime, monitored: bool = True
) -> ScheduleEstimate:
    """Describe when a website will next be scanned, for display.

    due_now follows the plan's frequency class even without automation, so a
    free-plan website reports whether its single manual scan is still open.
    next_scan_at is None when nothing will trigger a scan automatically.
    """
    due = is_scan_due(plan.scan_frequency, last_scan_at, now)
    if not (monitored and plan.automated_scans and plan.scan_interval_minutes):
        return ScheduleEstimate(due_now=due, next_scan_at=None)
    if last_scan_at is None:
        upcoming = as_utc(now)
    else:
        upcoming = max(as_utc(now), next_scan_at(as_utc(last_scan_at), plan.scan_interval_minutes))
    return ScheduleEstimate(due_now=due, next_scan_at=upcoming.isoformat())


class ScanFrequencyLimitError(Exception):
    """Raised when an on-demand scan is requested before the plan's cadence allows one."""

    def __init__(self, plan: PlanConfig, last_scan_at: Optional[datetime]) -> None:
        self.plan = plan
        self.last_scan_at = last_scan_at
        last = last_scan_at.isoformat() if last_scan_at else "never"
        super().__init__(
            f"Plan '{plan.tier.value}' scans {plan.scan_frequency.value}; last scan was {last}"
        )


def ensure_scan_allowed(plan: PlanConfig, last_scan_at: Optional[datetime], now: datetime) -> None:
    """Raise ScanFrequencyLimitError unless is_scan_due() allows a scan now.

    Applies to on-demand scans on every plan, automated or not. A free-plan
    website gets exactly one.
    """
    if not is_scan_due(plan.scan_frequency, last_scan_at, now):
        raise ScanFrequencyLimitError(plan, last_scan_at)
