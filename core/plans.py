"""
core/plans.py -- Plan tiers and their monitoring entitlements.

The catalog is built once at import time and exposed as a read-only mapping
keyed by PlanTier. Nothing in the process writes to it.

Every caller that holds a raw plan string (from the users table, a billing
webhook, an admin tool) goes through resolve_plan(). Unknown or malformed
values resolve to the free tier: a bad plan value must never grant more
than the most conservative entitlement.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger("driftwatch.plans")


class PlanTier(str, Enum):
    free = "free"
    starter = "starter"
    business = "business"
    agency = "agency"


class FrequencyClass(str, Enum):
    once = "once"
    daily = "daily"
    weekly = "weekly"
    continuous = "continuous"


class AlertMode(str, Enum):
    none = "none"
    scheduled_only = "scheduled_only"
    realtime = "realtime"


@dataclass(frozen=True)
class PlanConfig:
    """Entitlements for one plan tier.

    website_quota      -- max websites per user; None means unbounded
    automated_scans    -- whether the scan scheduler picks up the plan's websites
    scan_interval_minutes -- display estimate for the next scan, never a gate
    alerts_enabled     -- user-facing alert settings (threshold override) allowed
    drop_threshold     -- score drop in points that must be strictly exceeded
    cooldown_hours     -- minimum gap between two dispatched alerts per website
    """

    tier: PlanTier
    website_quota: Optional[int]
    scan_frequency: FrequencyClass
    automated_scans: bool
    scan_interval_minutes: Optional[int]
    alerts_enabled: bool
    alert_mode: AlertMode
    drop_threshold: int
    cooldown_hours: int

    def __post_init__(self) -> None:
        if self.alert_mode is AlertMode.none and self.alerts_enabled:
            raise ValueError(f"{self.tier.value}: alert mode 'none' requires alerts_enabled=False")
        if self.drop_threshold < 0:
            raise ValueError(f"{self.tier.value}: drop_threshold must be >= 0")
        if self.cooldown_hours < 0:
            raise ValueError(f"{self.tier.value}: cooldown_hours must be >= 0")
        if self.website_quota is not None and self.website_quota < 0:
            raise ValueError(f"{self.tier.value}: website_quota must be >= 0")

    @property
    def alerting_active(self) -> bool:
        """True when compliance-drop alerts are evaluated at all for this plan."""
        return self.alert_mode is not AlertMode.none


PLAN_CATALOG: Mapping[PlanTier, PlanConfig] = MappingProxyType(
    {
        PlanTier.free: PlanConfig(
            tier=PlanTier.free,
            website_quota=1,
            scan_frequency=FrequencyClass.once,
            automated_scans=False,
            scan_interval_minutes=None,
            alerts_enabled=False,
            alert_mode=AlertMode.none,
            drop_threshold=0,
            cooldown_hours=0,
        ),
        PlanTier.starter: PlanConfig(
            tier=PlanTier.starter,
            website_quota=1,
            scan_frequency=FrequencyClass.weekly,
            automated_scans=True,
            scan_interval_minutes=7 * 24 * 60,
            alerts_enabled=False,
            alert_mode=AlertMode.scheduled_only,
            drop_threshold=10,
            cooldown_hours=48,
        ),
        PlanTier.business: PlanConfig(
            tier=PlanTier.business,
            website_quota=10,
            scan_frequency=FrequencyClass.continuous,
            automated_scans=True,
            scan_interval_minutes=24 * 60,
            alerts_enabled=True,
            alert_mode=AlertMode.realtime,
            drop_threshold=5,
            cooldown_hours=12,
        ),
        PlanTier.agency: PlanConfig(
            tier=PlanTier.agency,
            website_quota=None,
            scan_frequency=FrequencyClass.continuous,
            automated_scans=True,
            scan_interval_minutes=24 * 60,
            alerts_enabled=True,
            alert_mode=AlertMode.realtime,
            drop_threshold=1,
            cooldown_hours=2,
        ),
    }
)

DEFAULT_TIER = PlanTier.free


def resolve_tier(raw_plan: object) -> PlanTier:
    """Map a loose plan value to a PlanTier, falling back to free.

    Accepts PlanTier members, strings in any case with surrounding whitespace,
    and None. Anything else is logged and treated as free.
    """
    if isinstance(raw_plan, PlanTier):
        return raw_plan
    if isinstance(raw_plan, str):
        try:
            return PlanTier(raw_plan.strip().lower())
        except ValueError:
            pass
    if raw_plan is not None:
        logger.warning("Unknown plan value %r -- using %s entitlements", raw_plan, DEFAULT_TIER.value)
    return DEFAULT_TIER


def resolve_plan(raw_plan: object) -> PlanConfig:
    """Return the PlanConfig for a loose plan value (see resolve_tier)."""
    return PLAN_CATALOG[resolve_tier(raw_plan)]


def can_add_website(plan: PlanConfig, current_count: int) -> bool:
    """Return True if a user on this plan may register one more website."""
    if plan.website_quota is None:
        return True
    return current_count < plan.website_quota


class QuotaExceededError(Exception):
    """Raised when a user already holds as many websites as the plan allows."""

    def __init__(self, plan: PlanConfig, current_count: int) -> None:
        self.plan = plan
        self.current_count = current_count
        super().__init__(
            f"Plan '{plan.tier.value}' allows {plan.website_quota} website(s); user already has {current_count}"
        )


def ensure_can_add_website(plan: PlanConfig, current_count: int) -> None:
    """Raise QuotaExceededError unless can_add_website() allows one more."""
    if not can_add_website(plan, current_count):
        raise QuotaExceededError(plan, current_count)
