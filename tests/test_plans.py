"""Unit tests for the plan catalog in core/plans.py.

Covers:
- Catalog values per tier (quota, frequency, automation, alerting, cooldown)
- PlanConfig construction invariants
- resolve_tier()/resolve_plan() fallback to free for unknown values
- Website quota checks
"""

import logging

import pytest

from core.plans import (
    PLAN_CATALOG,
    AlertMode,
    FrequencyClass,
    PlanConfig,
    PlanTier,
    QuotaExceededError,
    can_add_website,
    ensure_can_add_website,
    resolve_plan,
    resolve_tier,
)

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_every_tier_has_a_config(self) -> None:
        assert set(PLAN_CATALOG) == set(PlanTier)

    def test_free_plan_has_no_automation_and_no_alerts(self) -> None:
        free = PLAN_CATALOG[PlanTier.free]
        assert free.website_quota == 1
        assert free.scan_frequency is FrequencyClass.once
        assert free.automated_scans is False
        assert free.alert_mode is AlertMode.none
        assert free.alerts_enabled is False
        assert free.alerting_active is False

    def test_starter_plan_is_weekly_and_scheduled_only(self) -> None:
        starter = PLAN_CATALOG[PlanTier.starter]
        assert starter.scan_frequency is FrequencyClass.weekly
        assert starter.automated_scans is True
        assert starter.alert_mode is AlertMode.scheduled_only
        assert starter.alerts_enabled is False
        assert starter.alerting_active is True
        assert (starter.drop_threshold, starter.cooldown_hours) == (10, 48)

    def test_business_plan_is_continuous_and_realtime(self) -> None:
        business = PLAN_CATALOG[PlanTier.business]
        assert business.website_quota == 10
        assert business.scan_frequency is FrequencyClass.continuous
        assert business.alert_mode is AlertMode.realtime
        assert (business.drop_threshold, business.cooldown_hours) == (5, 12)

    def test_agency_plan_is_unbounded(self) -> None:
        agency = PLAN_CATALOG[PlanTier.agency]
        assert agency.website_quota is None
        assert (agency.drop_threshold, agency.cooldown_hours) == (1, 2)

    def test_catalog_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            PLAN_CATALOG[PlanTier.free] = PLAN_CATALOG[PlanTier.agency]  # type: ignore[index]


# ---------------------------------------------------------------------------
# PlanConfig invariants
# ---------------------------------------------------------------------------


def _config(**overrides) -> PlanConfig:
    values = dict(
        tier=PlanTier.business,
        website_quota=10,
        scan_frequency=FrequencyClass.daily,
        automated_scans=True,
        scan_interval_minutes=1440,
        alerts_enabled=True,
        alert_mode=AlertMode.realtime,
        drop_threshold=5,
        cooldown_hours=12,
    )
    values.update(overrides)
    return PlanConfig(**values)


class TestPlanConfigInvariants:
    def test_mode_none_with_alerts_enabled_rejected(self) -> None:
        with pytest.raises(ValueError, match="alert mode 'none'"):
            _config(alert_mode=AlertMode.none, alerts_enabled=True)

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ValueError, match="drop_threshold"):
            _config(drop_threshold=-1)

    def test_negative_cooldown_rejected(self) -> None:
        with pytest.raises(ValueError, match="cooldown_hours"):
            _config(cooldown_hours=-1)

    def test_zero_threshold_and_cooldown_allowed(self) -> None:
        cfg = _config(drop_threshold=0, cooldown_hours=0)
        assert cfg.drop_threshold == 0


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class TestResolvePlan:
    @pytest.mark.parametrize("raw", ["business", "BUSINESS", "  Business  ", PlanTier.business])
    def test_known_values_resolve(self, raw) -> None:
        assert resolve_tier(raw) is PlanTier.business

    def test_none_resolves_to_free_without_warning(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="driftwatch.plans"):
            assert resolve_tier(None) is PlanTier.free
        assert caplog.records == []

    @pytest.mark.parametrize("raw", ["enterprise", "", 42, "agency-plus"])
    def test_unknown_values_resolve_to_free_with_warning(self, raw, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="driftwatch.plans"):
            plan = resolve_plan(raw)
        assert plan.tier is PlanTier.free
        assert plan.automated_scans is False
        assert any("free" in r.getMessage().lower() for r in caplog.records)


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


class TestQuota:
    def test_free_plan_allows_one_website(self) -> None:
        free = PLAN_CATALOG[PlanTier.free]
        assert can_add_website(free, 0) is True
        assert can_add_website(free, 1) is False

    def test_unbounded_quota_always_allows(self) -> None:
        assert can_add_website(PLAN_CATALOG[PlanTier.agency], 10_000) is True

    def test_ensure_raises_quota_exceeded(self) -> None:
        business = PLAN_CATALOG[PlanTier.business]
        ensure_can_add_website(business, 9)
        with pytest.raises(QuotaExceededError) as exc_info:
            ensure_can_add_website(business, 10)
        assert exc_info.value.current_count == 10
        assert "business" in str(exc_info.value)
