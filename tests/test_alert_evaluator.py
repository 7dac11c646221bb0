"""Unit tests for compliance-drop evaluation in core/alerts.py.

Covers:
- Drops beyond the plan threshold fire, with warning/critical severity
- The threshold itself is exclusive (a drop of exactly N points does not fire)
- Rises and flat scores never fire
- Threshold overrides: clamped to 1..50, ignored unless the plan enables alert settings
- admit() cooldown decisions
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.alerts import admit, clamp_threshold_override, effective_drop_threshold, evaluate_drop
from core.models import COMPLIANCE_DROP, SEVERITY_CRITICAL, SEVERITY_WARNING
from core.plans import PLAN_CATALOG, PlanTier

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

BUSINESS = PLAN_CATALOG[PlanTier.business]
AGENCY = PLAN_CATALOG[PlanTier.agency]
STARTER = PLAN_CATALOG[PlanTier.starter]

# ---------------------------------------------------------------------------
# evaluate_drop
# ---------------------------------------------------------------------------


class TestEvaluateDrop:
    def test_business_ten_point_drop_is_warning(self) -> None:
        alert = evaluate_drop(70, 80, BUSINESS.drop_threshold)
        assert alert is not None
        assert alert.delta == -10
        assert alert.severity == SEVERITY_WARNING
        assert alert.category == COMPLIANCE_DROP
        assert (alert.previous_score, alert.current_score) == (80, 70)

    def test_agency_sixteen_point_drop_is_critical(self) -> None:
        alert = evaluate_drop(74, 90, AGENCY.drop_threshold)
        assert alert is not None
        assert alert.delta == -16
        assert alert.severity == SEVERITY_CRITICAL

    def test_fifteen_point_drop_is_critical(self) -> None:
        assert evaluate_drop(60, 75, 5).severity == SEVERITY_CRITICAL

    def test_fourteen_point_drop_is_warning(self) -> None:
        assert evaluate_drop(61, 75, 5).severity == SEVERITY_WARNING

    def test_drop_equal_to_threshold_does_not_fire(self) -> None:
        assert evaluate_drop(75, 80, BUSINESS.drop_threshold) is None

    def test_drop_one_past_threshold_fires(self) -> None:
        assert evaluate_drop(74, 80, BUSINESS.drop_threshold) is not None

    @pytest.mark.parametrize("current,previous", [(80, 80), (90, 80), (100, 0)])
    def test_rise_or_flat_never_fires(self, current, previous) -> None:
        assert evaluate_drop(current, previous, 0) is None

    def test_zero_threshold_fires_on_any_drop(self) -> None:
        assert evaluate_drop(79, 80, 0) is not None


# ---------------------------------------------------------------------------
# Threshold overrides
# ---------------------------------------------------------------------------


class TestThresholdOverride:
    @pytest.mark.parametrize("raw,expected", [(0, 1), (-5, 1), (1, 1), (25, 25), (50, 50), (99, 50)])
    def test_clamp(self, raw, expected) -> None:
        assert clamp_threshold_override(raw) == expected

    def test_no_override_uses_plan_default(self) -> None:
        assert effective_drop_threshold(BUSINESS, None) == 5

    def test_override_applies_on_enabled_plan(self) -> None:
        assert effective_drop_threshold(BUSINESS, 20) == 20

    def test_override_is_clamped(self) -> None:
        assert effective_drop_threshold(AGENCY, 500) == 50

    def test_override_ignored_when_alert_settings_disabled(self) -> None:
        assert effective_drop_threshold(STARTER, 1) == STARTER.drop_threshold


# ---------------------------------------------------------------------------
# admit
# ---------------------------------------------------------------------------


class TestAdmit:
    def setup_method(self) -> None:
        self.candidate = evaluate_drop(70, 80, 5)

    def test_first_alert_dispatches(self) -> None:
        decision = admit(self.candidate, None, 12, NOW)
        assert decision.dispatch is True
        assert decision.reason == "first_alert"

    def test_within_cooldown_is_suppressed(self) -> None:
        decision = admit(self.candidate, NOW - timedelta(hours=11, minutes=59), 12, NOW)
        assert decision.dispatch is False
        assert decision.reason == "cooling_down"

    def test_cooldown_boundary_dispatches(self) -> None:
        decision = admit(self.candidate, NOW - timedelta(hours=12), 12, NOW)
        assert decision.dispatch is True
        assert decision.reason == "cooldown_elapsed"

    def test_zero_cooldown_always_dispatches(self) -> None:
        assert admit(self.candidate, NOW, 0, NOW).dispatch is True
