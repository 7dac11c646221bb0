"""
jobs/alerts.py -- Compliance-drop alerting: snapshot intake and batch pass.

Flow for every new snapshot:

    previous snapshot + current snapshot
        -> core.alerts.evaluate_drop()     (does the drop qualify?)
        -> MonitorStore.record_alert()     (cooldown gate + append-only record)

When that flow runs depends on the owner's plan:

    realtime        -- immediately, in record_snapshot()
    scheduled_only  -- later, in run_scheduled_alert_pass()
    none            -- never; the snapshot is marked evaluated, no record

Every snapshot is evaluated at most once. The store flips its evaluated flag
with a conditional UPDATE, so an overlapping batch pass cannot alert twice.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from core.alerts import effective_drop_threshold, evaluate_drop
from core.cadence import as_utc
from core.models import AlertPassResult
from core.plans import AlertMode, resolve_plan
from monitor.models import AlertRecord, ComplianceSnapshot, Website
from monitor.store import MonitorStore

logger = logging.getLogger("driftwatch.alerts")


class ComplianceAlertService:
    def __init__(self, store: MonitorStore) -> None:
        self.store = store

    def record_snapshot(
        self, website_id: int, score: int, taken_at: Optional[datetime] = None, now: Optional[datetime] = None
    ) -> tuple[ComplianceSnapshot, Optional[AlertRecord]]:
        """Append a scanner-reported score and run realtime evaluation if the plan asks for it.

        Returns (snapshot, alert). alert is None when no evaluation ran or the
        drop did not qualify; a suppressed alert is still returned.

        Raises LookupError if the website does not exist and ValueError if the
        score is outside 0..100.
        """
        if not 0 <= score <= 100:
            raise ValueError(f"Compliance score must be within 0..100, got {score}")
        website = self.store.get_website(website_id)
        if website is None:
            raise LookupError(f"Website {website_id} not found")

        now = as_utc(now or datetime.now(timezone.utc))
        snapshot = self.store.add_snapshot(
            ComplianceSnapshot(website_id=website_id, score=score, taken_at=as_utc(taken_at or now))
        )

        plan = resolve_plan(website.plan)
        if plan.alert_mode is AlertMode.realtime:
            alert = self.evaluate_snapshot(website, snapshot, now)
            snapshot.evaluated = True
            return snapshot, alert
        if plan.alert_mode is AlertMode.none:
            self.store.mark_snapshot_evaluated(snapshot.id)
            snapshot.evaluated = True
        return snapshot, None

    def evaluate_snapshot(
        self, website: Website, snapshot: ComplianceSnapshot, now: datetime
    ) -> Optional[AlertRecord]:
        """Evaluate one snapshot against its predecessor and gate the result.

        Marks the snapshot evaluated in every outcome. Returns the AlertRecord
        if one was written.
        """
        plan = resolve_plan(website.plan)
        if not plan.alerting_active:
            self.store.mark_snapshot_evaluated(snapshot.id)
            return None

        previous = self.store.get_previous_snapshot(snapshot)
        if previous is None:
            self.store.mark_snapshot_evaluated(snapshot.id)
            return None

        owner = self.store.get_user(website.user_id)
        threshold = effective_drop_threshold(plan, owner.alert_drop_threshold if owner else None)
        candidate = evaluate_drop(snapshot.score, previous.score, threshold)
        if candidate is None:
            self.store.mark_snapshot_evaluated(snapshot.id)
            return None

        return self.store.record_alert(website, snapshot, candidate, plan.cooldown_hours, now)

    def run_scheduled_alert_pass(self, now: Optional[datetime] = None) -> AlertPassResult:
        """Evaluate every snapshot still waiting, oldest first.

        Picks up scheduled_only plans, and also any realtime
        snapshot whose intake evaluation never completed. One failing
        snapshot is logged and left for the next pass.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        result = AlertPassResult()
        websites: dict[int, Optional[Website]] = {}

        for snapshot in self.store.list_unevaluated_snapshots():
            if snapshot.website_id not in websites:
                websites[snapshot.website_id] = self.store.get_website(snapshot.website_id)
            website = websites[snapshot.website_id]
            if website is None:
                logger.warning("Snapshot %s references missing website %s", snapshot.id, snapshot.website_id)
                self.store.mark_snapshot_evaluated(snapshot.id)
                continue
            try:
                alert = self.evaluate_snapshot(website, snapshot, now)
            except SQLAlchemyError:
                logger.exception("Alert evaluation failed for snapshot %s", snapshot.id)
                continue
            result.evaluated += 1
            if alert is None:
                continue
            if alert.suppressed:
                result.suppressed += 1
            else:
                result.admitted += 1

        logger.info(
            "Alert pass: evaluated=%d admitted=%d suppressed=%d",
            result.evaluated,
            result.admitted,
            result.suppressed,
        )
        return result
