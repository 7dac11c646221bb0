"""
jobs/scans.py -- Periodic scan-trigger driver.

run_due_website_scans() is invoked from outside (cron route, CLI) and runs a
single pass to completion. Overlapping passes are expected: duplicate timer
fires, retries, several app instances. Correctness under overlap comes from
MonitorStore.claim_website(), never from anything held in this process.

Per website, one unit of work runs in the thread pool:

    claim -> dispatch -> confirm        (success)
    claim -> dispatch -> release        (failure / timeout / executor error)
    claim lost                          (conflict, skipped this pass)

trigger_manual_scan() runs the same unit for one website on request, gated
by the plan cadence instead of the automation flag.

A unit is never split: once a claim succeeds, the same worker either
confirms or releases it. Cancelling a pass only cancels units that have
not started, so unprocessed websites stay untouched and eligible.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from core.cadence import as_utc, ensure_scan_allowed, is_scan_due
from core.dispatch import ScanExecutor
from core.models import ScanRunResult
from core.plans import resolve_plan
from monitor.models import Website
from monitor.store import MonitorStore

logger = logging.getLogger("driftwatch.scheduler")

DISPATCHED = "dispatched"
CONFLICT = "conflict"
FAILED = "failed"


class ScanTriggerScheduler:
    def __init__(
        self,
        store: MonitorStore,
        executor: ScanExecutor,
        max_workers: int = 4,
        claim_window: timedelta = timedelta(minutes=10),
        stale_after: timedelta = timedelta(minutes=60),
    ) -> None:
        self.store = store
        self.executor = executor
        self.max_workers = max_workers
        self.claim_window = claim_window
        self.stale_after = stale_after

    def is_eligible(self, website: Website, now: datetime) -> bool:
        """Return True if the scheduler should try to claim this website now.

        Three gates, all re-evaluated on every pass from fresh data:
          - the owner's plan has automated scans (unknown plans resolve to free)
          - the plan's cadence says a scan is due
          - the last scan is older than the claim window, which is what
            spaces out "continuous" websites and keeps an overlapping pass
            from picking up a website another pass just dispatched
        """
        plan = resolve_plan(website.plan)
        if not plan.automated_scans:
            return False
        if not is_scan_due(plan.scan_frequency, website.last_scan_at, now):
            return False
        if website.last_scan_at is not None and now - as_utc(website.last_scan_at) < self.claim_window:
            return False
        return True

    def run_due_website_scans(self, now: Optional[datetime] = None) -> ScanRunResult:
        """Claim and dispatch every due website once. Returns pass counts.

        Per-website failures are logged and counted; the pass continues.
        Failing to read the website list at all is a pass-level failure and
        propagates to the caller.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        result = ScanRunResult()

        result.cleaned_stale = self.store.fail_stale_scan_jobs(now - self.stale_after, now=now)
        if result.cleaned_stale:
            logger.warning("Failed %d stale pending scan job(s)", result.cleaned_stale)

        websites = self.store.list_monitored_websites()
        due = [w for w in websites if self.is_eligible(w, now)]
        result.due = len(due)
        if not due:
            logger.info("Scan pass: %d monitored website(s), none due", len(websites))
            return result

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="scan-dispatch")
        try:
            futures = [pool.submit(self._claim_and_dispatch, website, now) for website in due]
            for future in as_completed(futures):
                outcome = future.result()
                if outcome == DISPATCHED:
                    result.triggered += 1
                elif outcome == CONFLICT:
                    result.conflicts += 1
                else:
                    result.failed += 1
        finally:
            # Running units finish (claim and confirm/release stay paired);
            # queued ones are dropped and remain eligible for the next pass.
            pool.shutdown(wait=True, cancel_futures=True)

        logger.info(
            "Scan pass: due=%d triggered=%d conflicts=%d failed=%d",
            result.due,
            result.triggered,
            result.conflicts,
            result.failed,
        )
        return result

    def trigger_manual_scan(self, website_id: int, now: Optional[datetime] = None) -> str:
        """Claim and dispatch one website on request. Returns the outcome.

        The plan's cadence gates the request (ScanFrequencyLimitError), not
        its automation flag or the monitored switch, so a free-plan website
        gets its single scan this way. The claim is the same one the periodic
        pass takes, so a manual scan never overlaps a pending automated one.

        Raises LookupError for an unknown website.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        website = self.store.get_website(website_id)
        if website is None:
            raise LookupError(f"Website {website_id} not found")
        ensure_scan_allowed(resolve_plan(website.plan), website.last_scan_at, now)
        outcome = self._claim_and_dispatch(website, now)
        logger.info("Manual scan for website %s: %s", website_id, outcome)
        return outcome

    def _claim_and_dispatch(self, website: Website, now: datetime) -> str:
        try:
            job = self.store.claim_website(website.id, website.last_scan_at, now)
        except SQLAlchemyError:
            logger.exception("Claim failed for website %s", website.id)
            return FAILED
        if job is None:
            logger.info("Website %s already claimed by another pass -- skipping", website.id)
            return CONFLICT

        try:
            ok = self.executor.dispatch(website.id, website.url)
            error = None if ok else "dispatch_failed"
        except Exception as e:  # any executor error is a dispatch failure for this website only
            logger.exception("Scan executor raised for website %s", website.id)
            ok = False
            error = f"executor_error: {e}"

        try:
            if ok:
                self.store.confirm_dispatch(job.id, now=now)
            else:
                self.store.release_claim(job, error or "dispatch_failed", now=now)
        except SQLAlchemyError:
            # Job stays pending; fail_stale_scan_jobs() closes it on a later pass.
            logger.exception("Could not finalize scan job %s for website %s", job.id, website.id)

        if ok:
            return DISPATCHED
        logger.warning("Dispatch failed for website %s -- claim released, eligible next pass", website.id)
        return FAILED
