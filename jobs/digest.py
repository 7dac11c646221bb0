"""
jobs/digest.py -- Weekly monitoring digest.

One pass walks every user, keeps those whose plan has alerting active and
who have an email address, and sends one plain-text summary to each user
with activity (snapshots or alerts) in [since, now].

Idempotency: before sending, the pass claims (user, since) in digest_runs.
A re-run for the same window, or an overlapping run, finds the claim and
skips the user. A failed send releases the claim so the next run retries.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from core.cadence import as_utc
from core.mailer import EmailSender
from core.models import DigestPayload, DigestRunResult
from core.plans import resolve_plan
from monitor.models import AlertRecord, User
from monitor.store import MonitorStore

logger = logging.getLogger("driftwatch.digest")

DIGEST_PERIOD = timedelta(days=7)
_MAX_LISTED_ALERTS = 3


def digest_window_start(now: datetime, days: int = 7) -> datetime:
    """Return the window start for a digest covering the last `days` days.

    Truncated to UTC midnight: every invocation on the same day claims the
    same (user, window_start) key.
    """
    start = as_utc(now) - timedelta(days=days)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def compose_digest(
    user: User,
    website_count: int,
    snapshots: list[dict[str, Any]],
    alerts: list[AlertRecord],
    app_name: str,
    dashboard_url: str,
    period_days: int = 7,
) -> DigestPayload:
    """Build the digest email for one user. snapshots and alerts are newest first."""
    scores = [s["score"] for s in snapshots if isinstance(s.get("score"), int)]
    avg_score = round(sum(scores) / len(scores)) if scores else None

    lowest_line = "None"
    if scores:
        worst = min((s for s in snapshots if isinstance(s.get("score"), int)), key=lambda s: s["score"])
        lowest_line = f"{worst['url']} (score {worst['score']}/100)"

    alert_count = len(alerts)
    alert_line = (
        f"{alert_count} compliance alert{'' if alert_count == 1 else 's'} triggered"
        if alert_count
        else "No new compliance alerts"
    )

    lines = [
        "Hi there,",
        "",
        f"Here is your weekly {app_name} monitoring summary for the last {period_days} days.",
        "",
        f"Plan: {resolve_plan(user.plan).tier.value}",
        f"Websites monitored: {website_count}",
        f"Scans run: {len(snapshots)}",
        f"Average score: {f'{avg_score}/100' if avg_score is not None else 'No recent scores'}",
        f"Lowest scoring site: {lowest_line}",
        alert_line + ".",
        "",
    ]
    if alerts:
        lines.append("Recent alerts:")
        for alert in alerts[:_MAX_LISTED_ALERTS]:
            when = alert.created_at.date().isoformat()
            lines.append(
                f"- [{when}] {alert.severity.upper()} drop of {alert.delta} points "
                f"(from {alert.previous_score} to {alert.current_score})"
            )
        lines.append("")
    lines.append(f"View full details and recommendations in your dashboard: {dashboard_url}")
    lines.append("")
    lines.append("You are receiving this because monitoring is enabled for your plan.")
    lines.append(f"Thanks for using {app_name}.")

    return DigestPayload(
        to=user.email or "",
        subject=f"Your weekly {app_name} monitoring summary",
        text="\n".join(lines),
    )


class WeeklyDigestScheduler:
    def __init__(
        self,
        store: MonitorStore,
        mailer: EmailSender,
        app_name: str = "DriftWatch",
        dashboard_url: str = "",
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.app_name = app_name
        self.dashboard_url = dashboard_url

    def send_weekly_monitoring_emails(
        self, since: Optional[datetime] = None, now: Optional[datetime] = None
    ) -> DigestRunResult:
        """Send digests for activity in [since, now]. since defaults to
        digest_window_start(now).

        processed_users counts every eligible user looked at; emailed_users
        counts only users whose email the sender accepted during this run.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        since = as_utc(since) if since is not None else digest_window_start(now, DIGEST_PERIOD.days)
        period_days = max(1, (now - since).days)
        result = DigestRunResult()

        for user in self.store.list_users():
            plan = resolve_plan(user.plan)
            if not plan.alerting_active:
                continue
            result.processed_users += 1
            if not user.email:
                logger.info("User %s has no email address -- digest skipped", user.id)
                continue

            snapshots = self.store.list_user_snapshots(user.id, since, now)
            alerts = self.store.list_alerts(user_id=user.id, since=since, until=now)
            if not snapshots and not alerts:
                continue

            if not self.store.claim_digest(user.id, since, now):
                logger.info("Digest for user %s already processed for window %s", user.id, since.isoformat())
                continue

            payload = compose_digest(
                user,
                website_count=self.store.count_websites(user.id),
                snapshots=snapshots,
                alerts=alerts,
                app_name=self.app_name,
                dashboard_url=self.dashboard_url,
                period_days=period_days,
            )
            try:
                sent = self.mailer.send(user.id, payload)
            except Exception:  # a sender bug must not cost the remaining users their digest
                logger.exception("Email sender raised for user %s", user.id)
                sent = False

            if not sent:
                self.store.release_digest(user.id, since)
                logger.warning("Digest not delivered for user %s -- will retry on next run", user.id)
                continue
            result.emailed_users += 1

        logger.info(
            "Digest pass: processed=%d emailed=%d", result.processed_users, result.emailed_users
        )
        return result
