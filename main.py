#!/usr/bin/env python3
"""
DriftWatch -- plan-aware compliance monitoring passes for cron.

Usage:
  python main.py scans
  python main.py alerts
  python main.py digest
  python main.py digest --days 14
  python main.py scans --json

Each command runs one pass to completion and exits. Running the same command
twice at once is safe: the database claims keep overlapping passes from
dispatching, alerting or emailing twice.

Environment variables (or .env):
  CRON_SECRET, SERVICE_TOKEN   Required unless DEBUG=true.
  DATABASE_URL                 SQLAlchemy URL. Default: monitor/driftwatch.db
  SCANNER_URL                  Scan executor endpoint.
  RESEND_API_KEY               Required for digest delivery.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from core.config import Settings, get_settings
from core.dispatch import HttpScanExecutor
from core.mailer import ResendEmailSender
from jobs.alerts import ComplianceAlertService
from jobs.digest import WeeklyDigestScheduler, digest_window_start
from jobs.scans import ScanTriggerScheduler
from monitor.store import MonitorStore

logger = logging.getLogger("driftwatch.cli")


def _open_store(settings: Settings) -> MonitorStore:
    return MonitorStore(settings.database_url) if settings.database_url else MonitorStore()


def run_scans(settings: Settings, store: MonitorStore) -> dict:
    executor = HttpScanExecutor(
        settings.scanner_url,
        timeout=settings.scan_timeout_seconds,
        token=settings.scanner_token or None,
    )
    try:
        scheduler = ScanTriggerScheduler(
            store,
            executor,
            max_workers=settings.scan_max_workers,
            claim_window=timedelta(minutes=settings.scan_claim_window_minutes),
            stale_after=timedelta(minutes=settings.stale_scan_job_minutes),
        )
        return asdict(scheduler.run_due_website_scans())
    finally:
        executor.close()


def run_alerts(settings: Settings, store: MonitorStore) -> dict:
    return asdict(ComplianceAlertService(store).run_scheduled_alert_pass())


def run_digest(settings: Settings, store: MonitorStore, days: int = 7) -> dict:
    mailer = ResendEmailSender(settings.resend_api_key, settings.monitoring_email_from)
    try:
        digest = WeeklyDigestScheduler(store, mailer, app_name=settings.app_name, dashboard_url=settings.dashboard_url)
        now = datetime.now(timezone.utc)
        since = digest_window_start(now, days)
        result = asdict(digest.send_weekly_monitoring_emails(since=since, now=now))
        result["since"] = since.isoformat()
        return result
    finally:
        mailer.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="driftwatch",
        description="Run one DriftWatch monitoring pass.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py scans
  python main.py alerts
  python main.py digest --days 7
        """,
    )
    # --json is accepted after any command: python main.py scans --json
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--json",
        action="store_true",
        help="Print the pass result as JSON instead of a summary line",
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    sub.add_parser("scans", parents=[common], help="Claim and dispatch every website whose scan is due")
    sub.add_parser("alerts", parents=[common], help="Evaluate snapshots waiting for the scheduled alert pass")
    digest_parser = sub.add_parser("digest", parents=[common], help="Send weekly monitoring digests")
    digest_parser.add_argument(
        "--days",
        type=int,
        default=7,
        metavar="N",
        help="Activity window in days (default: 7)",
    )
    args = parser.parse_args(argv)

    if args.command == "digest" and args.days < 1:
        parser.error("--days must be at least 1")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    store = _open_store(settings)
    try:
        if args.command == "scans":
            result = run_scans(settings, store)
        elif args.command == "alerts":
            result = run_alerts(settings, store)
        else:
            result = run_digest(settings, store, days=args.days)
    except SQLAlchemyError:
        logger.exception("%s pass failed", args.command)
        print(f"  [!] {args.command} pass failed -- see log for details. Safe to retry.")
        return 1
    finally:
        store.close()

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print(f"{args.command}: " + " ".join(f"{k}={v}" for k, v in result.items()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
