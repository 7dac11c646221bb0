"""
monitor/store.py -- SQLAlchemy-backed persistence layer for DriftWatch.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in monitor/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. MonitorStore is the repository; the
_row_to_* functions are the mappers. Schedulers and route handlers never
touch SQL directly.

Concurrency: several scheduler processes may run against the same database.
The database is the synchronization primitive, never an in-process lock.
Every transition that must happen at most once is a single conditional
statement (or one transaction around several):

  claim_website()  -- UPDATE websites ... WHERE last_scan_at IS <value read>
                      AND no pending job exists, then INSERT the pending job.
                      A partial unique index backs the "one pending job per
                      website" rule.
  record_alert()   -- UPDATE snapshots SET evaluated=1 WHERE evaluated=0,
                      then compare-and-set on alert_cooldowns.last_alert_at.
  claim_digest()   -- INSERT into digest_runs, unique on (user, window).

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so string order equals time order in SQL comparisons.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = MonitorStore()                               # SQLite default
    store = MonitorStore("postgresql://user:pw@host/db") # PostgreSQL
    user_id = store.create_user(User(email="a@b.c", plan="business"))
    website_id = store.create_website(Website(user_id=user_id, url="https://a.example"))
    job = store.claim_website(website_id, None, now)
    store.close()
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.alerts import admit
from core.cadence import as_utc
from core.models import ALERT_CATEGORIES, ComplianceDropAlert, CooldownDecision
from monitor.models import AlertRecord, ComplianceSnapshot, ScanJob, User, Website

logger = logging.getLogger("driftwatch.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'driftwatch.db'}"

STALE_JOB_ERROR = "stale_pending_timeout"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320)),
    Column("plan", String(30), nullable=False, server_default="free"),
    Column("alert_drop_threshold", Integer),
    Column("created_at", String(32), nullable=False),
)

_websites = Table(
    "websites",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("url", String(2048), nullable=False),
    Column("monitored", Integer, nullable=False, server_default="1"),  # boolean stored as 0/1
    Column("last_scan_at", String(32)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "url", name="uq_user_url"),
)

_scan_jobs = Table(
    "scan_jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("website_id", Integer, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("triggered_at", String(32), nullable=False),
    Column("previous_scan_at", String(32)),
    Column("finished_at", String(32)),
    Column("error", Text),
)

# At most one pending job per website, whatever the claim condition says.
Index(
    "uq_scan_jobs_one_pending",
    _scan_jobs.c.website_id,
    unique=True,
    sqlite_where=text("status = 'pending'"),
    postgresql_where=text("status = 'pending'"),
)

_snapshots = Table(
    "compliance_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("website_id", Integer, nullable=False),
    Column("score", Integer, nullable=False),
    Column("taken_at", String(32), nullable=False),
    Column("evaluated", Integer, nullable=False, server_default="0"),
)

_cooldowns = Table(
    "alert_cooldowns",
    metadata,
    Column("website_id", Integer, nullable=False),
    Column("category", String(50), nullable=False),
    Column("last_alert_at", String(32)),
    PrimaryKeyConstraint("website_id", "category", name="pk_alert_cooldowns"),
)

_alerts = Table(
    "compliance_alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("website_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("snapshot_id", Integer, nullable=False, unique=True),
    Column("category", String(50), nullable=False),
    Column("previous_score", Integer, nullable=False),
    Column("current_score", Integer, nullable=False),
    Column("delta", Integer, nullable=False),
    Column("severity", String(20), nullable=False),
    Column("suppressed", Integer, nullable=False, server_default="0"),
    Column("acknowledged", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_digest_runs = Table(
    "digest_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("window_start", String(32), nullable=False),
    Column("claimed_at", String(32), nullable=False),
    UniqueConstraint("user_id", "window_start", name="uq_digest_user_window"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="microseconds")


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return _iso(value) if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp. Naive values are treated as UTC."""
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _equals_or_null(column, value: Optional[str]):
    """WHERE clause for 'column still holds the value we read' (NULL-safe)."""
    return column.is_(None) if value is None else column == value


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block the claim writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MonitorStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # The scan scheduler's worker threads and FastAPI's thread pool
            # share the engine's pool across threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    plan=user.plan,
                    alert_drop_threshold=user.alert_drop_threshold,
                    created_at=_iso(user.created_at or _now()),
                )
            )
            return result.inserted_primary_key[0]

    def get_user(self, user_id: int) -> Optional[User]:
        """Fetch a single user by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by ID."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def set_alert_threshold(self, user_id: int, threshold: Optional[int]) -> bool:
        """Store the user's drop-threshold override. None clears it.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(alert_drop_threshold=threshold)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Websites
    # ------------------------------------------------------------------

    def _website_select(self):
        return select(*_websites.c, _users.c.plan.label("plan")).select_from(
            _websites.join(_users, _websites.c.user_id == _users.c.id)
        )

    def create_website(self, website: Website) -> int:
        """Insert a website and seed its cooldown rows. Returns the new ID.

        Raises sqlalchemy.exc.IntegrityError if the (user_id, url) pair
        already exists -- caller should catch and treat as a conflict.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _websites.insert().values(
                    user_id=website.user_id,
                    url=website.url,
                    monitored=1 if website.monitored else 0,
                    last_scan_at=_iso_or_none(website.last_scan_at),
                    created_at=_iso(website.created_at or _now()),
                )
            )
            website_id = result.inserted_primary_key[0]
            for category in ALERT_CATEGORIES:
                conn.execute(_cooldowns.insert().values(website_id=website_id, category=category, last_alert_at=None))
        return website_id

    def get_website(self, website_id: int) -> Optional[Website]:
        """Fetch a website with its owner's plan. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._website_select().where(_websites.c.id == website_id)).fetchone()
        return _row_to_website(row) if row is not None else None

    def count_websites(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(_websites).where(_websites.c.user_id == user_id)
            ).scalar_one()

    def list_monitored_websites(self) -> list[Website]:
        """Return every website with automation switched on, oldest scan first.

        Never-scanned websites sort first. Plan filtering happens in the
        scheduler so unknown plan values go through resolve_plan() once.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                self._website_select()
                .where(_websites.c.monitored == 1)
                .order_by(_websites.c.last_scan_at.is_not(None), _websites.c.last_scan_at, _websites.c.id)
            ).fetchall()
        return [_row_to_website(r) for r in rows]

    def set_monitoring(self, website_id: int, monitored: bool) -> bool:
        """Pause or resume automation for a website. Returns False if not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _websites.update().where(_websites.c.id == website_id).values(monitored=1 if monitored else 0)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Scan claims
    # ------------------------------------------------------------------

    def claim_website(
        self, website_id: int, expected_last_scan_at: Optional[datetime], now: datetime
    ) -> Optional[ScanJob]:
        """Reserve a website for dispatch. Returns the pending ScanJob, or None.

        Succeeds only if last_scan_at still holds the value the caller read and
        no other pending job exists for the website. On success last_scan_at
        is advanced to now and a pending job is recorded, in one transaction.
        None means another scheduler pass got there first.
        """
        expected = _iso_or_none(expected_last_scan_at)
        now_iso = _iso(now)
        pending_exists = (
            select(_scan_jobs.c.id)
            .where((_scan_jobs.c.website_id == website_id) & (_scan_jobs.c.status == "pending"))
            .exists()
        )
        claim = (
            _websites.update()
            .where(
                (_websites.c.id == website_id)
                & _equals_or_null(_websites.c.last_scan_at, expected)
                & ~pending_exists
            )
            .values(last_scan_at=now_iso)
        )
        try:
            with self.engine.begin() as conn:
                if conn.execute(claim).rowcount != 1:
                    return None
                result = conn.execute(
                    _scan_jobs.insert().values(
                        website_id=website_id,
                        status="pending",
                        triggered_at=now_iso,
                        previous_scan_at=expected,
                    )
                )
                job_id = result.inserted_primary_key[0]
        except IntegrityError:
            # Partial unique index fired: a pending job appeared between the
            # UPDATE and the INSERT. The transaction was rolled back.
            return None
        return ScanJob(
            id=job_id,
            website_id=website_id,
            triggered_at=_parse(now_iso),
            status="pending",
            previous_scan_at=_parse(expected),
        )

    def confirm_dispatch(self, job_id: int, now: Optional[datetime] = None) -> bool:
        """Mark a pending job dispatched. The claim's last_scan_at becomes final."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _scan_jobs.update()
                .where((_scan_jobs.c.id == job_id) & (_scan_jobs.c.status == "pending"))
                .values(status="dispatched", finished_at=_iso(now or _now()))
            )
        return result.rowcount > 0

    def release_claim(self, job: ScanJob, error: str, now: Optional[datetime] = None) -> None:
        """Roll back a claim after a failed dispatch.

        last_scan_at is restored only if it still holds this claim's value,
        so a later successful claim is never clobbered.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _websites.update()
                .where(
                    (_websites.c.id == job.website_id) & (_websites.c.last_scan_at == _iso(job.triggered_at))
                )
                .values(last_scan_at=_iso_or_none(job.previous_scan_at))
            )
            conn.execute(
                _scan_jobs.update()
                .where((_scan_jobs.c.id == job.id) & (_scan_jobs.c.status == "pending"))
                .values(status="failed", error=error[:500], finished_at=_iso(now or _now()))
            )

    def fail_stale_scan_jobs(self, older_than: datetime, now: Optional[datetime] = None) -> int:
        """Fail pending jobs triggered before older_than. Returns rows changed.

        A job stays pending only while its dispatch call is in flight, so an
        old pending job means the scheduler process died mid-dispatch. The
        website keeps the advanced last_scan_at: whether the scanner received
        the request is unknown, and re-dispatching early is the worse outcome.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _scan_jobs.update()
                .where((_scan_jobs.c.status == "pending") & (_scan_jobs.c.triggered_at < _iso(older_than)))
                .values(status="failed", error=STALE_JOB_ERROR, finished_at=_iso(now or _now()))
            )
        return result.rowcount

    def list_scan_jobs(self, website_id: int) -> list[ScanJob]:
        """Return all scan jobs for a website, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _scan_jobs.select().where(_scan_jobs.c.website_id == website_id).order_by(_scan_jobs.c.id)
            ).fetchall()
        return [_row_to_scan_job(r) for r in rows]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def add_snapshot(self, snapshot: ComplianceSnapshot) -> ComplianceSnapshot:
        """Append a snapshot and return it with its ID assigned."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _snapshots.insert().values(
                    website_id=snapshot.website_id,
                    score=snapshot.score,
                    taken_at=_iso(snapshot.taken_at),
                    evaluated=1 if snapshot.evaluated else 0,
                )
            )
            snapshot_id = result.inserted_primary_key[0]
        return ComplianceSnapshot(
            id=snapshot_id,
            website_id=snapshot.website_id,
            score=snapshot.score,
            taken_at=as_utc(snapshot.taken_at),
            evaluated=snapshot.evaluated,
        )

    def get_previous_snapshot(self, snapshot: ComplianceSnapshot) -> Optional[ComplianceSnapshot]:
        """Return the website's snapshot immediately before this one, if any."""
        taken = _iso(snapshot.taken_at)
        with self.engine.connect() as conn:
            row = conn.execute(
                _snapshots.select()
                .where(
                    (_snapshots.c.website_id == snapshot.website_id)
                    & (_snapshots.c.id != snapshot.id)
                    & or_(
                        _snapshots.c.taken_at < taken,
                        (_snapshots.c.taken_at == taken) & (_snapshots.c.id < snapshot.id),
                    )
                )
                .order_by(_snapshots.c.taken_at.desc(), _snapshots.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_snapshot(row) if row is not None else None

    def list_unevaluated_snapshots(self, limit: int = 500) -> list[ComplianceSnapshot]:
        """Return snapshots still waiting for alert evaluation, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _snapshots.select()
                .where(_snapshots.c.evaluated == 0)
                .order_by(_snapshots.c.taken_at, _snapshots.c.id)
                .limit(limit)
            ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def mark_snapshot_evaluated(self, snapshot_id: int) -> bool:
        """Flip evaluated for a snapshot that produced no alert.

        Returns False if another pass already evaluated it.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _snapshots.update()
                .where((_snapshots.c.id == snapshot_id) & (_snapshots.c.evaluated == 0))
                .values(evaluated=1)
            )
        return result.rowcount == 1

    def list_user_snapshots(self, user_id: int, since: datetime, until: datetime) -> list[dict[str, Any]]:
        """Return the user's snapshots in [since, until], newest first, with website URL."""
        stmt = (
            select(_snapshots.c.score, _snapshots.c.taken_at, _websites.c.url, _websites.c.id.label("website_id"))
            .select_from(_snapshots.join(_websites, _snapshots.c.website_id == _websites.c.id))
            .where(
                (_websites.c.user_id == user_id)
                & (_snapshots.c.taken_at >= _iso(since))
                & (_snapshots.c.taken_at <= _iso(until))
            )
            .order_by(_snapshots.c.taken_at.desc(), _snapshots.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {"score": row.score, "taken_at": _parse(row.taken_at), "url": row.url, "website_id": row.website_id}
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _ensure_cooldown_row(self, website_id: int, category: str) -> None:
        """Create the (website, category) cooldown row if an older website lacks it."""
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_cooldowns.c.website_id).where(
                    (_cooldowns.c.website_id == website_id) & (_cooldowns.c.category == category)
                )
            ).fetchone()
        if exists is not None:
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(_cooldowns.insert().values(website_id=website_id, category=category, last_alert_at=None))
        except IntegrityError:
            pass  # seeded concurrently -- the row exists either way

    def get_last_alert_at(self, website_id: int, category: str) -> Optional[datetime]:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(_cooldowns.c.last_alert_at).where(
                    (_cooldowns.c.website_id == website_id) & (_cooldowns.c.category == category)
                )
            ).scalar()
        return _parse(value)

    def record_alert(
        self,
        website: Website,
        snapshot: ComplianceSnapshot,
        candidate: ComplianceDropAlert,
        cooldown_hours: int,
        now: datetime,
    ) -> Optional[AlertRecord]:
        """Gate a qualifying drop through the cooldown and append its AlertRecord.

        One transaction:
          1. claim the snapshot's evaluation (evaluated 0 -> 1); if another
             pass already evaluated it, return None and write nothing
          2. read last_alert_at and ask core.alerts.admit()
          3. if admitted, compare-and-set last_alert_at to now; losing that
             race means a concurrent alert was just admitted, so this one is
             suppressed instead
          4. insert the AlertRecord with suppressed set accordingly

        last_alert_at never moves for a suppressed alert.
        """
        self._ensure_cooldown_row(website.id, candidate.category)
        now_iso = _iso(now)
        cooldown_key = (_cooldowns.c.website_id == website.id) & (_cooldowns.c.category == candidate.category)

        with self.engine.begin() as conn:
            claimed = conn.execute(
                _snapshots.update()
                .where((_snapshots.c.id == snapshot.id) & (_snapshots.c.evaluated == 0))
                .values(evaluated=1)
            ).rowcount
            if claimed != 1:
                return None

            last_raw = conn.execute(select(_cooldowns.c.last_alert_at).where(cooldown_key)).scalar()
            decision = admit(candidate, _parse(last_raw), cooldown_hours, now)
            if decision.dispatch:
                moved = conn.execute(
                    _cooldowns.update()
                    .where(cooldown_key & _equals_or_null(_cooldowns.c.last_alert_at, last_raw))
                    .values(last_alert_at=now_iso)
                ).rowcount
                if moved != 1:
                    decision = CooldownDecision(dispatch=False, reason="lost_race")

            result = conn.execute(
                _alerts.insert().values(
                    website_id=website.id,
                    user_id=website.user_id,
                    snapshot_id=snapshot.id,
                    category=candidate.category,
                    previous_score=candidate.previous_score,
                    current_score=candidate.current_score,
                    delta=candidate.delta,
                    severity=candidate.severity,
                    suppressed=0 if decision.dispatch else 1,
                    acknowledged=0,
                    created_at=now_iso,
                )
            )
            alert_id = result.inserted_primary_key[0]

        logger.info(
            "Alert %s for website %s: delta=%d severity=%s suppressed=%s (%s)",
            alert_id,
            website.id,
            candidate.delta,
            candidate.severity,
            not decision.dispatch,
            decision.reason,
        )
        return AlertRecord(
            id=alert_id,
            website_id=website.id,
            user_id=website.user_id,
            snapshot_id=snapshot.id,
            category=candidate.category,
            previous_score=candidate.previous_score,
            current_score=candidate.current_score,
            delta=candidate.delta,
            severity=candidate.severity,
            created_at=_parse(now_iso),
            suppressed=not decision.dispatch,
            acknowledged=False,
        )

    def get_alert(self, alert_id: int) -> Optional[AlertRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(_alerts.select().where(_alerts.c.id == alert_id)).fetchone()
        return _row_to_alert(row) if row is not None else None

    def list_alerts(
        self,
        website_id: Optional[int] = None,
        user_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        suppressed: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[AlertRecord]:
        """Return alert records newest first, optionally filtered.

        Filters apply before limit, so suppressed=False returns the newest
        admitted alerts even when newer suppressed ones exist.
        """
        stmt = _alerts.select()
        if website_id is not None:
            stmt = stmt.where(_alerts.c.website_id == website_id)
        if user_id is not None:
            stmt = stmt.where(_alerts.c.user_id == user_id)
        if since is not None:
            stmt = stmt.where(_alerts.c.created_at >= _iso(since))
        if until is not None:
            stmt = stmt.where(_alerts.c.created_at <= _iso(until))
        if suppressed is not None:
            stmt = stmt.where(_alerts.c.suppressed == (1 if suppressed else 0))
        stmt = stmt.order_by(_alerts.c.created_at.desc(), _alerts.c.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_alert(r) for r in rows]

    def acknowledge_alert(self, alert_id: int) -> bool:
        """Set acknowledged on an alert. Returns False if alert_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(_alerts.update().where(_alerts.c.id == alert_id).values(acknowledged=1))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Digest runs
    # ------------------------------------------------------------------

    def claim_digest(self, user_id: int, window_start: datetime, now: datetime) -> bool:
        """Mark a user processed for a digest window. False if already marked."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _digest_runs.insert().values(
                        user_id=user_id,
                        window_start=_iso(window_start),
                        claimed_at=_iso(now),
                    )
                )
        except IntegrityError:
            return False
        return True

    def release_digest(self, user_id: int, window_start: datetime) -> None:
        """Undo claim_digest() after a failed send so the next run retries."""
        with self.engine.begin() as conn:
            conn.execute(
                _digest_runs.delete().where(
                    (_digest_runs.c.user_id == user_id) & (_digest_runs.c.window_start == _iso(window_start))
                )
            )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        plan=row.plan,
        alert_drop_threshold=row.alert_drop_threshold,
        created_at=_parse(row.created_at),
    )


def _row_to_website(row) -> Website:
    return Website(
        id=row.id,
        user_id=row.user_id,
        url=row.url,
        plan=row.plan,
        monitored=bool(row.monitored),
        last_scan_at=_parse(row.last_scan_at),
        created_at=_parse(row.created_at),
    )


def _row_to_scan_job(row) -> ScanJob:
    return ScanJob(
        id=row.id,
        website_id=row.website_id,
        status=row.status,
        triggered_at=_parse(row.triggered_at),
        previous_scan_at=_parse(row.previous_scan_at),
        error=row.error,
    )


def _row_to_snapshot(row) -> ComplianceSnapshot:
    return ComplianceSnapshot(
        id=row.id,
        website_id=row.website_id,
        score=row.score,
        taken_at=_parse(row.taken_at),
        evaluated=bool(row.evaluated),
    )


def _row_to_alert(row) -> AlertRecord:
    return AlertRecord(
        id=row.id,
        website_id=row.website_id,
        user_id=row.user_id,
        snapshot_id=row.snapshot_id,
        category=row.category,
        previous_score=row.previous_score,
        current_score=row.current_score,
        delta=row.delta,
        severity=row.severity,
        created_at=_parse(row.created_at),
        suppressed=bool(row.suppressed),
        acknowledged=bool(row.acknowledged),
    )
