"""
tests/conftest.py -- Shared test fixtures for DriftWatch tests.

This module provides:
  - store: MonitorStore on a fresh file-backed SQLite DB per test
  - make_user / make_website: factories that seed the store
  - FakeExecutor / FakeMailer: in-process stand-ins for the scanner and Resend
  - api_client: TestClient wired to the real app with a patched lifespan

Design: file-backed SQLite under tmp_path (not :memory:) because the scan
scheduler dispatches from worker threads and TestClient runs sync handlers
in a thread pool. Every connection must see the same database.

DEBUG, CRON_SECRET and SERVICE_TOKEN must be set before any core/api import
so get_settings() validates without a real .env file.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

# CRITICAL: set before any core/api import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CRON_SECRET", "test-cron-secret-0123456789abcdef0123456789")
os.environ.setdefault("SERVICE_TOKEN", "test-service-token-0123456789abcdef01234567")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.config import get_settings
from core.models import DigestPayload
from jobs.alerts import ComplianceAlertService
from jobs.digest import WeeklyDigestScheduler
from jobs.scans import ScanTriggerScheduler
from monitor.models import User, Website
from monitor.store import MonitorStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeExecutor:
    """Scan executor that records calls. result may be a bool or an exception to raise."""

    def __init__(self, result: object = True, on_dispatch: Optional[Callable[[int], None]] = None) -> None:
        self.result = result
        self.on_dispatch = on_dispatch
        self.calls: list[tuple[int, str]] = []
        self._lock = threading.Lock()

    def dispatch(self, website_id: int, url: str) -> bool:
        with self._lock:
            self.calls.append((website_id, url))
        if self.on_dispatch is not None:
            self.on_dispatch(website_id)
        if isinstance(self.result, BaseException):
            raise self.result
        return bool(self.result)

    def close(self) -> None:
        pass


@dataclass
class SentEmail:
    user_id: int
    payload: DigestPayload


class FakeMailer:
    """Email sender that records payloads. result may be a bool or an exception to raise."""

    def __init__(self, result: object = True) -> None:
        self.result = result
        self.sent: list[SentEmail] = []

    def send(self, user_id: int, payload: DigestPayload) -> bool:
        if isinstance(self.result, BaseException):
            raise self.result
        if self.result:
            self.sent.append(SentEmail(user_id, payload))
        return bool(self.result)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[MonitorStore, None, None]:
    s = MonitorStore(f"sqlite:///{tmp_path / 'driftwatch-test.db'}")
    yield s
    s.close()


@pytest.fixture
def make_user(store: MonitorStore) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(plan: str = "business", email: Optional[str] = "default", threshold: Optional[int] = None) -> User:
        counter["n"] += 1
        if email == "default":
            email = f"user{counter['n']}@example.com"
        user_id = store.create_user(User(email=email, plan=plan, alert_drop_threshold=threshold))
        return store.get_user(user_id)

    return _make


@pytest.fixture
def make_website(store: MonitorStore, make_user) -> Callable[..., Website]:
    counter = {"n": 0}

    def _make(
        plan: str = "business",
        last_scan_at: Optional[datetime] = None,
        monitored: bool = True,
        user: Optional[User] = None,
    ) -> Website:
        counter["n"] += 1
        owner = user or make_user(plan=plan)
        website_id = store.create_website(
            Website(
                user_id=owner.id,
                url=f"https://site{counter['n']}.example.com",
                monitored=monitored,
                last_scan_at=last_scan_at,
            )
        )
        return store.get_website(website_id)

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: MonitorStore
    executor: FakeExecutor
    mailer: FakeMailer

    @property
    def cron_params(self) -> dict[str, str]:
        return {"secret": get_settings().cron_secret}

    @property
    def service_headers(self) -> dict[str, str]:
        return {"X-Service-Token": get_settings().service_token}


def _patch_lifespan(store: MonitorStore, executor: FakeExecutor, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and fakes into app.state so routes never touch the
    default database file or make outbound HTTP calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.scan_executor = executor
        app.state.mailer = mailer
        app.state.scan_scheduler = ScanTriggerScheduler(store, executor, max_workers=2)
        app.state.alert_service = ComplianceAlertService(store)
        app.state.digest_scheduler = WeeklyDigestScheduler(
            store, mailer, app_name="DriftWatch", dashboard_url="https://app.example.com/dashboard"
        )
        yield

    return test_lifespan


@pytest.fixture
def api_client(store: MonitorStore) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext around a TestClient on the real app.

    The limiter's in-memory counters are reset so earlier tests never push a
    route over its limit.
    """
    executor = FakeExecutor()
    mailer = FakeMailer()
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store, executor, mailer)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiContext(client=client, store=store, executor=executor, mailer=mailer)
