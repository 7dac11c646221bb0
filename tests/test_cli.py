"""Tests for the cron CLI in main.py.

Covers:
- Each subcommand runs one pass against the configured database
- --json prints the pass result as JSON
- digest --days validation
- A store failure exits non-zero instead of raising
"""

import json

import pytest
from conftest import FakeExecutor, FakeMailer
from sqlalchemy.exc import OperationalError

import main as cli
from core.config import Settings
from monitor.models import User, Website
from monitor.store import MonitorStore


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a temp database and replace outbound clients with fakes."""
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    settings = Settings(
        _env_file=None,
        debug=False,
        cron_secret="c" * 40,
        service_token="t" * 40,
        database_url=db_url,
    )
    executor = FakeExecutor()
    mailer = FakeMailer()
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "HttpScanExecutor", lambda *args, **kwargs: executor)
    monkeypatch.setattr(cli, "ResendEmailSender", lambda *args, **kwargs: mailer)

    seed = MonitorStore(db_url)
    user_id = seed.create_user(User(email="cli@example.com", plan="business"))
    seed.create_website(Website(user_id=user_id, url="https://cli.example.com"))
    seed.close()
    return db_url, executor, mailer


def test_scans_command_dispatches(cli_env, capsys) -> None:
    _, executor, _ = cli_env
    assert cli.main(["scans", "--json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["triggered"] == 1
    assert len(executor.calls) == 1


def test_alerts_command_prints_summary(cli_env, capsys) -> None:
    assert cli.main(["alerts"]) == 0
    assert capsys.readouterr().out.startswith("alerts: evaluated=0")


def test_digest_command_runs(cli_env, capsys) -> None:
    assert cli.main(["digest", "--days", "7", "--json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["processed_users"] == 1
    assert result["emailed_users"] == 0  # no activity yet
    assert "since" in result


def test_digest_rejects_zero_days(cli_env) -> None:
    with pytest.raises(SystemExit):
        cli.main(["digest", "--days", "0"])


def test_store_failure_exits_non_zero(cli_env, monkeypatch, capsys) -> None:
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(MonitorStore, "list_unevaluated_snapshots", broken)
    assert cli.main(["alerts"]) == 1
    assert "pass failed" in capsys.readouterr().out
