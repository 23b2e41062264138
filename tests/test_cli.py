"""
Tests for the command line interface.
"""

import asyncio

import pytest
from typer.testing import CliRunner

from pulsewatch.cli.check import _format_interval, _parse_interval
from pulsewatch.cli.main import app
from pulsewatch.engine import Check, SqliteCheckStore

runner = CliRunner()


def _stored_checks(db: str) -> list[Check]:
    async def _load():
        async with SqliteCheckStore(db) as store:
            return await store.list_checks()

    return asyncio.run(_load())


@pytest.fixture
def db(tmp_path) -> str:
    return str(tmp_path / "uptime.db")


class TestIntervals:
    """Tests for interval parsing and formatting."""

    @pytest.mark.parametrize(
        "text,seconds",
        [("30s", 30), ("5m", 300), ("1h", 3600), ("45", 45), (" 2M ", 120)],
    )
    def test_parse(self, text: str, seconds: int) -> None:
        assert _parse_interval(text) == seconds

    def test_parse_garbage(self) -> None:
        with pytest.raises(ValueError):
            _parse_interval("soon")

    def test_format(self) -> None:
        assert _format_interval(30) == "30s"
        assert _format_interval(90) == "1m 30s"
        assert _format_interval(7200) == "2h"


class TestCheckCommands:
    """Tests for the check command group."""

    def test_add_and_list(self, db: str) -> None:
        result = runner.invoke(
            app, ["check", "add", "https://api.example.com/health", "-n", "api", "-i", "30s", "--db", db]
        )
        assert result.exit_code == 0, result.output
        assert "Check created" in result.output

        [check] = _stored_checks(db)
        assert check.name == "api"
        assert check.interval_seconds == 30
        assert check.is_active

        result = runner.invoke(app, ["check", "list", "--db", db])
        assert result.exit_code == 0
        assert "api" in result.output
        assert "Total: 1 checks" in result.output

    def test_interval_below_minimum_rejected(self, db: str) -> None:
        result = runner.invoke(app, ["check", "add", "https://example.com", "-i", "5s", "--db", db])

        assert result.exit_code == 1
        assert _stored_checks(db) == []

    def test_invalid_url_rejected(self, db: str) -> None:
        result = runner.invoke(app, ["check", "add", "ftp://example.com/file", "--db", db])

        assert result.exit_code == 1
        assert "scheme" in result.output
        assert _stored_checks(db) == []

    def test_pause_and_resume(self, db: str) -> None:
        runner.invoke(app, ["check", "add", "https://example.com", "-n", "site", "--db", db])
        [check] = _stored_checks(db)

        result = runner.invoke(app, ["check", "pause", check.id[:8], "--db", db])
        assert result.exit_code == 0, result.output
        assert _stored_checks(db)[0].is_active is False

        result = runner.invoke(app, ["check", "resume", check.id, "--db", db])
        assert result.exit_code == 0, result.output
        assert _stored_checks(db)[0].is_active is True

    def test_remove_with_force(self, db: str) -> None:
        runner.invoke(app, ["check", "add", "https://example.com", "--db", db])
        [check] = _stored_checks(db)

        result = runner.invoke(app, ["check", "remove", check.id, "--force", "--db", db])

        assert result.exit_code == 0, result.output
        assert _stored_checks(db) == []

    def test_remove_declined(self, db: str) -> None:
        runner.invoke(app, ["check", "add", "https://example.com", "--db", db])
        [check] = _stored_checks(db)

        result = runner.invoke(app, ["check", "remove", check.id, "--db", db], input="n\n")

        assert result.exit_code != 0
        assert len(_stored_checks(db)) == 1

    def test_results_for_unknown_check(self, db: str) -> None:
        result = runner.invoke(app, ["check", "results", "does-not-exist", "--db", db])

        assert result.exit_code == 1
        assert "Check not found" in result.output

    def test_results_empty(self, db: str) -> None:
        runner.invoke(app, ["check", "add", "https://example.com", "-n", "site", "--db", db])
        [check] = _stored_checks(db)

        result = runner.invoke(app, ["check", "results", check.id, "--db", db])

        assert result.exit_code == 0
        assert "No results yet" in result.output


class TestMainCommands:
    """Tests for top-level commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Pulsewatch" in result.output

    def test_info(self) -> None:
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert "concurrency_limit" in result.output

    def test_run_refuses_unreachable_database(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        result = runner.invoke(app, ["run", "--db", str(blocker / "uptime.db")])

        assert result.exit_code == 1
        assert "Cannot start" in result.output
