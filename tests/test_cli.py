"""Smoke tests for the offline CLI commands (no provider calls)."""

from __future__ import annotations

from typer.testing import CliRunner

from main import app

runner = CliRunner()


class TestOfflineCommands:

    def test_route(self):
        result = runner.invoke(app, ["route", "Looking to buy ASAP"])
        assert result.exit_code == 0
        assert "Routing Decisions" in result.output

    def test_quick(self):
        result = runner.invoke(app, ["quick", "Offer accepted! Need to move quickly"])
        assert result.exit_code == 0
        assert "Priority" in result.output

    def test_validate_transition_ok(self):
        result = runner.invoke(app, ["validate-transition", "Lead", "New Opportunity"])
        assert result.exit_code == 0
        assert "Valid" in result.output

    def test_validate_transition_rejected(self):
        result = runner.invoke(app, ["validate-transition", "Closed", "Lead"])
        assert result.exit_code == 1
        assert "Cannot transition from Closed to Lead" in result.output

    def test_recommend_flags_seven_day_rule(self):
        result = runner.invoke(app, [
            "recommend", "Jane Doe",
            "--stage", "Active Opportunity",
            "--days", "9",
            "--last-interaction", "2026-03-01",
        ])
        assert result.exit_code == 0
        assert "critical" in result.output
        assert "2 days past 7-day rule" in result.output

    def test_info_bad_config(self, tmp_path):
        result = runner.invoke(app, ["info", "--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "Configuration Error" in result.output
