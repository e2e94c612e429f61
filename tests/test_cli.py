"""Tests for scanner_its/cli.py"""

import json

from click.testing import CliRunner

from scanner_its.cli import cli
from scanner_its.scenarios import ScenarioOutcome


def test_list_shows_scenarios():
    result = CliRunner().invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "all-projects-excluded" in result.output
    assert "help" in result.output


def test_init_writes_template(tmp_path):
    out = tmp_path / "its-config.yaml"
    result = CliRunner().invoke(cli, ["init", "--output", str(out)])
    assert result.exit_code == 0
    assert out.exists()


def test_init_refuses_overwrite(tmp_path):
    out = tmp_path / "its-config.yaml"
    out.write_text("x")
    result = CliRunner().invoke(cli, ["init", "--output", str(out)])
    assert result.exit_code == 1


def test_run_unknown_scenario_exits_1(tmp_path):
    result = CliRunner().invoke(cli, ["run", "nope"])
    assert result.exit_code == 1
    assert "Unknown scenario" in result.output


def test_run_missing_config_exits_1(tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "missing.yaml"), "run", "sample"])
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def _write_config(tmp_path):
    config = tmp_path / "its-config.yaml"
    config.write_text(
        'server: {url: "http://sonar.example.com"}\n'
        'scanner: {path: "scanner"}\n'
        'msbuild: {path: "msbuild"}\n',
        encoding="utf-8",
    )
    return config


def test_run_emits_outcomes_as_json(tmp_path, monkeypatch):
    calls = []

    def fake_run(self, scenario, unique_key=False):
        calls.append((scenario.name, unique_key))
        return ScenarioOutcome(name=scenario.name, project_key="my.project", passed=True,
                               state="ended_success", issue_count=4, logs="secret logs")

    monkeypatch.setattr("scanner_its.scenarios.ScenarioRunner.run", fake_run)
    config = _write_config(tmp_path)

    result = CliRunner().invoke(cli, ["--config", str(config), "run", "sample", "--unique-keys"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["passed"] == 1
    assert data["scenarios"][0]["issue_count"] == 4
    assert "logs" not in data["scenarios"][0]
    assert calls == [("sample", True)]


def test_run_verification_failure_exits_2(tmp_path, monkeypatch):
    from scanner_its.errors import AssertionFailure

    def failing_run(self, scenario, unique_key=False):
        raise AssertionFailure("Expected 4 issue(s), found 3")

    monkeypatch.setattr("scanner_its.scenarios.ScenarioRunner.run", failing_run)
    config = _write_config(tmp_path)

    result = CliRunner().invoke(cli, ["--config", str(config), "run", "sample"])

    assert result.exit_code == 2
    assert "Verification failed" in result.output
