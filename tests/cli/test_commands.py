"""Tests for the CLI commands."""

import json
import pytest
import yaml
from click.testing import CliRunner
from converge.cli.main import cli
from converge.cli.utils import EXIT_FAILED, EXIT_OK, EXIT_PARTIAL, exit_code_for, parse_vars
from converge.execution.models import ActionResult, ActionStatus, ApplyReport
from converge.planning.models import Action, Operation, Plan
from converge.utils.errors import ParseError


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A configuration file plus settings pointing state and provider snapshot into tmp_path."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    for name in ("CONVERGE_HOME", "CONVERGE_STATE_PATH", "CONVERGE_PROVIDER", "CONVERGE_REFRESH"):
        monkeypatch.delenv(name, raising=False)
    config = {
        "variables": {"env": "dev"},
        "resources": [
            {"kind": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
            {"kind": "server", "name": "web", "attributes": {
                "network_id": "${network.main.id}", "env": "${var.env}",
            }},
        ],
        "outputs": {"web_id": "${server.web.id}"},
    }
    settings = {
        "state": {"path": str(tmp_path / "state.json")},
        "retry": {"max_attempts": 2, "backoff_min": 0, "backoff_max": 0},
        "provider": {"type": "memory", "options": {"snapshot_path": str(tmp_path / "provider.json")}},
    }
    config_path = tmp_path / "main.yaml"
    settings_path = tmp_path / "settings.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    settings_path.write_text(yaml.safe_dump(settings), encoding="utf-8")
    return str(config_path), str(settings_path)


@pytest.fixture
def runner():
    return CliRunner()


class TestValidateCommand:
    """Test validate."""

    def test_valid_configuration(self, runner, project):
        config, _ = project
        result = runner.invoke(cli, ["validate", config])

        assert result.exit_code == 0
        assert "Configuration is valid: 2 resources, 0 data lookups." in result.output

    def test_cycle_is_reported(self, runner, tmp_path):
        config = tmp_path / "cycle.yaml"
        config.write_text(yaml.safe_dump({"resources": [
            {"kind": "server", "name": "a", "attributes": {"peer": "${server.b.id}"}},
            {"kind": "server", "name": "b", "attributes": {"peer": "${server.a.id}"}},
        ]}), encoding="utf-8")

        result = runner.invoke(cli, ["validate", str(config)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["validate", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1


class TestPlanCommand:
    """Test plan."""

    def test_plan_shows_changes_and_writes_nothing(self, runner, project, tmp_path):
        config, settings = project
        result = runner.invoke(cli, ["plan", config, "--settings", settings])

        assert result.exit_code == 0
        assert "+ network.main (create)" in result.output
        assert "(known after apply)" in result.output
        assert "Plan: 2 to create, 0 to update, 0 to delete, 0 unchanged." in result.output
        assert not (tmp_path / "state.json").exists()

    def test_plan_json(self, runner, project):
        config, settings = project
        result = runner.invoke(cli, ["plan", config, "--settings", settings, "--json", "--var", "env=prod"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["summary"]["create"] == 2
        assert [a["address"] for a in data["actions"]] == ["network.main", "server.web"]
        env = [c for c in data["actions"][1]["diff"] if c["name"] == "env"][0]
        assert env["after"] == "prod"

    def test_unknown_target(self, runner, project):
        config, settings = project
        result = runner.invoke(cli, ["plan", config, "--settings", settings, "-t", "server.nope"])
        assert result.exit_code == 1


class TestApplyAndState:
    """Test apply, state inspection and destroy against one workspace."""

    def test_lifecycle(self, runner, project):
        config, settings = project

        applied = runner.invoke(cli, ["apply", config, "--settings", settings])
        assert applied.exit_code == 0
        assert "Created: 2, updated: 0, destroyed: 0, skipped: 0, failed: 0" in applied.output
        assert "web_id" in applied.output

        again = runner.invoke(cli, ["apply", config, "--settings", settings])
        assert again.exit_code == 0
        assert "No changes." in again.output

        listed = runner.invoke(cli, ["state", "list", "--settings", settings])
        assert listed.output.split() == ["network.main", "server.web"]

        shown = runner.invoke(cli, ["state", "show", "server.web", "--settings", settings])
        assert shown.exit_code == 0
        entry = json.loads(shown.output)
        assert entry["attributes"]["env"] == "dev"
        assert entry["dependencies"] == ["network.main"]

        destroyed = runner.invoke(cli, ["destroy", "--settings", settings])
        assert destroyed.exit_code == 0
        assert "destroyed: 2" in destroyed.output

        empty = runner.invoke(cli, ["state", "list", "--settings", settings])
        assert "State is empty." in empty.output

    def test_apply_json(self, runner, project):
        config, settings = project
        result = runner.invoke(cli, ["apply", config, "--settings", settings, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["summary"]["created"] == 2
        assert data["outputs"]["web_id"].startswith("server-")
        assert all(r["status"] == "applied" for r in data["results"])

    def test_show_missing_address(self, runner, project):
        _, settings = project
        result = runner.invoke(cli, ["state", "show", "server.nope", "--settings", settings])
        assert result.exit_code == 1

    def test_unlock_when_not_locked(self, runner, project):
        _, settings = project
        result = runner.invoke(cli, ["state", "unlock", "--settings", settings])
        assert result.exit_code == 0
        assert "State is not locked." in result.output


class TestVersionCommand:
    """Test version output."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert result.output.startswith("converge version ")
        assert "state format" in result.output


def _plan(*operations):
    return Plan(actions=[
        Action(index=i, address=f"bucket.b{i}", kind="bucket", operation=op) for i, op in enumerate(operations)
    ])


def _report(*statuses):
    return ApplyReport(results=[
        ActionResult(index=i, address=f"bucket.b{i}", operation=Operation.CREATE, status=s)
        for i, s in enumerate(statuses)
    ])


class TestExitCodes:
    """Test mapping of apply outcomes to exit codes."""

    def test_all_applied(self):
        plan = _plan(Operation.CREATE, Operation.CREATE)
        assert exit_code_for(plan, _report(ActionStatus.APPLIED, ActionStatus.APPLIED)) == EXIT_OK

    def test_nothing_to_do(self):
        assert exit_code_for(_plan(Operation.NO_OP), _report(ActionStatus.NO_OP)) == EXIT_OK

    def test_partial(self):
        plan = _plan(Operation.CREATE, Operation.CREATE)
        assert exit_code_for(plan, _report(ActionStatus.APPLIED, ActionStatus.FAILED)) == EXIT_PARTIAL

    def test_nothing_applied(self):
        plan = _plan(Operation.CREATE, Operation.CREATE)
        assert exit_code_for(plan, _report(ActionStatus.FAILED, ActionStatus.SKIPPED)) == EXIT_FAILED


class TestParseVars:
    """Test --var parsing."""

    def test_values_are_yaml(self):
        assert parse_vars(["count=3", "tags=[a, b]", "name=web", "empty="]) == {
            "count": 3, "tags": ["a", "b"], "name": "web", "empty": "",
        }

    def test_missing_equals(self):
        with pytest.raises(ParseError):
            parse_vars(["count"])

    def test_malformed_var_exits_with_error(self, runner, project, tmp_path):
        config, settings = project
        result = runner.invoke(cli, ["apply", config, "--settings", settings, "--var", "novalue"])

        assert result.exit_code == 1
        assert "novalue" in result.output
        assert not (tmp_path / "state.json").exists()
