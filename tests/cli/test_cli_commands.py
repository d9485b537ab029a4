"""Tests for the converge CLI commands."""

import json
import pytest
import yaml
from click.testing import CliRunner
from converge.cli.main import cli

DECLARATIONS = {
    "resources": [
        {"type": "aws_vpc", "name": "main", "attributes": {"cidr_block": "10.0.0.0/16"}},
        {"type": "aws_subnet", "name": "public", "count": 2,
         "attributes": {"vpc_id": {"ref": "aws_vpc.main.id"}, "cidr_block": "10.0.1.0/24"}},
    ]
}


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Isolated working directory with a declarations file."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    (tmp_path / "infra.yaml").write_text(yaml.safe_dump(DECLARATIONS), encoding="utf-8")
    return tmp_path


@pytest.fixture
def runner():
    return CliRunner()


def _state_args(workspace):
    return ["--state", str(workspace / "state" / "state.json")]


class TestPlanCommand:
    def test_plan_human(self, runner, workspace):
        result = runner.invoke(cli, ["plan", "infra.yaml", *_state_args(workspace)])

        assert result.exit_code == 0
        assert "aws_subnet.public[1]" in result.output
        assert "Plan: 3 to create" in result.output
        assert not (workspace / "state" / "state.json").exists()

    def test_plan_json(self, runner, workspace):
        result = runner.invoke(cli, ["plan", "infra.yaml", "--json", *_state_args(workspace)])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["state_serial"] == 0
        assert [a["key"] for a in data["actions"]][0] == "create:aws_vpc.main"

    def test_invalid_declarations_exit_1(self, runner, workspace):
        (workspace / "bad.yaml").write_text(yaml.safe_dump({"resources": [
            {"type": "aws_subnet", "name": "a", "attributes": {"vpc_id": {"ref": "aws_vpc.nope.id"}}},
        ]}), encoding="utf-8")

        result = runner.invoke(cli, ["plan", "bad.yaml", *_state_args(workspace)])

        assert result.exit_code == 1
        assert "aws_vpc.nope" in result.output

    def test_missing_file(self, runner, workspace):
        result = runner.invoke(cli, ["plan", "missing.yaml"])

        assert result.exit_code == 1
        assert "File not found" in result.output


class TestApplyCommand:
    def test_apply_then_replan(self, runner, workspace):
        result = runner.invoke(cli, ["apply", "infra.yaml", *_state_args(workspace)])

        assert result.exit_code == 0, result.output
        assert "Apply result:" in result.output
        state = json.loads((workspace / "state" / "state.json").read_text(encoding="utf-8"))
        assert sorted(state["resources"]) == ["aws_subnet.public[0]", "aws_subnet.public[1]", "aws_vpc.main"]
        assert (workspace / "state" / "sandbox" / "resources.json").exists()

        again = runner.invoke(cli, ["plan", "infra.yaml", *_state_args(workspace)])
        assert again.exit_code == 0
        assert "No changes" in again.output

    def test_apply_saved_plan(self, runner, workspace):
        runner.invoke(cli, ["plan", "infra.yaml", "--out", "plan.json", *_state_args(workspace)])

        result = runner.invoke(cli, ["apply", "--plan", "plan.json", "--json", *_state_args(workspace)])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["result"] == "SUCCESS"

    def test_stale_saved_plan_is_refused(self, runner, workspace):
        runner.invoke(cli, ["plan", "infra.yaml", "--out", "plan.json", *_state_args(workspace)])
        runner.invoke(cli, ["apply", "infra.yaml", *_state_args(workspace)])

        result = runner.invoke(cli, ["apply", "--plan", "plan.json", *_state_args(workspace)])

        assert result.exit_code == 1
        assert "stale" in result.output

    def test_corrupt_saved_plan(self, runner, workspace):
        (workspace / "plan.json").write_text("{not json", encoding="utf-8")

        result = runner.invoke(cli, ["apply", "--plan", "plan.json", *_state_args(workspace)])

        assert result.exit_code == 1
        assert "Error: Invalid plan file" in result.output
        assert isinstance(result.exception, SystemExit)

    def test_requires_exactly_one_source(self, runner, workspace):
        result = runner.invoke(cli, ["apply"])

        assert result.exit_code == 1
        assert "either DECLARATIONS or --plan" in result.output


class TestGraphCommand:
    def test_graph_json(self, runner, workspace):
        result = runner.invoke(cli, ["graph", "infra.yaml", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["order"][0] == "aws_vpc.main"
        assert {"from": "aws_vpc.main", "to": "aws_subnet.public[0]", "attribute": "vpc_id"} in data["edges"]

    def test_graph_human(self, runner, workspace):
        result = runner.invoke(cli, ["graph", "infra.yaml"])

        assert result.exit_code == 0
        assert "1. aws_vpc.main" in result.output
        assert "<- aws_vpc.main" in result.output


class TestStateCommands:
    def test_list_and_show(self, runner, workspace):
        runner.invoke(cli, ["apply", "infra.yaml", *_state_args(workspace)])

        listed = runner.invoke(cli, ["state", "list", *_state_args(workspace)])
        shown = runner.invoke(cli, ["state", "show", "aws_vpc.main", *_state_args(workspace)])

        assert listed.exit_code == 0
        assert "aws_subnet.public[1]  subnet-" in listed.output
        assert shown.exit_code == 0
        assert json.loads(shown.stdout)["inputs"] == {"cidr_block": "10.0.0.0/16"}

    def test_empty_state(self, runner, workspace):
        result = runner.invoke(cli, ["state", "list", *_state_args(workspace)])

        assert result.exit_code == 0
        assert "No resources recorded." in result.output

    def test_show_unknown_address_suggests(self, runner, workspace):
        runner.invoke(cli, ["apply", "infra.yaml", *_state_args(workspace)])

        result = runner.invoke(cli, ["state", "show", "aws_vpc", *_state_args(workspace)])

        assert result.exit_code == 1
        assert "Similar addresses: aws_vpc.main" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["version"])

    assert result.exit_code == 0
    assert result.output.startswith("converge version")
