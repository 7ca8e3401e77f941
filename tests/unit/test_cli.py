"""Tests for the approval-chains CLI."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from aumos_approval_chains.cli.main import cli
from aumos_approval_chains.persistence import JsonFilePersistence


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "approval_chains.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "persistence": {"backend": "json", "path": str(tmp_path / "state.json")},
                "audit": {"enabled": True, "log_path": str(tmp_path / "audit.jsonl")},
            }
        ),
        encoding="utf-8",
    )
    return path


def _saved_requests(config_file: Path) -> list[dict[str, object]]:
    return JsonFilePersistence(config_file.parent / "state.json").load().requests


def _create(runner: CliRunner, config_file: Path, chain_id: str = "prd-approval", resource_id: str = "prd-1") -> str:
    result = runner.invoke(
        cli,
        ["requests", "create", chain_id, "prd", resource_id, "--requested-by", "alice", "-c", str(config_file)],
    )
    assert result.exit_code == 0, result.output
    return str(_saved_requests(config_file)[-1]["id"])


class TestVersionAndInit:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "aumos-approval-chains" in result.output

    def test_init_writes_config(self, runner: CliRunner, tmp_path: Path) -> None:
        output = tmp_path / "cfg" / "approval_chains.yaml"
        result = runner.invoke(cli, ["init", "--output", str(output)])
        assert result.exit_code == 0, result.output
        data = yaml.safe_load(output.read_text(encoding="utf-8"))
        assert data["persistence"]["backend"] == "json"
        assert data["install_default_chains"] is True

    def test_init_refuses_overwrite(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["init", "--output", str(config_file)])
        assert result.exit_code == 1


class TestChainCommands:
    def test_list(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["chains", "list", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "ticket-approval" in result.output
        assert "release-approval" in result.output

    def test_show(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["chains", "show", "release-approval", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "Director" in result.output

    def test_show_unknown(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["chains", "show", "nope", "-c", str(config_file)])
        assert result.exit_code == 1


class TestRequestCommands:
    def test_create_persists_request(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        saved = _saved_requests(config_file)
        assert [r["id"] for r in saved] == [request_id]
        assert saved[0]["status"] == "pending"

    def test_create_refuses_second_open_request(self, runner: CliRunner, config_file: Path) -> None:
        _create(runner, config_file)
        result = runner.invoke(
            cli,
            ["requests", "create", "prd-approval", "prd", "prd-1", "--requested-by", "bob", "-c", str(config_file)],
        )
        assert result.exit_code == 1
        assert len(_saved_requests(config_file)) == 1

    def test_create_unknown_chain(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(
            cli,
            ["requests", "create", "nope", "ticket", "T-1", "--requested-by", "alice", "-c", str(config_file)],
        )
        assert result.exit_code == 1

    def test_approve_flow(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        first = runner.invoke(
            cli,
            ["requests", "approve", request_id, "--user", "bob", "--role", "editor", "-c", str(config_file)],
        )
        assert first.exit_code == 0, first.output
        second = runner.invoke(
            cli,
            ["requests", "approve", request_id, "--user", "carol", "--role", "admin", "-m", "ok", "-c", str(config_file)],
        )
        assert second.exit_code == 0, second.output
        assert _saved_requests(config_file)[0]["status"] == "approved"

    def test_approve_without_authority_refused(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        result = runner.invoke(
            cli,
            ["requests", "approve", request_id, "--user", "bob", "--role", "viewer", "-c", str(config_file)],
        )
        assert result.exit_code == 1
        assert _saved_requests(config_file)[0]["approvals"] == []

    def test_reject(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        result = runner.invoke(
            cli,
            ["requests", "reject", request_id, "-u", "bob", "-r", "admin", "-c", str(config_file)],
        )
        assert result.exit_code == 0, result.output
        assert _saved_requests(config_file)[0]["status"] == "rejected"

    def test_escalate_and_cancel(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        escalated = runner.invoke(
            cli, ["requests", "escalate", request_id, "--reason", "stuck", "-c", str(config_file)]
        )
        assert escalated.exit_code == 0, escalated.output
        assert _saved_requests(config_file)[0]["current_level"] == 2

        again = runner.invoke(cli, ["requests", "escalate", request_id, "-c", str(config_file)])
        assert again.exit_code == 1

        cancelled = runner.invoke(cli, ["requests", "cancel", request_id, "-c", str(config_file)])
        assert cancelled.exit_code == 0, cancelled.output
        assert _saved_requests(config_file)[0]["status"] == "cancelled"

        twice = runner.invoke(cli, ["requests", "cancel", request_id, "-c", str(config_file)])
        assert twice.exit_code == 1

    def test_show(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        result = runner.invoke(cli, ["requests", "show", request_id, "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "PENDING" in result.output
        assert "0%" in result.output

    def test_show_unknown(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["requests", "show", "missing", "-c", str(config_file)])
        assert result.exit_code == 1

    def test_list_with_filters(self, runner: CliRunner, config_file: Path) -> None:
        _create(runner, config_file, resource_id="prd-1")
        _create(runner, config_file, resource_id="prd-2")
        result = runner.invoke(cli, ["requests", "list", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "Total requests: 2" in result.output

        filtered = runner.invoke(
            cli,
            ["requests", "list", "--resource-type", "prd", "--resource-id", "prd-2", "-c", str(config_file)],
        )
        assert "Total requests: 1" in filtered.output

        none = runner.invoke(cli, ["requests", "list", "--status", "approved", "-c", str(config_file)])
        assert "No approval requests found" in none.output

    def test_list_resource_id_requires_type(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["requests", "list", "--resource-id", "x", "-c", str(config_file)])
        assert result.exit_code == 2


class TestWithoutConfigFile:
    def test_state_survives_between_invocations(self, runner: CliRunner) -> None:
        with runner.isolated_filesystem():
            created = runner.invoke(
                cli, ["requests", "create", "ticket-approval", "ticket", "T-9", "--requested-by", "alice"]
            )
            assert created.exit_code == 0, created.output
            saved = JsonFilePersistence(Path("approval_state.json")).load().requests
            assert len(saved) == 1

            shown = runner.invoke(cli, ["requests", "show", str(saved[0]["id"])])
            assert shown.exit_code == 0, shown.output
            assert "PENDING" in shown.output

    def test_memory_backend_warns(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "approval_chains.yaml"
        path.write_text(yaml.safe_dump({"persistence": {"backend": "memory"}}), encoding="utf-8")
        result = runner.invoke(cli, ["chains", "list", "-c", str(path)])
        assert result.exit_code == 0
        assert "memory" in result.output


class TestCheckTimeouts:
    def test_nothing_overdue(self, runner: CliRunner, config_file: Path) -> None:
        _create(runner, config_file)
        result = runner.invoke(cli, ["check-timeouts", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "No overdue" in result.output

    def test_overdue_request_escalated(self, runner: CliRunner, config_file: Path) -> None:
        request_id = _create(runner, config_file)
        state = JsonFilePersistence(config_file.parent / "state.json")
        saved = state.load()
        saved.requests[0]["deadline"] = "2020-01-01T00:00:00+00:00"
        state.save(saved)

        result = runner.invoke(cli, ["check-timeouts", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        stored = _saved_requests(config_file)[0]
        assert stored["id"] == request_id
        assert stored["status"] == "escalated"
        assert stored["escalation_history"][0]["reason"] == "Timeout exceeded"
