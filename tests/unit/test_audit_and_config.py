"""Tests for the TransitionLog, the YAML config loader and engine construction from config."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from aumos_approval_chains.audit import TRANSITION_EVENTS, TransitionLog
from aumos_approval_chains.config import ConfigLoader, EngineConfig
from aumos_approval_chains.engine import ApprovalChainEngine
from aumos_approval_chains.persistence import JsonFilePersistence


# ---------------------------------------------------------------------------
# TransitionLog
# ---------------------------------------------------------------------------


@pytest.fixture()
def log(tmp_path: Path) -> TransitionLog:
    return TransitionLog(tmp_path / "audit" / "transitions.jsonl", session_id="sess-1")


class TestTransitionLog:
    def test_record_appends_json_line(self, log: TransitionLog) -> None:
        log.record("request_created", request_id="r-1", level=1)
        lines = log.log_path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["event"] == "request_created"
        assert entry["session_id"] == "sess-1"
        assert entry["request_id"] == "r-1"
        assert "timestamp" in entry

    def test_unknown_event_rejected(self, log: TransitionLog) -> None:
        with pytest.raises(ValueError):
            log.record("request_teleported")

    def test_empty_log(self, log: TransitionLog) -> None:
        assert log.read_all() == []
        assert log.count() == 0

    def test_query_and_history(self, log: TransitionLog) -> None:
        log.record("request_created", request_id="a")
        log.record("request_created", request_id="b")
        log.record("request_approved", request_id="a")
        assert [r["event"] for r in log.history("a")] == ["request_created", "request_approved"]
        assert len(log.query({"event": "request_created"})) == 2

    def test_last_n(self, log: TransitionLog) -> None:
        for n in range(5):
            log.record("approval_recorded", request_id=str(n))
        assert [r["request_id"] for r in log.last_n(2)] == ["3", "4"]
        assert len(log.last_n(50)) == 5

    def test_torn_line_skipped(self, log: TransitionLog) -> None:
        log.record("request_created", request_id="a")
        with log.log_path.open("a", encoding="utf-8") as fh:
            fh.write('{"event": "request_cre')
        assert log.count() == 1

    def test_engine_writes_one_record_per_transition(self, log: TransitionLog) -> None:
        engine = ApprovalChainEngine(audit=log)
        request = engine.create_request("prd-approval", "prd", "p-1", "alice")
        engine.approve(request.id, "lead")
        engine.escalate(request.id, "PM on leave")
        engine.reject(request.id, "director")
        engine.close()

        events = [r["event"] for r in log.history(request.id)]
        assert events == ["request_created", "request_advanced", "request_escalated", "request_rejected"]
        escalation = log.query({"event": "request_escalated"})[0]
        assert escalation["target"] == "role:admin"
        assert escalation["reason"] == "PM on leave"
        assert set(events) <= TRANSITION_EVENTS

    def test_engine_records_chain_events(self, log: TransitionLog) -> None:
        engine = ApprovalChainEngine(audit=log)
        chain = engine.create_chain({"name": "X", "levels": [{"order": 1, "name": "A"}]})
        engine.update_chain(chain.id, {"description": "d"})
        engine.delete_chain(chain.id)
        engine.close()
        events = [r["event"] for r in log.query({"chain_id": chain.id})]
        assert events == ["chain_created", "chain_updated", "chain_deleted"]


# ---------------------------------------------------------------------------
# ConfigLoader
# ---------------------------------------------------------------------------


_FULL_CONFIG = """
version: "1"
install_default_chains: false
scheduler:
  enabled: false
  interval_seconds: 15
persistence:
  backend: json
  path: {state}
  mode: sync
audit:
  enabled: true
  log_path: {audit}
chains:
  - id: hotfix
    name: Hotfix
    levels:
      - order: 1
        name: On-call
        approver_roles: [sre]
        timeout_hours: 2
        escalate_to: specific_user
        escalate_to_user_id: sre-manager
  - name: Unnamed id
    levels:
      - order: 1
        name: Anyone
"""


class TestConfigLoader:
    def test_defaults(self) -> None:
        config = ConfigLoader().defaults()
        assert config.install_default_chains is True
        assert config.persistence.backend == "memory"
        assert config.persistence.mode == "async"
        assert config.scheduler.enabled is False
        assert config.scheduler.interval_seconds == 60
        assert config.chains == []

    def test_load_string(self, tmp_path: Path) -> None:
        config = ConfigLoader().load_string(
            _FULL_CONFIG.format(state=tmp_path / "s.json", audit=tmp_path / "a.jsonl")
        )
        assert config.persistence.backend == "json"
        assert config.scheduler.interval_seconds == 15.0
        assert config.chains[0].id == "hotfix"
        assert config.chains[0].level(1).escalate_to.describe() == "user:sre-manager"

    def test_empty_document_gives_defaults(self) -> None:
        assert ConfigLoader().load_string("") == EngineConfig()

    def test_unknown_keys_allowed(self) -> None:
        config = ConfigLoader().load_string("future_feature: true\n")
        assert config.install_default_chains is True

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConfigLoader().load_string("persistence:\n  mode: eventually\n")
        with pytest.raises(ValueError):
            ConfigLoader().load_string("scheduler:\n  interval_seconds: 0\n")

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ConfigLoader().load(tmp_path / "absent.yaml")

    def test_load_or_defaults(self, tmp_path: Path) -> None:
        assert ConfigLoader().load_or_defaults(tmp_path / "absent.yaml") == EngineConfig()


class TestEngineFromConfig:
    def _config(self, tmp_path: Path) -> EngineConfig:
        return ConfigLoader().load_string(
            _FULL_CONFIG.format(state=tmp_path / "s.json", audit=tmp_path / "a.jsonl")
        )

    def test_registers_configured_chains(self, tmp_path: Path) -> None:
        engine = ApprovalChainEngine.from_config(self._config(tmp_path))
        chains = {chain.name: chain for chain in engine.get_all_chains()}
        assert set(chains) == {"Hotfix", "Unnamed id"}
        assert chains["Hotfix"].id == "hotfix"
        engine.close()

    def test_generated_chain_id_is_stable(self, tmp_path: Path) -> None:
        first = ApprovalChainEngine.from_config(self._config(tmp_path))
        second = ApprovalChainEngine.from_config(self._config(tmp_path))
        assert {c.id for c in first.get_all_chains()} == {c.id for c in second.get_all_chains()}
        first.close()
        second.close()

    def test_state_survives_restart(self, tmp_path: Path) -> None:
        engine = ApprovalChainEngine.from_config(self._config(tmp_path))
        request = engine.create_request("hotfix", "deployment", "dep-9", "alice")
        engine.close()

        assert JsonFilePersistence(tmp_path / "s.json").load().requests[0]["id"] == request.id

        reopened = ApprovalChainEngine.from_config(self._config(tmp_path))
        assert reopened.get_request(request.id) is not None
        assert len(reopened.get_all_chains()) == 2
        reopened.close()

    def test_audit_enabled(self, tmp_path: Path) -> None:
        engine = ApprovalChainEngine.from_config(self._config(tmp_path))
        engine.create_request("hotfix", "deployment", "dep-9", "alice")
        engine.close()
        assert TransitionLog(tmp_path / "a.jsonl").count() == 1

    def test_scheduler_started_when_enabled(self, tmp_path: Path) -> None:
        config = self._config(tmp_path)
        config.scheduler.enabled = True
        engine = ApprovalChainEngine.from_config(config)
        assert engine.timeout_checker_running
        assert engine.scheduler.interval_seconds == 15
        engine.close()
        assert not engine.timeout_checker_running
