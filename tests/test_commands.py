"""
Tests for the CLI command implementations (`run_*`), called directly.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from evgraph.commands.anchor_cmd import run_anchor_run
from evgraph.commands.chain_cmd import run_chain_gaps, run_chain_validate
from evgraph.commands.clock_cmd import run_clock_list, run_clock_update
from evgraph.commands.decision_cmd import run_decision_create
from evgraph.commands.event_cmd import run_event_create, run_event_list
from evgraph.commands.node_cmd import run_actor_register
from evgraph.commands.query_cmd import run_query_regulation, run_query_run
from evgraph.config import EvidenceConfig


@pytest.fixture
def cfg(tmp_path: Path) -> EvidenceConfig:
    return EvidenceConfig(store_dir=tmp_path / "store")


def _json(capsys: pytest.CaptureFixture[str]):
    return json.loads(capsys.readouterr().out)


def test_event_create_json(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_event_create(cfg, "BREACH.DETECTED", "dlp", payload='{"records": 12}', output_json=True) == 0

    out = _json(capsys)
    assert out["sequence_number"] == 1
    assert out["previous_hash"] == "0" * 64
    assert len(out["clock_ids"]) == 1


@pytest.mark.parametrize("payload", ["not json", "[1, 2]"])
def test_event_create_rejects_bad_payload(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str], payload: str) -> None:
    assert run_event_create(cfg, "BREACH.DETECTED", "dlp", payload=payload) == 1
    assert "Event rejected" in capsys.readouterr().err


def test_event_create_rejects_bad_type(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_event_create(cfg, "breach detected", "dlp") == 1
    assert "Malformed event_type" in capsys.readouterr().err


def test_event_list(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    run_event_create(cfg, "LOGIN.FAILED", "idp", output_json=True)
    capsys.readouterr()

    assert run_event_list(cfg) == 0
    assert "LOGIN.FAILED" in capsys.readouterr().out


def test_chain_commands(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    run_event_create(cfg, "LOGIN.FAILED", "idp", output_json=True)
    run_event_create(cfg, "LOGIN.FAILED", "idp", output_json=True)
    capsys.readouterr()

    assert run_chain_validate(cfg, output_json=True) == 0
    assert _json(capsys)["checked_events"] == 2
    assert run_chain_gaps(cfg, output_json=True) == 0
    assert _json(capsys) == []


def test_chain_validate_fails_on_tampering(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    run_event_create(cfg, "TRANSACTION.CREATED", "payments", payload='{"amount": 100}')
    journal = cfg.store_dir / "graph.jsonl"
    journal.write_text(journal.read_text(encoding="utf-8").replace('"amount":100', '"amount":900'), encoding="utf-8")
    capsys.readouterr()

    assert run_chain_validate(cfg) == 1
    assert "INVALID" in capsys.readouterr().out


def test_decision_and_clock_flow(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_actor_register(cfg, "Dana Officer", actor_id="ACT_DPO", role="DPO") == 0
    run_event_create(cfg, "BREACH.DETECTED", "dlp", output_json=True)
    capsys.readouterr()
    run_event_create(cfg, "BREACH.DETECTED", "dlp", output_json=True)
    created = _json(capsys)

    assert (
        run_decision_create(
            cfg, "ESCALATION", "escalated", "Exposure confirmed by forensics", "ACT_DPO", created["event_id"], output_json=True
        )
        == 0
    )
    decision = _json(capsys)
    assert decision["event_id"]
    assert decision["artifact_id"]

    assert run_clock_list(cfg, output_json=True) == 0
    clocks = _json(capsys)
    assert {c["clock_type"] for c in clocks} == {"GDPR_72H_BREACH"}
    assert len(clocks) == 2

    assert run_clock_update(cfg, created["clock_ids"][0], "MET") == 0
    capsys.readouterr()
    run_clock_list(cfg, status="MET", output_json=True)
    assert [c["clock_id"] for c in _json(capsys)] == created["clock_ids"]


def test_decision_rejected_for_unknown_actor(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    run_event_create(cfg, "INCIDENT.CREATED", "soc", output_json=True)
    event_id = _json(capsys)["event_id"]

    assert run_decision_create(cfg, "ESCALATION", "escalated", "Exposure confirmed", "ACT_GHOST", event_id) == 1
    assert "Decision rejected" in capsys.readouterr().err


def test_query_run_json(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    run_event_create(cfg, "BREACH.DETECTED", "dlp", output_json=True)
    capsys.readouterr()

    assert run_query_run(cfg, "GDPR-33-BREACH-NOTIFICATION", days=30, output_json=True) == 0
    out = _json(capsys)
    assert out["result"] == "PARTIAL"
    assert len(out["evidence"]["events"]) == 1

    assert run_query_run(cfg, "GDPR-33-BREACH-NOTIFICATION", fail_unproven=True, output_json=True) == 1


def test_query_run_errors(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_query_run(cfg, "NOPE-1") == 1
    assert "Unknown compliance query" in capsys.readouterr().err
    assert run_query_run(cfg, "GDPR-33-BREACH-NOTIFICATION", start="yesterday") == 2


def test_query_regulation_summary(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_query_regulation(cfg, "DORA", output_json=True) == 0
    out = _json(capsys)

    assert out["summary"]["overall"]["not_proven"] == 1
    assert out["summary"]["critical_gaps"][0]["query_id"] == "DORA-19-INITIAL-NOTIFICATION"


def test_anchor_run(cfg: EvidenceConfig, capsys: pytest.CaptureFixture[str]) -> None:
    run_event_create(cfg, "LOGIN.FAILED", "idp", output_json=True)
    capsys.readouterr()

    assert run_anchor_run(cfg, output_json=True) == 0
    out = _json(capsys)
    assert out["event_count"] == 1
    assert out["verification_status"] == "PENDING"
