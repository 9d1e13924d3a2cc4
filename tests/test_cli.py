from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from evgraph import __version__
from evgraph.cli import cli


@pytest.fixture
def invoke(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("COLUMNS", "200")
    runner = CliRunner()
    store = tmp_path / "store"

    def _invoke(*args: str):
        return runner.invoke(cli, ["--store", str(store), *args])

    return _invoke


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_event_then_decision(invoke) -> None:
    created = invoke("event", "create", "INCIDENT.CREATED", "soc", "-p", '{"id": "INC-1"}', "--json")
    assert created.exit_code == 0, created.output
    event = json.loads(created.output)
    assert len(event["clock_ids"]) == 2

    assert invoke("actor", "register", "Dana Officer", "--id", "ACT_DPO").exit_code == 0
    decided = invoke(
        "decision", "create", "ESCALATION", event["event_id"],
        "--outcome", "escalated",
        "-j", "Customer data exposure confirmed",
        "--actor", "ACT_DPO",
        "--json",
    )
    assert decided.exit_code == 0, decided.output
    assert json.loads(decided.output)["artifact_id"]

    listed = invoke("event", "list")
    assert listed.exit_code == 0
    assert "INCIDENT.CREATED" in listed.output
    assert "DECISION.ESCALATION" in listed.output


def test_invalid_severity_is_a_usage_error(invoke) -> None:
    result = invoke("event", "create", "INCIDENT.CREATED", "soc", "--severity", "URGENT")
    assert result.exit_code == 2


def test_chain_and_query(invoke) -> None:
    invoke("event", "create", "BREACH.DETECTED", "dlp")

    assert invoke("chain", "validate").exit_code == 0
    assert invoke("chain", "gaps").exit_code == 0

    listed = invoke("query", "list", "--regulation", "GDPR")
    assert listed.exit_code == 0
    assert "GDPR-33-BREACH-NOTIFICATION" in listed.output

    ran = invoke("query", "run", "GDPR-33-BREACH-NOTIFICATION", "--days", "30", "--json")
    assert ran.exit_code == 0
    assert json.loads(ran.output)["result"] == "PARTIAL"
    assert invoke("query", "run", "GDPR-33-BREACH-NOTIFICATION", "--fail-unproven").exit_code == 1


def test_clock_list_json(invoke) -> None:
    invoke("event", "create", "BREACH.DETECTED", "dlp")

    result = invoke("clock", "list", "--json")

    assert result.exit_code == 0
    assert [c["clock_type"] for c in json.loads(result.output)] == ["GDPR_72H_BREACH"]


def test_config_file_supplies_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "evgraph.toml").write_text('[store]\ndir = "data"\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["event", "create", "LOGIN.FAILED", "idp"])

    assert result.exit_code == 0, result.output
    assert (tmp_path / "data" / "graph.jsonl").is_file()


def test_bad_config_is_reported(tmp_path: Path) -> None:
    config = tmp_path / "evgraph.toml"
    config.write_text("[query]\ndefault_range_days = 0\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "--store", str(tmp_path), "query", "list"])

    assert result.exit_code == 1
    assert "default_range_days" in result.output
