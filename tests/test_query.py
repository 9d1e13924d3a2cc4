from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from evgraph.errors import NotFoundError
from evgraph.graph.nodes import Actor, ClockStatus
from evgraph.graph.store import EvidenceStore
from evgraph.ingest.orchestrator import EventIngestionOrchestrator
from evgraph.query.criteria import CUSTOM_CRITERIA, Check, register_criterion
from evgraph.query.engine import ComplianceQueryEngine
from evgraph.query.load import load_queries, parse_query
from evgraph.query.schema import TimeRange, Verdict
from evgraph.system import EvidenceSystem
from evgraph.util import utc_now

GDPR = "GDPR-33-BREACH-NOTIFICATION"
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(store: EvidenceStore) -> ComplianceQueryEngine:
    return ComplianceQueryEngine(store, load_queries())


def _notified_breach(orchestrator: EventIngestionOrchestrator, **kwargs):
    breach = orchestrator.create_event("BREACH.DETECTED", "dlp", {"records": 40}, **kwargs)
    notice = orchestrator.create_artifact("NOTIFICATION", "Notice to supervisory authority", b"notice")
    orchestrator.update_clock_status(breach.clock_ids[0], ClockStatus.MET, evidence_artifact_id=notice.artifact_id)
    return breach, notice


def test_notified_breach_is_proven(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    breach, notice = _notified_breach(orchestrator)

    result = engine.run(GDPR)

    assert result.verdict == Verdict.PROVEN
    assert result.confidence == 1.0
    assert result.gaps == ()
    assert result.evidence["events"] == (breach.event_id,)
    assert result.evidence["clocks"] == breach.clock_ids
    assert result.evidence["artifacts"] == (notice.artifact_id,)


def test_running_clock_is_partial(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    orchestrator.create_event("BREACH.DETECTED", "dlp", {})

    result = engine.run(GDPR)

    assert result.verdict == Verdict.PARTIAL
    assert 0 < result.confidence < 0.8
    gap_ids = [g.criterion_id for g in result.gaps]
    assert "clock-met" in gap_ids
    assert "notification-linked" in gap_ids
    clock_gap = next(g for g in result.gaps if g.criterion_id == "clock-met")
    assert clock_gap.mandatory
    assert "status" in clock_gap.recommendation


def test_one_breached_clock_blocks_proof(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    _notified_breach(orchestrator, occurred_at=T0 + timedelta(hours=1))
    late = orchestrator.create_event("BREACH.DETECTED", "dlp", {"records": 7}, occurred_at=T0)
    assert orchestrator.clocks.tick(T0 + timedelta(hours=73)).breaches == list(late.clock_ids)

    result = engine.run(GDPR, TimeRange(T0 - timedelta(days=1), utc_now()))

    assert result.verdict != Verdict.PROVEN
    assert len(result.evidence["events"]) == 2
    gap_ids = [g.criterion_id for g in result.gaps]
    assert "clock-met" in gap_ids
    assert "notification-linked" in gap_ids


def test_early_warning_needs_every_clock_met(
    orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine
) -> None:
    first = orchestrator.create_event("INCIDENT.CREATED", "soc", {})
    orchestrator.create_event("INCIDENT.CREATED", "soc", {})
    warning_clock = next(c for c in first.clock_ids if orchestrator.clocks.get_clock(c).clock_type == "NIS2_24H_WARNING")
    notice = orchestrator.create_artifact("NOTIFICATION", "Early warning to CSIRT", b"warning")
    orchestrator.update_clock_status(warning_clock, ClockStatus.MET, evidence_artifact_id=notice.artifact_id)

    result = engine.run("NIS2-23-EARLY-WARNING")

    assert result.verdict == Verdict.PARTIAL
    assert {"clock-met", "warning-linked"} <= {g.criterion_id for g in result.gaps}


def test_breach_without_clock_is_not_proven(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    orchestrator.create_event("BREACH.DETECTED", "dlp", {}, auto_trigger_clocks=False)

    result = engine.run(GDPR)

    assert result.verdict == Verdict.NOT_PROVEN
    assert result.evidence["events"] == ()
    outcome = next(o for o in result.proof_details if o.criterion_id == "breach-recorded")
    assert outcome.support == 0


def test_empty_graph_is_not_proven(engine: ComplianceQueryEngine) -> None:
    result = engine.run(GDPR)

    assert result.verdict == Verdict.NOT_PROVEN
    assert result.confidence == 0.0
    assert result.evidence_count == 0


def test_time_range_bounds_candidates(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    _notified_breach(orchestrator, occurred_at=T0)

    inside = engine.run(GDPR, TimeRange(T0 - timedelta(days=1), utc_now()))
    before = engine.run(GDPR, TimeRange(T0 - timedelta(days=30), T0 - timedelta(days=1)))

    assert inside.verdict == Verdict.PROVEN
    assert before.verdict == Verdict.NOT_PROVEN


def test_results_are_deterministic(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    _notified_breach(orchestrator)
    orchestrator.create_event("BREACH.DETECTED", "dlp", {"records": 3})
    fixed = utc_now()
    engine = ComplianceQueryEngine(store, load_queries(), clock=lambda: fixed)
    window = TimeRange.last_days(fixed, 7)

    first = engine.run(GDPR, window)
    second = engine.run(GDPR, window)

    assert first.to_dict() == second.to_dict()
    assert first.executed_at == fixed
    assert first.evidence["events"] == tuple(sorted(first.evidence["events"]))


# ---------------------------------------------------------------------------
# Governance and AI oversight
# ---------------------------------------------------------------------------


def test_decision_traceability(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine, actor: Actor) -> None:
    event = orchestrator.create_event("INCIDENT.ESCALATED", "soc", {}, severity="HIGH", auto_trigger_clocks=False)
    assert engine.run("GOV-DECISION-TRACEABILITY").verdict == Verdict.NOT_PROVEN

    decision = orchestrator.create_decision(
        "ESCALATION", "escalated", "Exposure of customer records confirmed", actor.actor_id, event.event_id
    )
    result = engine.run("GOV-DECISION-TRACEABILITY")

    assert result.verdict == Verdict.PROVEN
    assert result.evidence["decisions"] == (decision.decision_id,)
    assert result.evidence["actors"] == (actor.actor_id,)


def test_missing_approval_is_a_non_mandatory_gap(
    orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine, actor: Actor
) -> None:
    event = orchestrator.create_event("INCIDENT.ESCALATED", "soc", {}, severity="CRITICAL", auto_trigger_clocks=False)
    orchestrator.create_decision(
        "OVERRIDE",
        "control overridden",
        "Business continuity outweighs the blocking rule",
        actor.actor_id,
        event.event_id,
        requires_approval=True,
    )

    result = engine.run("GOV-DECISION-TRACEABILITY")

    assert result.verdict == Verdict.PROVEN
    assert [g.criterion_id for g in result.gaps] == ["approvals-recorded"]
    assert not result.gaps[0].mandatory


def test_low_severity_events_are_ignored(
    orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine, actor: Actor
) -> None:
    event = orchestrator.create_event("LOGIN.FAILED", "idp", {}, severity="LOW")
    orchestrator.create_decision("APPROVAL", "accepted", "Known user mistyped a password", actor.actor_id, event.event_id)

    assert engine.run("GOV-DECISION-TRACEABILITY").verdict == Verdict.NOT_PROVEN


@pytest.mark.parametrize(
    ("human_verified", "verdict"),
    [(True, Verdict.PROVEN), (False, Verdict.PARTIAL)],
)
def test_ai_oversight(
    orchestrator: EventIngestionOrchestrator,
    engine: ComplianceQueryEngine,
    actor: Actor,
    human_verified: bool,
    verdict: Verdict,
) -> None:
    event = orchestrator.create_event("MODEL.OUTPUT_FLAGGED", "ml", {})
    orchestrator.create_decision(
        "BLOCK",
        "blocked",
        "Model output matched a prohibited category",
        actor.actor_id,
        event.event_id,
        ai_assisted=True,
        ai_model="classifier-v3",
        human_verified=human_verified,
    )

    assert engine.run("AI-ACT-14-HUMAN-OVERSIGHT").verdict == verdict


def test_ai_oversight_without_ai_decisions(engine: ComplianceQueryEngine) -> None:
    result = engine.run("AI-ACT-14-HUMAN-OVERSIGHT")

    assert result.verdict == Verdict.NOT_PROVEN
    assert "Record a human verifier" in next(g for g in result.gaps if g.criterion_id == "human-verified").recommendation


# ---------------------------------------------------------------------------
# Catalog and engine surface
# ---------------------------------------------------------------------------


def test_unknown_query(engine: ComplianceQueryEngine) -> None:
    with pytest.raises(NotFoundError):
        engine.run("NOPE-1")


def test_list_queries_by_regulation(engine: ComplianceQueryEngine) -> None:
    ids = [q.query_id for q in engine.list_queries()]
    assert ids == sorted(ids)
    assert GDPR in ids

    assert [q.query_id for q in engine.list_queries("gdpr")] == [GDPR]
    assert engine.list_queries("SOX") == []


def test_summary_lists_critical_gaps(orchestrator: EventIngestionOrchestrator, engine: ComplianceQueryEngine) -> None:
    _notified_breach(orchestrator)
    results = engine.run_for_regulation("GDPR") + engine.run_for_regulation("DORA")

    summary = engine.summary(results)

    assert summary["overall"] == {"proven": 1, "partial": 0, "not_proven": 1, "total": 2}
    assert summary["by_regulation"]["GDPR"]["proven"] == 1
    assert [g["query_id"] for g in summary["critical_gaps"]] == ["DORA-19-INITIAL-NOTIFICATION"]


def test_integrity_warnings_reach_results(system: EvidenceSystem) -> None:
    last = system.ledger.append("payments", {"seq": 1}, event_type="TRANSACTION.CREATED")
    assert system.run_compliance_query(GDPR).warnings == ()

    system.store.append_event(replace(last, event_id="EVT_LATE", sequence_number=4))

    warnings = system.run_compliance_query(GDPR).warnings
    assert "Stream payments is missing sequences 2-3" in warnings


def test_custom_criterion_registration(monkeypatch: pytest.MonkeyPatch, store: EvidenceStore) -> None:
    monkeypatch.setitem(CUSTOM_CRITERIA, "always", lambda ctx, params: Check(True, "ok", 1))
    query = parse_query(
        {
            "id": "X-1",
            "regulation": "INTERNAL",
            "criteria": [{"id": "c", "type": "CUSTOM", "params": {"name": "always"}, "mandatory": True}],
        }
    )

    result = ComplianceQueryEngine(store, [query]).run("X-1")

    assert result.verdict == Verdict.PROVEN
    with pytest.raises(ValueError):
        register_criterion("", lambda ctx, params: Check(True, "", 0))


def test_unregistered_custom_criterion_is_unmet(store: EvidenceStore) -> None:
    query = parse_query(
        {"id": "X-2", "regulation": "INTERNAL", "criteria": [{"type": "CUSTOM", "params": {"name": "missing"}}]}
    )

    result = ComplianceQueryEngine(store, [query]).run("X-2")

    assert result.proof_details[0].criterion_id == "X-2-c1"
    assert "Unknown custom criterion" in result.proof_details[0].details


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({}, "query id is required"),
        ({"id": "Q"}, "regulation is required"),
        ({"id": "Q", "regulation": "GDPR", "required_confidence": 1.5}, "required_confidence"),
        ({"id": "Q", "regulation": "GDPR", "nodes": [{"alias": "e", "kind": "Widget"}]}, "unknown node kind"),
        (
            {"id": "Q", "regulation": "GDPR", "nodes": [{"alias": "e", "kind": "Event"}], "edges": [{"type": "TRIGGERS", "from": "e", "to": "c"}]},
            "unknown alias",
        ),
        ({"id": "Q", "regulation": "GDPR", "criteria": [{"type": "GUESS"}]}, "unknown criterion type"),
    ],
)
def test_parse_query_errors(raw: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_query(raw)


def test_duplicate_query_ids(tmp_path: Path) -> None:
    path = tmp_path / "queries.yaml"
    path.write_text(
        "queries:\n"
        "  - {id: Q-1, regulation: GDPR}\n"
        "  - {id: Q-1, regulation: DORA}\n",
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="Duplicate query id"):
        load_queries(path)


def test_default_catalog_loads() -> None:
    queries = {q.query_id: q for q in load_queries()}

    assert queries[GDPR].required_confidence == 0.8
    assert queries[GDPR].node_spec("notification").optional
