from __future__ import annotations

from datetime import datetime, timezone

import pytest

from evgraph.alerts import AlertCategory, AlertSeverity
from evgraph.errors import NotFoundError, ValidationError
from evgraph.graph.edges import EdgeType
from evgraph.graph.nodes import Actor, ActorType, ClockStatus, DecisionType, NodeKind, NodeRef, Severity
from evgraph.graph.store import EvidenceStore
from evgraph.ingest.orchestrator import AUDIT_STREAM, GOVERNANCE_STREAM, EventIngestionOrchestrator
from evgraph.util import sha256_hex

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_breach_event_starts_gdpr_clock(orchestrator: EventIngestionOrchestrator, store: EvidenceStore, sink) -> None:
    result = orchestrator.create_event("BREACH.DETECTED", "dlp", {"records": 1200}, occurred_at=T0)

    assert result.event.severity == Severity.CRITICAL
    assert result.event.regulatory_tags == ("GDPR",)
    assert len(result.clock_ids) == 1

    clock = orchestrator.clocks.get_clock(result.clock_ids[0])
    assert clock.clock_type == "GDPR_72H_BREACH"
    assert clock.start_time == T0
    assert clock.related_event_id == result.event_id
    assert store.query_edges(source=result.event.ref, edge_type=EdgeType.TRIGGERS)[0].target == clock.ref

    assert [a.category for a in sink.alerts] == [AlertCategory.DATA_BREACH]
    assert sink.alerts[0].severity == AlertSeverity.CRITICAL
    assert sink.alerts[0].related_ids == {"event_id": result.event_id}


def test_incident_starts_two_clocks(orchestrator: EventIngestionOrchestrator) -> None:
    result = orchestrator.create_event("INCIDENT.CREATED", "soc", {"id": "INC-7"})

    types = sorted(orchestrator.clocks.get_clock(c).clock_type for c in result.clock_ids)
    assert types == ["DORA_4H_INITIAL", "NIS2_24H_WARNING"]
    assert set(result.event.regulatory_tags) == {"GDPR", "DORA", "NIS2"}


def test_auto_trigger_can_be_disabled(orchestrator: EventIngestionOrchestrator) -> None:
    result = orchestrator.create_event("BREACH.DETECTED", "dlp", {}, auto_trigger_clocks=False)

    assert result.clock_ids == ()
    assert orchestrator.clocks.list_clocks() == []


def test_explicit_severity_and_tags_win(orchestrator: EventIngestionOrchestrator, sink) -> None:
    result = orchestrator.create_event(
        "BREACH.DETECTED", "dlp", {}, severity="LOW", regulatory_tags=["INTERNAL"], auto_trigger_clocks=False
    )

    assert result.event.severity == Severity.LOW
    assert result.event.regulatory_tags == ("INTERNAL",)
    assert sink.alerts == []


def test_lifecycle_events_recorded_on_audit_stream(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    result = orchestrator.create_event("BREACH.DETECTED", "dlp", {}, occurred_at=T0)
    orchestrator.update_clock_status(result.clock_ids[0], ClockStatus.MET)

    audit = store.stream_events(AUDIT_STREAM)
    assert [e.event_type for e in audit] == ["CLOCK.STARTED", "CLOCK.MET"]
    assert all(e.correlation_id == result.event_id for e in audit)
    assert audit[1].payload["clock_id"] == result.clock_ids[0]
    assert audit[1].payload["status"] == "MET"


def test_rejected_event_leaves_stream_untouched(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    orchestrator.create_event("INCIDENT.CREATED", "soc", {"id": "INC-1"})
    head = orchestrator.ledger.head("soc")

    with pytest.raises(ValidationError):
        orchestrator.create_event("INCIDENT.CREATED", "soc", {"id": "INC-2"}, related_control_id="CTL_MISSING")

    assert orchestrator.ledger.head("soc") == head
    assert len(store.stream_events("soc")) == 1


def test_related_control_and_causation_edges(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    control = orchestrator.register_control("DLP scanner", "DETECTIVE", applies_to=["GDPR"])
    cause = orchestrator.create_event("LOGIN.FAILED", "idp", {"user": "u1"})

    result = orchestrator.create_event(
        "BREACH.DETECTED",
        "dlp",
        {},
        related_control_id=control.control_id,
        causation_id=cause.event_id,
        auto_trigger_clocks=False,
    )

    assert store.query_edges(source=result.event.ref, edge_type=EdgeType.EVALUATED_BY)[0].target == control.ref
    assert store.query_edges(source=result.event.ref, edge_type=EdgeType.CAUSED_BY)[0].target == cause.event.ref


def test_unknown_causation_is_kept_as_attribute(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    result = orchestrator.create_event("LOGIN.FAILED", "idp", {}, causation_id="EVT_ELSEWHERE")

    assert result.event.causation_id == "EVT_ELSEWHERE"
    assert store.query_edges(source=result.event.ref, edge_type=EdgeType.CAUSED_BY) == []


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def test_create_decision_commits_edges_and_event(
    orchestrator: EventIngestionOrchestrator, store: EvidenceStore, actor: Actor
) -> None:
    event = orchestrator.create_event("INCIDENT.CREATED", "soc", {"id": "INC-1"})

    result = orchestrator.create_decision(
        DecisionType.ESCALATION,
        "escalated to CISO",
        "Customer data exposure confirmed by forensics",
        actor.actor_id,
        event.event_id,
    )

    decision = store.require_node(NodeRef(NodeKind.DECISION, result.decision_id))
    assert decision.human_verified is True
    assert store.query_edges(source=decision.ref, edge_type=EdgeType.MADE_BY)[0].target == actor.ref
    assert store.query_edges(source=event.event.ref, edge_type=EdgeType.LEADS_TO)[0].target == decision.ref

    assert result.artifact_id is not None
    assert store.query_edges(source=decision.ref, edge_type=EdgeType.PRODUCES)[0].target.node_id == result.artifact_id

    gov = store.stream_events(GOVERNANCE_STREAM)
    assert [e.event_type for e in gov] == ["DECISION.ESCALATION"]
    assert gov[0].event_id == result.event_id
    assert gov[0].correlation_id == event.event_id


def test_approval_decision_has_no_record_by_default(orchestrator: EventIngestionOrchestrator, actor: Actor) -> None:
    event = orchestrator.create_event("INCIDENT.CREATED", "soc", {})
    result = orchestrator.create_decision(
        "APPROVAL", "approved", "Change reviewed by two engineers", actor.actor_id, event.event_id
    )

    assert result.artifact_id is None
    assert result.to_dict()["decision_id"] == result.decision_id


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"justification": "too short"}, "justification"),
        ({"justification": "   "}, "justification"),
        ({"decision_type": "SHRUG"}, "Unknown decision type"),
        ({"ai_confidence": 1.5}, "ai_confidence"),
    ],
)
def test_decision_validation(orchestrator: EventIngestionOrchestrator, actor: Actor, store: EvidenceStore, kwargs, message) -> None:
    event = orchestrator.create_event("INCIDENT.CREATED", "soc", {})
    args = {
        "decision_type": "ESCALATION",
        "outcome": "escalated",
        "justification": "Customer data exposure confirmed",
        "actor_id": actor.actor_id,
        "related_event_id": event.event_id,
    }
    args.update(kwargs)

    with pytest.raises(ValidationError, match=message):
        orchestrator.create_decision(**args)
    assert store.query_nodes(NodeKind.DECISION) == []
    assert store.streams() == ["audit", "soc"]


def test_decision_requires_known_actor_and_event(orchestrator: EventIngestionOrchestrator, actor: Actor) -> None:
    event = orchestrator.create_event("INCIDENT.CREATED", "soc", {})

    with pytest.raises(NotFoundError):
        orchestrator.create_decision("ESCALATION", "x", "Long enough justification", "ACT_NOBODY", event.event_id)
    with pytest.raises(NotFoundError):
        orchestrator.create_decision("ESCALATION", "x", "Long enough justification", actor.actor_id, "EVT_NONE")


def test_ai_assisted_decision_defaults_unverified(orchestrator: EventIngestionOrchestrator, store: EvidenceStore, actor: Actor) -> None:
    event = orchestrator.create_event("MODEL.OUTPUT_FLAGGED", "ml", {})

    result = orchestrator.create_decision(
        "BLOCK",
        "blocked",
        "Model output matched a prohibited category",
        actor.actor_id,
        event.event_id,
        ai_assisted=True,
        ai_model="classifier-v3",
        ai_confidence=0.92,
    )

    decision = store.require_node(NodeRef(NodeKind.DECISION, result.decision_id))
    assert decision.ai_assisted
    assert decision.human_verified is False
    assert decision.ai_confidence == 0.92


# ---------------------------------------------------------------------------
# Supporting nodes
# ---------------------------------------------------------------------------


def test_register_actor_with_supervisor(orchestrator: EventIngestionOrchestrator, store: EvidenceStore, actor: Actor) -> None:
    bot = orchestrator.register_actor("triage-bot", ActorType.AI_MODEL, supervisor_id=actor.actor_id)

    assert bot.actor_type == ActorType.AI_MODEL
    assert store.query_edges(target=bot.ref, edge_type=EdgeType.SUPERVISES)[0].source == actor.ref

    with pytest.raises(ValidationError):
        orchestrator.register_actor("  ")
    with pytest.raises(ValidationError):
        orchestrator.register_actor("orphan", supervisor_id="ACT_MISSING")


def test_register_actor_rejects_unknown_type(orchestrator: EventIngestionOrchestrator, store: EvidenceStore) -> None:
    with pytest.raises(ValidationError, match="Unknown actor type"):
        orchestrator.register_actor("Dana Officer", "ROBOT")

    assert store.query_nodes(NodeKind.ACTOR) == []


def test_artifact_is_registered_by_hash(orchestrator: EventIngestionOrchestrator, store: EvidenceStore, actor: Actor) -> None:
    artifact = orchestrator.create_artifact("REPORT", "Initial report", b"report body", signer_id=actor.actor_id)

    assert artifact.hash == sha256_hex(b"report body")
    assert artifact.signed_at is not None
    assert store.query_edges(source=artifact.ref, edge_type=EdgeType.SIGNED_BY)[0].target == actor.ref


def test_link_checks_endpoint_kinds(orchestrator: EventIngestionOrchestrator, actor: Actor) -> None:
    event = orchestrator.create_event("INCIDENT.CREATED", "soc", {})

    with pytest.raises(ValidationError):
        orchestrator.link(EdgeType.MADE_BY, event.event, actor)

    artifact = orchestrator.create_artifact("REPORT", "Post-incident review", "text")
    edge = orchestrator.link("DOCUMENTED_BY", event.event, artifact)
    assert edge.edge_type == EdgeType.DOCUMENTED_BY
