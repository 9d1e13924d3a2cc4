"""
Event ingestion orchestrator.

The single write path into the evidence graph. An event is sealed by the
ledger and committed together with everything it implies (triggered
clocks, relation edges) as one write set. Side effects that must not
block or roll back ingestion (lifecycle events, alerts, trusted
timestamps) run after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ..alerts import Alert, AlertCategory, AlertDispatcher, AlertSeverity
from ..clocks.engine import ClockEngine
from ..errors import ValidationError
from ..graph.edges import Edge, EdgeType
from ..graph.nodes import (
    Actor,
    ActorType,
    Artifact,
    Clock,
    ClockStatus,
    Control,
    Decision,
    DecisionType,
    Event,
    Node,
    NodeKind,
    NodeRef,
    Severity,
)
from ..graph.store import EvidenceStore, WriteSet
from ..ledger.chain import HashChainLedger, hash_payload
from ..tsa.client import TimestampQueue
from ..util import ensure_utc, new_id, sha256_hex, utc_now

logger = logging.getLogger(__name__)

GOVERNANCE_STREAM = "governance"
AUDIT_STREAM = "audit"
MIN_JUSTIFICATION_LENGTH = 10

# Decisions that get a signed decision record unless the caller says otherwise.
RECORDED_DECISION_TYPES = frozenset({DecisionType.ESCALATION, DecisionType.OVERRIDE, DecisionType.CLOSURE})


@dataclass(frozen=True)
class IngestResult:
    event: Event
    clock_ids: tuple[str, ...] = ()
    edge_ids: tuple[str, ...] = ()

    @property
    def event_id(self) -> str:
        return self.event.event_id

    @property
    def sequence_number(self) -> int:
        return self.event.sequence_number

    @property
    def payload_hash(self) -> str:
        return self.event.payload_hash

    @property
    def previous_hash(self) -> str:
        return self.event.previous_hash

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "sequence_number": self.sequence_number,
            "payload_hash": self.payload_hash,
            "previous_hash": self.previous_hash,
            "clock_ids": list(self.clock_ids),
            "edge_ids": list(self.edge_ids),
        }


@dataclass(frozen=True)
class DecisionResult:
    decision: Decision
    event_id: str
    edge_ids: tuple[str, ...] = ()
    artifact_id: str | None = None

    @property
    def decision_id(self) -> str:
        return self.decision.decision_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "event_id": self.event_id,
            "edge_ids": list(self.edge_ids),
            "artifact_id": self.artifact_id,
        }


def _critical_category(event_type: str) -> AlertCategory:
    if "BREACH" in event_type:
        return AlertCategory.DATA_BREACH
    if "BLOCKED" in event_type:
        return AlertCategory.AI_BLOCKED
    return AlertCategory.SECURITY_INCIDENT


def _lifecycle_name(previous: Clock | None, current: Clock) -> str | None:
    if previous is None:
        return "STARTED"
    if previous.status != current.status:
        if previous.status == ClockStatus.PAUSED and current.status == ClockStatus.RUNNING:
            return "RESUMED"
        return current.status.value
    if current.warning_sent and not previous.warning_sent:
        return "WARNING"
    if current.deadline != previous.deadline:
        return "EXTENDED"
    return None


class EventIngestionOrchestrator:
    def __init__(
        self,
        store: EvidenceStore,
        ledger: HashChainLedger,
        clocks: ClockEngine,
        *,
        alerts: AlertDispatcher | None = None,
        timestamps: TimestampQueue | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.clocks = clocks
        self.policy = clocks.policy
        self.alerts = alerts or clocks.alerts
        self.timestamps = timestamps
        clocks.add_listener(self._record_clock_change)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def create_event(
        self,
        event_type: str,
        source_system: str,
        payload: dict[str, Any],
        *,
        severity: Severity | str | None = None,
        regulatory_tags: list[str] | None = None,
        articles: list[str] | None = None,
        correlation_id: str | None = None,
        causation_id: str | None = None,
        occurred_at: datetime | None = None,
        auto_trigger_clocks: bool = True,
        related_control_id: str | None = None,
        related_artifact_id: str | None = None,
        request_timestamp: bool | None = None,
    ) -> IngestResult:
        """
        Seal an event and commit it with its triggered clocks and edges.

        Severity and regulatory tags are inferred from the clock policy when
        omitted. CRITICAL events raise an alert and, by default, get a
        trusted timestamp requested in the background.

        Raises:
            ValidationError: malformed input or an unknown related node;
                nothing is appended.
        """
        return self._ingest(
            event_type,
            source_system,
            payload,
            severity=severity,
            regulatory_tags=regulatory_tags,
            articles=articles,
            correlation_id=correlation_id,
            causation_id=causation_id,
            occurred_at=occurred_at,
            auto_trigger_clocks=auto_trigger_clocks,
            related_control_id=related_control_id,
            related_artifact_id=related_artifact_id,
            request_timestamp=request_timestamp,
        )

    def _ingest(
        self,
        event_type: str,
        source_system: str,
        payload: dict[str, Any],
        *,
        severity: Severity | str | None = None,
        regulatory_tags: list[str] | None = None,
        articles: list[str] | None = None,
        correlation_id: str | None = None,
        causation_id: str | None = None,
        occurred_at: datetime | None = None,
        auto_trigger_clocks: bool = True,
        related_control_id: str | None = None,
        related_artifact_id: str | None = None,
        request_timestamp: bool | None = None,
        extend: Callable[[Event, WriteSet], None] | None = None,
        raise_alert: bool = True,
    ) -> IngestResult:
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")
        if severity is None and isinstance(event_type, str):
            severity = self.policy.infer_severity(event_type, payload)
        if regulatory_tags is None and isinstance(event_type, str):
            regulatory_tags = list(self.policy.regulations_for(event_type))

        clocks: list[Clock] = []
        edges: list[Edge] = []

        def build(event: Event, ws: WriteSet) -> None:
            if auto_trigger_clocks:
                for clock_type in self.policy.clocks_for(event.event_type, event.payload):
                    clock = ws.add_node(self.clocks.build(clock_type, event.event_id, start_time=event.occurred_at))
                    clocks.append(clock)  # type: ignore[arg-type]
                    edges.append(ws.link(EdgeType.TRIGGERS, event, clock, created_at=event.recorded_at))
            if related_control_id:
                edges.append(ws.link(EdgeType.EVALUATED_BY, event, NodeRef(NodeKind.CONTROL, related_control_id)))
            if related_artifact_id:
                edges.append(ws.link(EdgeType.DOCUMENTED_BY, event, NodeRef(NodeKind.ARTIFACT, related_artifact_id)))
            if causation_id and self.store.get_node(NodeRef(NodeKind.EVENT, causation_id)) is not None:
                edges.append(ws.link(EdgeType.CAUSED_BY, event, NodeRef(NodeKind.EVENT, causation_id)))
            if extend is not None:
                extend(event, ws)

        event = self.ledger.append(
            source_system,
            payload,
            event_type=event_type,
            severity=severity if severity is not None else Severity.INFO,
            occurred_at=occurred_at,
            regulatory_tags=regulatory_tags or (),
            articles=articles or (),
            correlation_id=correlation_id,
            causation_id=causation_id,
            extend=build,
        )

        for clock in clocks:
            self.clocks.notify(None, clock)

        if raise_alert and event.severity == Severity.CRITICAL:
            self.alerts.emit(
                Alert(
                    category=_critical_category(event.event_type),
                    severity=AlertSeverity.CRITICAL,
                    title=f"Critical event {event.event_type}",
                    message=f"{event.source_system} recorded {event.event_type} (sequence {event.sequence_number})",
                    regulation=event.regulatory_tags[0] if event.regulatory_tags else None,
                    related_ids={"event_id": event.event_id},
                )
            )

        wants_timestamp = request_timestamp if request_timestamp is not None else event.severity == Severity.CRITICAL
        if wants_timestamp and self.timestamps is not None:
            self.timestamps.submit(event)

        return IngestResult(
            event=event,
            clock_ids=tuple(c.clock_id for c in clocks),
            edge_ids=tuple(e.edge_id for e in edges),
        )

    def _record_clock_change(self, previous: Clock | None, current: Clock) -> None:
        name = _lifecycle_name(previous, current)
        if name is None:
            return
        self._ingest(
            f"CLOCK.{name}",
            AUDIT_STREAM,
            {
                "clock_id": current.clock_id,
                "clock_type": current.clock_type,
                "regulation": current.regulation,
                "article": current.article,
                "status": current.status.value,
                "deadline": current.deadline.isoformat(),
            },
            correlation_id=current.related_event_id,
            auto_trigger_clocks=False,
            request_timestamp=False,
            raise_alert=False,
        )

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def create_decision(
        self,
        decision_type: DecisionType | str,
        outcome: str,
        justification: str,
        actor_id: str,
        related_event_id: str,
        *,
        regulation: str | None = None,
        articles: list[str] | None = None,
        ai_assisted: bool = False,
        ai_model: str | None = None,
        ai_confidence: float | None = None,
        human_verified: bool | None = None,
        requires_approval: bool = False,
        approver_id: str | None = None,
        approval_level: str | None = None,
        effectiveness_rating: str | None = None,
        create_artifact: bool | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DecisionResult:
        """
        Record a justified decision and the governance event announcing it.

        The decision, its MADE_BY and LEADS_TO edges, the optional decision
        record artifact and the DECISION.<TYPE> event commit together.
        """
        try:
            dtype = DecisionType(decision_type)
        except ValueError:
            raise ValidationError(f"Unknown decision type: {decision_type!r}") from None
        if not isinstance(justification, str) or len(justification.strip()) < MIN_JUSTIFICATION_LENGTH:
            raise ValidationError(
                f"Decision justification is required (at least {MIN_JUSTIFICATION_LENGTH} characters)"
            )
        if ai_confidence is not None and not 0.0 <= ai_confidence <= 1.0:
            raise ValidationError("ai_confidence must be between 0 and 1")

        origin = self.store.require_node(NodeRef(NodeKind.EVENT, related_event_id))
        actor = self.store.require_node(NodeRef(NodeKind.ACTOR, actor_id))

        if human_verified is None:
            human_verified = not ai_assisted
        if regulation is None:
            regulation = next(iter(self.policy.regulations_for(f"DECISION.{dtype.value}")), "")
        now = utc_now()

        decision = Decision(
            decision_id=new_id("DEC"),
            decision_type=dtype,
            regulation=regulation,
            outcome=outcome,
            justification=justification.strip(),
            actor_id=actor_id,
            related_event_id=related_event_id,
            timestamp=now,
            payload_hash=hash_payload(
                {
                    "decision_type": dtype.value,
                    "outcome": outcome,
                    "justification": justification.strip(),
                    "ai_assisted": ai_assisted,
                    "ai_confidence": ai_confidence,
                    "human_verified": human_verified,
                }
            ),
            articles=tuple(articles or ()),
            ai_assisted=ai_assisted,
            ai_model=ai_model,
            ai_confidence=ai_confidence,
            human_verified=human_verified,
            requires_approval=requires_approval,
            approver_id=approver_id,
            approval_level=approval_level,
            effectiveness_rating=effectiveness_rating,
            metadata=metadata or {},
        )

        record = create_artifact if create_artifact is not None else dtype in RECORDED_DECISION_TYPES
        artifact: Artifact | None = None
        if record:
            content = {
                "decision_id": decision.decision_id,
                "outcome": outcome,
                "justification": decision.justification,
                "timestamp": now.isoformat(),
            }
            artifact = Artifact(
                artifact_id=new_id("ART"),
                artifact_type="SIGNED_RECORD",
                name=f"Decision Record - {decision.decision_id}",
                hash=sha256_hex(content),
                created_at=now,
                storage_ref=f"decisions/{decision.decision_id}.json",
                signature_type="NONE",
                related_decision_id=decision.decision_id,
                metadata={"content": content},
            )

        edges: list[Edge] = []

        def extend(_event: Event, ws: WriteSet) -> None:
            ws.add_node(decision)
            edges.append(ws.link(EdgeType.MADE_BY, decision, actor, created_at=now))
            edges.append(ws.link(EdgeType.LEADS_TO, origin, decision, created_at=now))
            if artifact is not None:
                ws.add_node(artifact)
                edges.append(ws.link(EdgeType.PRODUCES, decision, artifact, created_at=now))

        result = self._ingest(
            f"DECISION.{dtype.value}",
            GOVERNANCE_STREAM,
            {"decision_id": decision.decision_id, "decision_type": dtype.value, "outcome": outcome},
            correlation_id=related_event_id,
            auto_trigger_clocks=False,
            extend=extend,
        )
        return DecisionResult(
            decision=decision,
            event_id=result.event_id,
            edge_ids=tuple(e.edge_id for e in edges),
            artifact_id=artifact.artifact_id if artifact else None,
        )

    # -------------------------------------------------------------------------
    # Clocks
    # -------------------------------------------------------------------------

    def create_clock(
        self,
        clock_type: str,
        related_event_id: str,
        *,
        regulation: str | None = None,
        article: str | None = None,
        deadline_hours: float | None = None,
        start_time: datetime | None = None,
    ) -> Clock:
        return self.clocks.create_clock(
            clock_type,
            related_event_id,
            regulation=regulation,
            article=article,
            deadline_hours=deadline_hours,
            start_time=start_time,
        )

    def update_clock_status(
        self,
        clock_id: str,
        status: ClockStatus | str,
        *,
        evidence_artifact_id: str | None = None,
        decision_id: str | None = None,
        reason: str | None = None,
    ) -> Clock:
        return self.clocks.update_status(
            clock_id,
            status,
            evidence_artifact_id=evidence_artifact_id,
            decision_id=decision_id,
            reason=reason,
        )

    def pause_clock(self, clock_id: str, decision_id: str) -> Clock:
        return self.clocks.pause(clock_id, decision_id)

    def resume_clock(self, clock_id: str) -> Clock:
        return self.clocks.resume(clock_id)

    def extend_deadline(self, clock_id: str, hours: float, decision_id: str) -> Clock:
        return self.clocks.extend_deadline(clock_id, hours, decision_id)

    # -------------------------------------------------------------------------
    # Supporting entities
    # -------------------------------------------------------------------------

    def register_actor(
        self,
        name: str,
        actor_type: ActorType | str = ActorType.USER,
        *,
        actor_id: str | None = None,
        role: str | None = None,
        authority_level: int | None = None,
        supervisor_id: str | None = None,
    ) -> Actor:
        if not name or not name.strip():
            raise ValidationError("Actor name is required")
        try:
            atype = ActorType(actor_type)
        except ValueError:
            raise ValidationError(f"Unknown actor type: {actor_type!r}") from None
        actor = Actor(
            actor_id=actor_id or new_id("ACT"),
            actor_type=atype,
            name=name.strip(),
            created_at=utc_now(),
            role=role,
            authority_level=authority_level,
        )
        ws = WriteSet(nodes=[actor])
        if supervisor_id:
            ws.link(EdgeType.SUPERVISES, NodeRef(NodeKind.ACTOR, supervisor_id), actor)
        self.store.commit(ws)
        return actor

    def register_control(
        self,
        name: str,
        control_type: str,
        *,
        control_id: str | None = None,
        applies_to: list[str] | None = None,
        enforced_by: str | None = None,
        status: str = "ACTIVE",
    ) -> Control:
        control = Control(
            control_id=control_id or new_id("CTL"),
            control_type=control_type,
            name=name,
            created_at=utc_now(),
            status=status,
            applies_to=tuple(applies_to or ()),
            enforced_by=enforced_by,
        )
        ws = WriteSet(nodes=[control])
        if enforced_by:
            ws.link(EdgeType.ENFORCED_BY, control, NodeRef(NodeKind.ACTOR, enforced_by))
        self.store.commit(ws)
        return control

    def create_artifact(
        self,
        artifact_type: str,
        name: str,
        content: bytes | str | dict[str, Any],
        *,
        storage_ref: str | None = None,
        related_decision_id: str | None = None,
        related_clock_id: str | None = None,
        signer_id: str | None = None,
        created_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Artifact:
        """Register evidence by content hash. A decision link becomes a PRODUCES edge."""
        now = ensure_utc(created_at) if created_at else utc_now()
        artifact = Artifact(
            artifact_id=new_id("ART"),
            artifact_type=artifact_type,
            name=name,
            hash=sha256_hex(content),
            created_at=now,
            storage_ref=storage_ref,
            signer=signer_id,
            signed_at=now if signer_id else None,
            related_decision_id=related_decision_id,
            related_clock_id=related_clock_id,
            metadata=metadata or {},
        )
        ws = WriteSet(nodes=[artifact])
        if related_decision_id:
            ws.link(EdgeType.PRODUCES, NodeRef(NodeKind.DECISION, related_decision_id), artifact, created_at=now)
        if signer_id:
            ws.link(EdgeType.SIGNED_BY, artifact, NodeRef(NodeKind.ACTOR, signer_id), created_at=now)
        self.store.commit(ws)
        return artifact

    def link(
        self,
        edge_type: EdgeType | str,
        source: Node | NodeRef,
        target: Node | NodeRef,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> Edge:
        return self.store.create_edge(EdgeType(edge_type), source, target, metadata=metadata)
