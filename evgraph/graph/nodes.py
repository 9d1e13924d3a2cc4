"""
Node types of the evidence graph.

The graph is a closed union of six node kinds. Every node is a frozen
dataclass; the only node that changes over time is Clock, and it changes
by replacement (a new Clock with a bumped version), never in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Union

from ..util import parse_timestamp


class NodeKind(str, Enum):
    EVENT = "Event"
    DECISION = "Decision"
    CLOCK = "Clock"
    ACTOR = "Actor"
    CONTROL = "Control"
    ARTIFACT = "Artifact"


class Severity(str, Enum):
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Regulation(str, Enum):
    GDPR = "GDPR"
    DORA = "DORA"
    NIS2 = "NIS2"
    AI_ACT = "AI_ACT"
    INTERNAL = "INTERNAL"


class DecisionType(str, Enum):
    ESCALATION = "ESCALATION"
    APPROVAL = "APPROVAL"
    REJECTION = "REJECTION"
    OVERRIDE = "OVERRIDE"
    BLOCK = "BLOCK"
    ALLOW = "ALLOW"
    CLOSURE = "CLOSURE"
    RISK_ACCEPTANCE = "RISK_ACCEPTANCE"
    CLASSIFICATION = "CLASSIFICATION"
    NOTIFICATION = "NOTIFICATION"
    COMPLIANCE_CHECK = "COMPLIANCE_CHECK"
    AUDIT_TRIGGER = "AUDIT_TRIGGER"
    CLOCK_STOP = "CLOCK_STOP"
    CLOCK_PAUSE = "CLOCK_PAUSE"
    DEADLINE_EXTENSION = "DEADLINE_EXTENSION"


class ClockStatus(str, Enum):
    RUNNING = "RUNNING"
    MET = "MET"
    BREACHED = "BREACHED"
    STOPPED = "STOPPED"
    PAUSED = "PAUSED"

    @property
    def is_terminal(self) -> bool:
        return self in (ClockStatus.MET, ClockStatus.BREACHED, ClockStatus.STOPPED)


class ActorType(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"
    AI_MODEL = "AI_MODEL"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    AUTOMATED_PROCESS = "AUTOMATED_PROCESS"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_timestamp(value)


def _strs(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class NodeRef:
    """Typed pointer to a node: (kind, id)."""

    kind: NodeKind
    node_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.node_id}"

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "id": self.node_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeRef":
        return cls(kind=NodeKind(data["kind"]), node_id=str(data["id"]))


class _NodeMixin:
    kind: ClassVar[NodeKind]
    id_field: ClassVar[str]
    time_field: ClassVar[str]

    @property
    def node_id(self) -> str:
        return getattr(self, self.id_field)

    @property
    def ref(self) -> NodeRef:
        return NodeRef(self.kind, self.node_id)

    @property
    def timestamp_value(self) -> datetime:
        """The time used when filtering this node by a time range."""
        return getattr(self, self.time_field)


@dataclass(frozen=True)
class Event(_NodeMixin):
    """A sealed, hash-chained occurrence. Immutable once created."""

    kind: ClassVar[NodeKind] = NodeKind.EVENT
    id_field: ClassVar[str] = "event_id"
    time_field: ClassVar[str] = "occurred_at"

    event_id: str
    event_type: str
    severity: Severity
    source_system: str
    sequence_number: int
    payload: dict[str, Any]
    payload_hash: str
    previous_hash: str
    occurred_at: datetime
    recorded_at: datetime
    regulatory_tags: tuple[str, ...] = ()
    articles: tuple[str, ...] = ()
    correlation_id: str | None = None
    causation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "severity": self.severity.value,
            "source_system": self.source_system,
            "sequence_number": self.sequence_number,
            "payload": self.payload,
            "payload_hash": self.payload_hash,
            "previous_hash": self.previous_hash,
            "occurred_at": _iso(self.occurred_at),
            "recorded_at": _iso(self.recorded_at),
            "regulatory_tags": list(self.regulatory_tags),
            "articles": list(self.articles),
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        return cls(
            event_id=str(data["event_id"]),
            event_type=str(data["event_type"]),
            severity=Severity(data.get("severity", "INFO")),
            source_system=str(data["source_system"]),
            sequence_number=int(data["sequence_number"]),
            payload=dict(data.get("payload") or {}),
            payload_hash=str(data["payload_hash"]),
            previous_hash=str(data["previous_hash"]),
            occurred_at=_dt(data["occurred_at"]),  # type: ignore[arg-type]
            recorded_at=_dt(data["recorded_at"]),  # type: ignore[arg-type]
            regulatory_tags=_strs(data.get("regulatory_tags")),
            articles=_strs(data.get("articles")),
            correlation_id=data.get("correlation_id"),
            causation_id=data.get("causation_id"),
        )


@dataclass(frozen=True)
class Decision(_NodeMixin):
    """A justified decision, always traceable to one originating event."""

    kind: ClassVar[NodeKind] = NodeKind.DECISION
    id_field: ClassVar[str] = "decision_id"
    time_field: ClassVar[str] = "timestamp"

    decision_id: str
    decision_type: DecisionType
    regulation: str
    outcome: str
    justification: str
    actor_id: str
    related_event_id: str
    timestamp: datetime
    payload_hash: str
    articles: tuple[str, ...] = ()
    ai_assisted: bool = False
    ai_model: str | None = None
    ai_confidence: float | None = None
    human_verified: bool | None = None
    requires_approval: bool = False
    approver_id: str | None = None
    approval_level: str | None = None
    effectiveness_rating: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "decision_type": self.decision_type.value,
            "regulation": self.regulation,
            "outcome": self.outcome,
            "justification": self.justification,
            "actor_id": self.actor_id,
            "related_event_id": self.related_event_id,
            "timestamp": _iso(self.timestamp),
            "payload_hash": self.payload_hash,
            "articles": list(self.articles),
            "ai_assisted": self.ai_assisted,
            "ai_model": self.ai_model,
            "ai_confidence": self.ai_confidence,
            "human_verified": self.human_verified,
            "requires_approval": self.requires_approval,
            "approver_id": self.approver_id,
            "approval_level": self.approval_level,
            "effectiveness_rating": self.effectiveness_rating,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        confidence = data.get("ai_confidence")
        return cls(
            decision_id=str(data["decision_id"]),
            decision_type=DecisionType(data["decision_type"]),
            regulation=str(data.get("regulation", "")),
            outcome=str(data.get("outcome", "")),
            justification=str(data.get("justification", "")),
            actor_id=str(data["actor_id"]),
            related_event_id=str(data["related_event_id"]),
            timestamp=_dt(data["timestamp"]),  # type: ignore[arg-type]
            payload_hash=str(data.get("payload_hash", "")),
            articles=_strs(data.get("articles")),
            ai_assisted=bool(data.get("ai_assisted", False)),
            ai_model=data.get("ai_model"),
            ai_confidence=float(confidence) if confidence is not None else None,
            human_verified=data.get("human_verified"),
            requires_approval=bool(data.get("requires_approval", False)),
            approver_id=data.get("approver_id"),
            approval_level=data.get("approval_level"),
            effectiveness_rating=data.get("effectiveness_rating"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Clock(_NodeMixin):
    """
    A regulatory deadline.

    `version` increases on every transition and is the compare-and-swap
    token used by concurrent monitors.
    """

    kind: ClassVar[NodeKind] = NodeKind.CLOCK
    id_field: ClassVar[str] = "clock_id"
    time_field: ClassVar[str] = "start_time"

    clock_id: str
    clock_type: str
    regulation: str
    article: str
    start_time: datetime
    deadline: datetime
    related_event_id: str
    status: ClockStatus = ClockStatus.RUNNING
    warning_sent: bool = False
    warning_sent_at: datetime | None = None
    met_at: datetime | None = None
    breached_at: datetime | None = None
    stopped_at: datetime | None = None
    stop_reason: str | None = None
    paused_at: datetime | None = None
    paused_seconds: float = 0.0
    evidence_artifact_id: str | None = None
    version: int = 1

    def hours_remaining(self, now: datetime) -> float:
        return (self.deadline - now) / timedelta(hours=1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "clock_id": self.clock_id,
            "clock_type": self.clock_type,
            "regulation": self.regulation,
            "article": self.article,
            "start_time": _iso(self.start_time),
            "deadline": _iso(self.deadline),
            "related_event_id": self.related_event_id,
            "status": self.status.value,
            "warning_sent": self.warning_sent,
            "warning_sent_at": _iso(self.warning_sent_at),
            "met_at": _iso(self.met_at),
            "breached_at": _iso(self.breached_at),
            "stopped_at": _iso(self.stopped_at),
            "stop_reason": self.stop_reason,
            "paused_at": _iso(self.paused_at),
            "paused_seconds": self.paused_seconds,
            "evidence_artifact_id": self.evidence_artifact_id,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Clock":
        return cls(
            clock_id=str(data["clock_id"]),
            clock_type=str(data["clock_type"]),
            regulation=str(data.get("regulation", "")),
            article=str(data.get("article", "")),
            start_time=_dt(data["start_time"]),  # type: ignore[arg-type]
            deadline=_dt(data["deadline"]),  # type: ignore[arg-type]
            related_event_id=str(data["related_event_id"]),
            status=ClockStatus(data.get("status", "RUNNING")),
            warning_sent=bool(data.get("warning_sent", False)),
            warning_sent_at=_dt(data.get("warning_sent_at")),
            met_at=_dt(data.get("met_at")),
            breached_at=_dt(data.get("breached_at")),
            stopped_at=_dt(data.get("stopped_at")),
            stop_reason=data.get("stop_reason"),
            paused_at=_dt(data.get("paused_at")),
            paused_seconds=float(data.get("paused_seconds", 0.0)),
            evidence_artifact_id=data.get("evidence_artifact_id"),
            version=int(data.get("version", 1)),
        )


@dataclass(frozen=True)
class Actor(_NodeMixin):
    kind: ClassVar[NodeKind] = NodeKind.ACTOR
    id_field: ClassVar[str] = "actor_id"
    time_field: ClassVar[str] = "created_at"

    actor_id: str
    actor_type: ActorType
    name: str
    created_at: datetime
    role: str | None = None
    authority_level: int | None = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "actor_type": self.actor_type.value,
            "name": self.name,
            "created_at": _iso(self.created_at),
            "role": self.role,
            "authority_level": self.authority_level,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Actor":
        level = data.get("authority_level")
        return cls(
            actor_id=str(data["actor_id"]),
            actor_type=ActorType(data.get("actor_type", "USER")),
            name=str(data.get("name", "")),
            created_at=_dt(data["created_at"]),  # type: ignore[arg-type]
            role=data.get("role"),
            authority_level=int(level) if level is not None else None,
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class Control(_NodeMixin):
    kind: ClassVar[NodeKind] = NodeKind.CONTROL
    id_field: ClassVar[str] = "control_id"
    time_field: ClassVar[str] = "created_at"

    control_id: str
    control_type: str
    name: str
    created_at: datetime
    status: str = "ACTIVE"
    applies_to: tuple[str, ...] = ()
    enforced_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "control_id": self.control_id,
            "control_type": self.control_type,
            "name": self.name,
            "created_at": _iso(self.created_at),
            "status": self.status,
            "applies_to": list(self.applies_to),
            "enforced_by": self.enforced_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Control":
        return cls(
            control_id=str(data["control_id"]),
            control_type=str(data.get("control_type", "")),
            name=str(data.get("name", "")),
            created_at=_dt(data["created_at"]),  # type: ignore[arg-type]
            status=str(data.get("status", "ACTIVE")),
            applies_to=_strs(data.get("applies_to")),
            enforced_by=data.get("enforced_by"),
        )


@dataclass(frozen=True)
class Artifact(_NodeMixin):
    """Stored evidence (report, notification, signed record) referenced by hash."""

    kind: ClassVar[NodeKind] = NodeKind.ARTIFACT
    id_field: ClassVar[str] = "artifact_id"
    time_field: ClassVar[str] = "created_at"

    artifact_id: str
    artifact_type: str
    name: str
    hash: str
    created_at: datetime
    hash_algorithm: str = "SHA-256"
    storage_ref: str | None = None
    signature: str | None = None
    signature_type: str | None = None
    signer: str | None = None
    signed_at: datetime | None = None
    related_decision_id: str | None = None
    related_clock_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "artifact_type": self.artifact_type,
            "name": self.name,
            "hash": self.hash,
            "created_at": _iso(self.created_at),
            "hash_algorithm": self.hash_algorithm,
            "storage_ref": self.storage_ref,
            "signature": self.signature,
            "signature_type": self.signature_type,
            "signer": self.signer,
            "signed_at": _iso(self.signed_at),
            "related_decision_id": self.related_decision_id,
            "related_clock_id": self.related_clock_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Artifact":
        return cls(
            artifact_id=str(data["artifact_id"]),
            artifact_type=str(data.get("artifact_type", "")),
            name=str(data.get("name", "")),
            hash=str(data.get("hash", "")),
            created_at=_dt(data["created_at"]),  # type: ignore[arg-type]
            hash_algorithm=str(data.get("hash_algorithm", "SHA-256")),
            storage_ref=data.get("storage_ref"),
            signature=data.get("signature"),
            signature_type=data.get("signature_type"),
            signer=data.get("signer"),
            signed_at=_dt(data.get("signed_at")),
            related_decision_id=data.get("related_decision_id"),
            related_clock_id=data.get("related_clock_id"),
            metadata=dict(data.get("metadata") or {}),
        )


Node = Union[Event, Decision, Clock, Actor, Control, Artifact]

NODE_TYPES: dict[NodeKind, type] = {
    NodeKind.EVENT: Event,
    NodeKind.DECISION: Decision,
    NodeKind.CLOCK: Clock,
    NodeKind.ACTOR: Actor,
    NodeKind.CONTROL: Control,
    NodeKind.ARTIFACT: Artifact,
}


def node_from_dict(kind: NodeKind | str, data: dict[str, Any]) -> Node:
    return NODE_TYPES[NodeKind(kind)].from_dict(data)
