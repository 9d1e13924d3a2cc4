"""Evidence graph model and store."""

from .edges import ALLOWED_ENDPOINTS, Edge, EdgeType
from .nodes import (
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
    Regulation,
    Severity,
)
from .records import MerkleAnchor, TimestampSubject, TsaTimestamp, VerificationStatus, WitnessRecord
from .store import EvidenceStore, GraphSnapshot, WriteSet

__all__ = [
    "ALLOWED_ENDPOINTS",
    "Actor",
    "ActorType",
    "Artifact",
    "Clock",
    "ClockStatus",
    "Control",
    "Decision",
    "DecisionType",
    "Edge",
    "EdgeType",
    "Event",
    "EvidenceStore",
    "GraphSnapshot",
    "MerkleAnchor",
    "Node",
    "NodeKind",
    "NodeRef",
    "Regulation",
    "Severity",
    "TimestampSubject",
    "TsaTimestamp",
    "VerificationStatus",
    "WitnessRecord",
    "WriteSet",
]
