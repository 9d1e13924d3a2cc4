"""
Typed edges and the closed table of allowed endpoints.

Edges are the only way two nodes are considered related; the query
engine never infers relationships from matching ids or timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ValidationError
from ..util import parse_timestamp
from .nodes import NodeKind, NodeRef


class EdgeType(str, Enum):
    TRIGGERS = "TRIGGERS"
    EVALUATED_BY = "EVALUATED_BY"
    LEADS_TO = "LEADS_TO"
    DOCUMENTED_BY = "DOCUMENTED_BY"
    CAUSED_BY = "CAUSED_BY"
    FOLLOWS_FROM = "FOLLOWS_FROM"
    MADE_BY = "MADE_BY"
    PRODUCES = "PRODUCES"
    OVERRIDES = "OVERRIDES"
    REQUIRES_APPROVAL = "REQUIRES_APPROVAL"
    ENFORCED_BY = "ENFORCED_BY"
    MONITORS = "MONITORS"
    TESTED_BY = "TESTED_BY"
    FULFILLED_BY = "FULFILLED_BY"
    STOPPED_BY = "STOPPED_BY"
    EXTENDED_BY = "EXTENDED_BY"
    BREACHED_DUE_TO = "BREACHED_DUE_TO"
    SUPERVISES = "SUPERVISES"
    DELEGATED_TO = "DELEGATED_TO"
    SIGNED_BY = "SIGNED_BY"
    VERIFIED_BY = "VERIFIED_BY"


_E = NodeKind.EVENT
_D = NodeKind.DECISION
_C = NodeKind.CLOCK
_A = NodeKind.ACTOR
_K = NodeKind.CONTROL
_R = NodeKind.ARTIFACT

ALLOWED_ENDPOINTS: dict[EdgeType, tuple[NodeKind, NodeKind]] = {
    EdgeType.TRIGGERS: (_E, _C),
    EdgeType.EVALUATED_BY: (_E, _K),
    EdgeType.LEADS_TO: (_E, _D),
    EdgeType.DOCUMENTED_BY: (_E, _R),
    EdgeType.CAUSED_BY: (_E, _E),
    EdgeType.FOLLOWS_FROM: (_E, _E),
    EdgeType.MADE_BY: (_D, _A),
    EdgeType.PRODUCES: (_D, _R),
    EdgeType.OVERRIDES: (_D, _D),
    EdgeType.REQUIRES_APPROVAL: (_D, _D),
    EdgeType.ENFORCED_BY: (_K, _A),
    EdgeType.MONITORS: (_K, _E),
    EdgeType.TESTED_BY: (_K, _A),
    EdgeType.FULFILLED_BY: (_C, _R),
    EdgeType.STOPPED_BY: (_C, _D),
    EdgeType.EXTENDED_BY: (_C, _D),
    EdgeType.BREACHED_DUE_TO: (_C, _E),
    EdgeType.SUPERVISES: (_A, _A),
    EdgeType.DELEGATED_TO: (_A, _A),
    EdgeType.SIGNED_BY: (_R, _A),
    EdgeType.VERIFIED_BY: (_R, _K),
}


def check_endpoints(edge_type: EdgeType, source: NodeKind, target: NodeKind) -> None:
    expected = ALLOWED_ENDPOINTS[edge_type]
    if (source, target) != expected:
        raise ValidationError(
            f"{edge_type.value} must connect {expected[0].value} -> {expected[1].value}, "
            f"got {source.value} -> {target.value}"
        )


@dataclass(frozen=True)
class Edge:
    edge_id: str
    edge_type: EdgeType
    source: NodeRef
    target: NodeRef
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        check_endpoints(self.edge_type, self.source.kind, self.target.kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "edge_type": self.edge_type.value,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Edge":
        return cls(
            edge_id=str(data["edge_id"]),
            edge_type=EdgeType(data["edge_type"]),
            source=NodeRef.from_dict(data["source"]),
            target=NodeRef.from_dict(data["target"]),
            created_at=parse_timestamp(data["created_at"]),
            metadata=dict(data.get("metadata") or {}),
        )
