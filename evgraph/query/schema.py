from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..graph.edges import EdgeType
from ..graph.nodes import NodeKind


class Verdict(str, Enum):
    PROVEN = "PROVEN"
    PARTIAL = "PARTIAL"
    NOT_PROVEN = "NOT_PROVEN"


class CriterionType(str, Enum):
    EXISTS = "EXISTS"
    COUNT = "COUNT"
    VALUE = "VALUE"
    TIMING = "TIMING"
    RELATIONSHIP = "RELATIONSHIP"
    CUSTOM = "CUSTOM"


class Operator(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    IN = "IN"
    CONTAINS = "CONTAINS"
    EXISTS = "EXISTS"


@dataclass(frozen=True)
class NodeSpec:
    alias: str
    kind: NodeKind
    filters: dict[str, Any] = field(default_factory=dict)
    optional: bool = False
    in_time_range: bool = True


@dataclass(frozen=True)
class EdgeSpec:
    edge_type: EdgeType
    source: str
    target: str
    optional: bool = False


@dataclass(frozen=True)
class TimeConstraint:
    """`alias.field` must fall within `within_hours` after `anchor_alias.anchor_field`."""

    alias: str
    field: str
    anchor_alias: str
    anchor_field: str
    within_hours: float


@dataclass(frozen=True)
class ProofCriterion:
    criterion_id: str
    description: str
    type: CriterionType
    params: dict[str, Any] = field(default_factory=dict)
    weight: float = 1.0
    mandatory: bool = False
    recommendation: str | None = None


@dataclass(frozen=True)
class ComplianceQuery:
    query_id: str
    name: str
    regulation: str
    articles: tuple[str, ...] = ()
    description: str | None = None
    category: str | None = None
    severity: str = "MEDIUM"
    required_confidence: float = 0.8
    nodes: tuple[NodeSpec, ...] = ()
    edges: tuple[EdgeSpec, ...] = ()
    time_constraints: tuple[TimeConstraint, ...] = ()
    criteria: tuple[ProofCriterion, ...] = ()

    def node_spec(self, alias: str) -> NodeSpec:
        for spec in self.nodes:
            if spec.alias == alias:
                return spec
        raise KeyError(alias)


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, end: datetime, days: int) -> "TimeRange":
        return cls(start=end - timedelta(days=days), end=end)

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end

    def to_dict(self) -> dict[str, str]:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


@dataclass(frozen=True)
class CriterionOutcome:
    """
    Result of one criterion.

    `support` counts the candidate evidence the criterion examined; zero
    support on a mandatory criterion makes a query NOT_PROVEN.
    """

    criterion_id: str
    description: str
    met: bool
    details: str
    support: int
    weight: float = 1.0
    mandatory: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "criterion": self.description,
            "met": self.met,
            "details": self.details,
            "support": self.support,
            "weight": self.weight,
            "mandatory": self.mandatory,
        }


@dataclass(frozen=True)
class ProofGap:
    criterion_id: str
    description: str
    recommendation: str
    mandatory: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "description": self.description,
            "recommendation": self.recommendation,
            "mandatory": self.mandatory,
        }


@dataclass(frozen=True)
class ComplianceQueryResult:
    query_id: str
    query_name: str
    regulation: str
    articles: tuple[str, ...]
    verdict: Verdict
    confidence: float
    evidence: dict[str, tuple[str, ...]]
    proof_details: tuple[CriterionOutcome, ...]
    gaps: tuple[ProofGap, ...]
    time_range: TimeRange
    executed_at: datetime
    warnings: tuple[str, ...] = ()

    @property
    def evidence_count(self) -> int:
        return sum(len(ids) for ids in self.evidence.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "query_name": self.query_name,
            "regulation": self.regulation,
            "articles": list(self.articles),
            "result": self.verdict.value,
            "confidence": self.confidence,
            "evidence_count": self.evidence_count,
            "evidence": {k: list(v) for k, v in self.evidence.items()},
            "proof_details": [d.to_dict() for d in self.proof_details],
            "gaps": [g.to_dict() for g in self.gaps],
            "time_range": self.time_range.to_dict(),
            "executed_at": self.executed_at.isoformat(),
            "warnings": list(self.warnings),
        }
