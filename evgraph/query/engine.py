"""
Compliance query engine.

A query is a small subgraph pattern (aliases, edges, time constraints)
plus weighted proof criteria. Evaluation runs against one GraphSnapshot:

  1. resolve each alias to the nodes that match its kind and filters,
  2. prune candidates through required edges and time constraints until
     nothing changes,
  3. score each criterion and derive the verdict,
  4. collect gaps and the supporting evidence ids.

Evaluation is a pure function of (query, snapshot, time range); the same
inputs always produce the same result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from ..errors import NotFoundError
from ..graph.nodes import Node, NodeKind
from ..graph.store import EvidenceStore, GraphSnapshot
from ..util import ensure_utc, utc_now
from .criteria import EvaluationContext, evaluate_criterion, recommendation_for
from .fields import as_datetime, field_value, matches_filters
from .schema import (
    ComplianceQuery,
    ComplianceQueryResult,
    CriterionOutcome,
    EdgeSpec,
    ProofGap,
    TimeRange,
    Verdict,
)

logger = logging.getLogger(__name__)

EVIDENCE_BUCKETS: dict[NodeKind, str] = {
    NodeKind.EVENT: "events",
    NodeKind.DECISION: "decisions",
    NodeKind.CLOCK: "clocks",
    NodeKind.ARTIFACT: "artifacts",
    NodeKind.ACTOR: "actors",
    NodeKind.CONTROL: "controls",
}


# ---------------------------------------------------------------------------
# Pattern resolution
# ---------------------------------------------------------------------------


def _resolve_aliases(query: ComplianceQuery, snapshot: GraphSnapshot, time_range: TimeRange) -> dict[str, list[Node]]:
    resolved: dict[str, list[Node]] = {}
    for spec in query.nodes:
        nodes = []
        for node in snapshot.nodes_of(spec.kind):
            if spec.in_time_range and not time_range.contains(node.timestamp_value):
                continue
            if matches_filters(node, spec.filters):
                nodes.append(node)
        resolved[spec.alias] = nodes
    return resolved


def _linked(snapshot: GraphSnapshot, specs: list[EdgeSpec], a: Node, b: Node) -> bool:
    for spec in specs:
        if snapshot.connected(a.ref, spec.edge_type, b.ref) or snapshot.connected(b.ref, spec.edge_type, a.ref):
            return True
    return False


def _prune(query: ComplianceQuery, snapshot: GraphSnapshot, resolved: dict[str, list[Node]]) -> dict[str, list[Node]]:
    optional = {spec.alias for spec in query.nodes if spec.optional}
    required_edges = [
        e for e in query.edges if not e.optional and e.source not in optional and e.target not in optional
    ]
    current = {alias: list(nodes) for alias, nodes in resolved.items()}

    changed = True
    while changed:
        changed = False
        for spec in required_edges:
            targets = {n.ref for n in current[spec.target]}
            kept_sources = [
                s for s in current[spec.source]
                if any(e.target in targets for e in snapshot.edges_from(s.ref, spec.edge_type))
            ]
            sources = {n.ref for n in kept_sources}
            kept_targets = [
                t for t in current[spec.target]
                if any(e.source in sources for e in snapshot.edges_to(t.ref, spec.edge_type))
            ]
            if len(kept_sources) != len(current[spec.source]) or len(kept_targets) != len(current[spec.target]):
                current[spec.source] = kept_sources
                current[spec.target] = kept_targets
                changed = True

        for tc in query.time_constraints:
            window = timedelta(hours=tc.within_hours)
            between = [e for e in query.edges if {e.source, e.target} == {tc.alias, tc.anchor_alias}]
            kept = []
            for node in current[tc.alias]:
                value = as_datetime(field_value(node, tc.field))
                if value is None:
                    continue
                for anchor in current[tc.anchor_alias]:
                    start = as_datetime(field_value(anchor, tc.anchor_field))
                    if start is not None and _linked(snapshot, between, node, anchor) and start <= value <= start + window:
                        kept.append(node)
                        break
            if len(kept) != len(current[tc.alias]):
                current[tc.alias] = kept
                changed = True
    return current


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _verdict(outcomes: list[CriterionOutcome], confidence: float, required: float) -> Verdict:
    mandatory = [o for o in outcomes if o.mandatory]
    if any(o.support == 0 for o in mandatory):
        return Verdict.NOT_PROVEN
    if all(o.met for o in mandatory) and confidence >= required:
        return Verdict.PROVEN
    return Verdict.PARTIAL


def _collect_evidence(resolved: dict[str, list[Node]]) -> dict[str, tuple[str, ...]]:
    buckets: dict[str, set[str]] = {name: set() for name in EVIDENCE_BUCKETS.values()}
    for nodes in resolved.values():
        for node in nodes:
            buckets[EVIDENCE_BUCKETS[node.kind]].add(node.node_id)
    return {name: tuple(sorted(ids)) for name, ids in buckets.items()}


def evaluate(
    query: ComplianceQuery,
    snapshot: GraphSnapshot,
    time_range: TimeRange,
    *,
    executed_at: datetime | None = None,
    warnings: Iterable[str] = (),
) -> ComplianceQueryResult:
    resolved = _prune(query, snapshot, _resolve_aliases(query, snapshot, time_range))
    ctx = EvaluationContext(snapshot=snapshot, resolved=resolved, time_range=time_range, query=query)

    outcomes: list[CriterionOutcome] = []
    gaps: list[ProofGap] = []
    for criterion in query.criteria:
        check = evaluate_criterion(ctx, criterion)
        outcomes.append(
            CriterionOutcome(
                criterion_id=criterion.criterion_id,
                description=criterion.description,
                met=check.met,
                details=check.details,
                support=check.support,
                weight=criterion.weight,
                mandatory=criterion.mandatory,
            )
        )
        if not check.met:
            gaps.append(
                ProofGap(
                    criterion_id=criterion.criterion_id,
                    description=criterion.description,
                    recommendation=recommendation_for(criterion),
                    mandatory=criterion.mandatory,
                )
            )

    total_weight = sum(o.weight for o in outcomes)
    confidence = sum(o.weight for o in outcomes if o.met) / total_weight if total_weight else 0.0
    confidence = round(confidence, 4)
    verdict = _verdict(outcomes, confidence, query.required_confidence)

    return ComplianceQueryResult(
        query_id=query.query_id,
        query_name=query.name,
        regulation=query.regulation,
        articles=query.articles,
        verdict=verdict,
        confidence=confidence,
        evidence=_collect_evidence(resolved),
        proof_details=tuple(outcomes),
        gaps=tuple(gaps),
        time_range=time_range,
        executed_at=executed_at or time_range.end,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ComplianceQueryEngine:
    def __init__(
        self,
        store: EvidenceStore,
        queries: Iterable[ComplianceQuery],
        *,
        default_range_days: int = 365,
        integrity_warnings: Callable[[], list[str]] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self._queries = {q.query_id: q for q in queries}
        self.default_range_days = default_range_days
        self._integrity_warnings = integrity_warnings
        self._clock = clock

    def get_query(self, query_id: str) -> ComplianceQuery:
        query = self._queries.get(query_id)
        if query is None:
            raise NotFoundError(f"Unknown compliance query: {query_id}")
        return query

    def list_queries(self, regulation: str | None = None) -> list[ComplianceQuery]:
        queries = sorted(self._queries.values(), key=lambda q: q.query_id)
        if regulation:
            queries = [q for q in queries if q.regulation.upper() == regulation.upper()]
        return queries

    def default_range(self) -> TimeRange:
        return TimeRange.last_days(self._clock(), self.default_range_days)

    def run(self, query_id: str, time_range: TimeRange | None = None) -> ComplianceQueryResult:
        query = self.get_query(query_id)
        if time_range is None:
            time_range = self.default_range()
        else:
            time_range = TimeRange(ensure_utc(time_range.start), ensure_utc(time_range.end))
        warnings = self._integrity_warnings() if self._integrity_warnings else []
        result = evaluate(query, self.store.snapshot(), time_range, executed_at=self._clock(), warnings=warnings)
        logger.info("Query %s: %s (confidence %.2f)", query_id, result.verdict.value, result.confidence)
        return result

    def run_for_regulation(self, regulation: str, time_range: TimeRange | None = None) -> list[ComplianceQueryResult]:
        results = []
        for query in self.list_queries(regulation):
            try:
                results.append(self.run(query.query_id, time_range))
            except Exception:
                logger.exception("Query %s failed", query.query_id)
        return results

    def summary(self, results: Iterable[ComplianceQueryResult]) -> dict[str, Any]:
        results = list(results)
        overall = {"proven": 0, "partial": 0, "not_proven": 0, "total": len(results)}
        by_regulation: dict[str, dict[str, int]] = {}
        critical_gaps: list[dict[str, Any]] = []
        for result in results:
            key = result.verdict.value.lower()
            overall[key] += 1
            bucket = by_regulation.setdefault(result.regulation, {"proven": 0, "partial": 0, "not_proven": 0, "total": 0})
            bucket[key] += 1
            bucket["total"] += 1
            query = self._queries.get(result.query_id)
            if query is not None and query.severity == "CRITICAL" and result.verdict != Verdict.PROVEN:
                critical_gaps.append(
                    {
                        "query_id": result.query_id,
                        "query_name": result.query_name,
                        "result": result.verdict.value,
                        "gaps": [g.to_dict() for g in result.gaps],
                    }
                )
        return {"overall": overall, "by_regulation": by_regulation, "critical_gaps": critical_gaps}
