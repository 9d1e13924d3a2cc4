from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from ..graph.edges import EdgeType
from ..graph.nodes import Decision, Node
from ..graph.store import GraphSnapshot
from .fields import as_datetime, contains, equals, field_value, greater_than, less_than
from .schema import ComplianceQuery, CriterionType, Operator, ProofCriterion, TimeRange


@dataclass(frozen=True)
class EvaluationContext:
    snapshot: GraphSnapshot
    resolved: dict[str, list[Node]]
    time_range: TimeRange
    query: ComplianceQuery

    def nodes(self, alias: str) -> list[Node]:
        return self.resolved.get(alias, [])

    def linked(self, source: Node, target: Node) -> bool:
        """True when any edge the query declares connects the two nodes."""
        for spec in self.query.edges:
            if self.snapshot.connected(source.ref, spec.edge_type, target.ref):
                return True
            if self.snapshot.connected(target.ref, spec.edge_type, source.ref):
                return True
        return False


@dataclass(frozen=True)
class Check:
    met: bool
    details: str
    support: int


CriterionFn = Callable[[EvaluationContext, dict[str, Any]], Check]


def compare(actual: Any, operator: Operator, expected: Any) -> bool:
    if operator == Operator.EQUALS:
        return equals(actual, expected)
    if operator == Operator.NOT_EQUALS:
        return not equals(actual, expected)
    if operator == Operator.GREATER_THAN:
        return greater_than(actual, expected)
    if operator == Operator.LESS_THAN:
        return less_than(actual, expected)
    if operator == Operator.IN:
        return any(equals(actual, v) for v in (expected or []))
    if operator == Operator.CONTAINS:
        return contains(actual, expected)
    if operator == Operator.EXISTS:
        return (actual is not None) == (expected is None or bool(expected))
    return False


def _quantify(results: list[bool], quantifier: str) -> bool:
    if not results:
        return False
    return all(results) if quantifier == "all" else any(results)


# ---------------------------------------------------------------------------
# Built-in criterion types
# ---------------------------------------------------------------------------


def criterion_exists(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    alias = str(params.get("alias", ""))
    count = len(ctx.nodes(alias))
    if count:
        return Check(True, f"Found {count} {alias} record(s)", count)
    return Check(False, f"No {alias} records found", 0)


def criterion_count(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    alias = str(params.get("alias", ""))
    min_count = int(params.get("min_count", 1))
    max_count = params.get("max_count")
    count = len(ctx.nodes(alias))
    met = count >= min_count and (max_count is None or count <= int(max_count))
    bound = f"{min_count}..{max_count}" if max_count is not None else f">= {min_count}"
    return Check(met, f"Found {count} {alias} record(s), expected {bound}", count)


def criterion_value(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    alias = str(params.get("alias", ""))
    path = str(params.get("field", ""))
    operator = Operator(str(params.get("operator", "EQUALS")).upper())
    expected = params.get("value")
    quantifier = str(params.get("quantifier", "any")).lower()

    nodes = ctx.nodes(alias)
    results = [compare(field_value(n, path), operator, expected) for n in nodes]
    met = _quantify(results, quantifier)
    matched = sum(results)
    return Check(
        met,
        f"{matched} of {len(nodes)} {alias} record(s) have {path} {operator.value} {expected!r}",
        len(nodes),
    )


def _timing_pairs(ctx: EvaluationContext, params: dict[str, Any]) -> tuple[list[bool], str]:
    alias = str(params.get("alias", ""))
    path = str(params.get("field", ""))
    nodes = ctx.nodes(alias)

    if "before_field" in params:
        other = str(params["before_field"])
        results = []
        for node in nodes:
            value, limit = as_datetime(field_value(node, path)), as_datetime(field_value(node, other))
            results.append(value is not None and limit is not None and value <= limit)
        return results, f"{alias}.{path} <= {alias}.{other}"

    within = timedelta(hours=float(params.get("within_hours", 0)))
    anchor = params.get("anchor")
    if isinstance(anchor, dict):
        anchor_alias = str(anchor.get("alias", ""))
        anchor_path = str(anchor.get("field", ""))
        anchors = ctx.nodes(anchor_alias)
        results = []
        for node in nodes:
            value = as_datetime(field_value(node, path))
            ok = False
            for other in anchors:
                start = as_datetime(field_value(other, anchor_path))
                if value is None or start is None or not ctx.linked(node, other):
                    continue
                if start <= value <= start + within:
                    ok = True
                    break
            results.append(ok)
        return results, f"{alias}.{path} within {within} of {anchor_alias}.{anchor_path}"

    # Window is relative to the end of the evaluated range, not wall clock.
    window_start = ctx.time_range.end - within
    results = []
    for node in nodes:
        value = as_datetime(field_value(node, path))
        results.append(value is not None and window_start <= value <= ctx.time_range.end)
    return results, f"{alias}.{path} within {within} of range end"


def criterion_timing(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    quantifier = str(params.get("quantifier", "all")).lower()
    results, description = _timing_pairs(ctx, params)
    met = _quantify(results, quantifier)
    return Check(met, f"{sum(results)} of {len(results)} satisfy {description}", len(results))


def criterion_relationship(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    edge_type = EdgeType(str(params.get("edge_type", "")).upper())
    sources = ctx.nodes(str(params.get("from", "")))
    target_alias = str(params.get("to", ""))
    targets = {n.ref for n in ctx.nodes(target_alias)}
    quantifier = str(params.get("quantifier", "any")).lower()

    results = [any(e.target in targets for e in ctx.snapshot.edges_from(s.ref, edge_type)) for s in sources]
    met = _quantify(results, quantifier)
    return Check(
        met,
        f"{sum(results)} of {len(sources)} {params.get('from')} record(s) have {edge_type.value} -> {target_alias}",
        len(sources),
    )


def criterion_custom(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    name = str(params.get("name", ""))
    fn = CUSTOM_CRITERIA.get(name)
    if fn is None:
        return Check(False, f"Unknown custom criterion {name!r}", 0)
    return fn(ctx, params)


# ---------------------------------------------------------------------------
# Custom criteria
# ---------------------------------------------------------------------------


def _decisions(ctx: EvaluationContext, params: dict[str, Any]) -> list[Decision]:
    alias = params.get("alias")
    if alias:
        nodes = ctx.nodes(str(alias))
    else:
        nodes = [n for spec in ctx.query.nodes for n in ctx.nodes(spec.alias) if isinstance(n, Decision)]
    return [n for n in nodes if isinstance(n, Decision)]


def custom_ai_decisions_human_verified(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    """Every AI-assisted decision carries human verification."""
    ai = [d for d in _decisions(ctx, params) if d.ai_assisted]
    if not ai:
        return Check(False, "No AI-assisted decisions found", 0)
    unverified = sorted(d.decision_id for d in ai if not d.human_verified)
    if unverified:
        return Check(False, f"{len(unverified)} AI-assisted decision(s) lack human verification: {', '.join(unverified)}", len(ai))
    return Check(True, f"All {len(ai)} AI-assisted decision(s) human verified", len(ai))


def custom_decisions_justified(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    min_length = int(params.get("min_length", 10))
    decisions = _decisions(ctx, params)
    if not decisions:
        return Check(False, "No decisions found", 0)
    weak = sorted(d.decision_id for d in decisions if len(d.justification.strip()) < min_length)
    if weak:
        return Check(False, f"{len(weak)} decision(s) with insufficient justification: {', '.join(weak)}", len(decisions))
    return Check(True, f"All {len(decisions)} decision(s) justified", len(decisions))


def custom_approvals_present(ctx: EvaluationContext, params: dict[str, Any]) -> Check:
    pending = [d for d in _decisions(ctx, params) if d.requires_approval]
    if not pending:
        return Check(True, "No decisions require approval", 0)
    missing = sorted(d.decision_id for d in pending if not d.approver_id)
    if missing:
        return Check(False, f"{len(missing)} decision(s) missing an approver: {', '.join(missing)}", len(pending))
    return Check(True, f"All {len(pending)} decision(s) approved", len(pending))


CUSTOM_CRITERIA: dict[str, CriterionFn] = {
    "ai_decisions_human_verified": custom_ai_decisions_human_verified,
    "decisions_justified": custom_decisions_justified,
    "approvals_present": custom_approvals_present,
}


def register_criterion(name: str, fn: CriterionFn) -> None:
    """Register a named CUSTOM criterion."""
    if not name:
        raise ValueError("criterion name is required")
    CUSTOM_CRITERIA[name] = fn


CRITERIA: dict[CriterionType, CriterionFn] = {
    CriterionType.EXISTS: criterion_exists,
    CriterionType.COUNT: criterion_count,
    CriterionType.VALUE: criterion_value,
    CriterionType.TIMING: criterion_timing,
    CriterionType.RELATIONSHIP: criterion_relationship,
    CriterionType.CUSTOM: criterion_custom,
}


def evaluate_criterion(ctx: EvaluationContext, criterion: ProofCriterion) -> Check:
    return CRITERIA[criterion.type](ctx, criterion.params)


def recommendation_for(criterion: ProofCriterion) -> str:
    if criterion.recommendation:
        return criterion.recommendation
    desc = criterion.description.lower()
    params = criterion.params
    if criterion.type == CriterionType.EXISTS:
        return f"Create or document the required {desc}"
    if criterion.type == CriterionType.COUNT:
        return f"Ensure at least {params.get('min_count', 1)} records exist for {desc}"
    if criterion.type == CriterionType.VALUE:
        return f"Update the {params.get('field', 'value')} field to meet the expected value"
    if criterion.type == CriterionType.TIMING:
        if "within_hours" in params:
            return f"Perform the activity within the required {params['within_hours']} hour window"
        return f"Complete {desc} before the deadline"
    if criterion.type == CriterionType.RELATIONSHIP:
        return f"Link the evidence with an explicit {params.get('edge_type')} edge ({desc})"
    return f"Address the gap in {desc}"
