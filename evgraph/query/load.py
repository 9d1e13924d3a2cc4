from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ..graph.edges import EdgeType, check_endpoints
from ..graph.nodes import NodeKind
from .schema import (
    ComplianceQuery,
    CriterionType,
    EdgeSpec,
    NodeSpec,
    Operator,
    ProofCriterion,
    TimeConstraint,
)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("default_queries.yaml")

_KINDS = {k.value.lower(): k for k in NodeKind}


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _coerce_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _opt_str(value: Any) -> str | None:
    return str(value) if isinstance(value, str) and value.strip() else None


def _parse_kind(raw: Any, where: str) -> NodeKind:
    kind = _KINDS.get(str(raw or "").strip().lower())
    if kind is None:
        raise ValueError(f"{where}: unknown node kind {raw!r}")
    return kind


def _parse_nodes(raw_nodes: Any, qid: str) -> list[NodeSpec]:
    nodes: list[NodeSpec] = []
    for raw in _coerce_list(raw_nodes):
        if not isinstance(raw, dict):
            continue
        alias = str(raw.get("alias", "")).strip()
        if not alias:
            raise ValueError(f"{qid}: node without alias")
        if any(n.alias == alias for n in nodes):
            raise ValueError(f"{qid}: duplicate alias {alias!r}")
        nodes.append(
            NodeSpec(
                alias=alias,
                kind=_parse_kind(raw.get("kind", raw.get("type")), f"{qid}.{alias}"),
                filters=_coerce_dict(raw.get("filters")),
                optional=bool(raw.get("optional", False)),
                in_time_range=bool(raw.get("in_time_range", True)),
            )
        )
    return nodes


def _parse_edges(raw_edges: Any, qid: str, kinds: dict[str, NodeKind]) -> list[EdgeSpec]:
    edges: list[EdgeSpec] = []
    for raw in _coerce_list(raw_edges):
        if not isinstance(raw, dict):
            continue
        try:
            edge_type = EdgeType(str(raw.get("type", "")).strip().upper())
        except ValueError:
            raise ValueError(f"{qid}: unknown edge type {raw.get('type')!r}") from None
        source = str(raw.get("from", "")).strip()
        target = str(raw.get("to", "")).strip()
        for alias in (source, target):
            if alias not in kinds:
                raise ValueError(f"{qid}: edge {edge_type.value} references unknown alias {alias!r}")
        check_endpoints(edge_type, kinds[source], kinds[target])
        edges.append(EdgeSpec(edge_type=edge_type, source=source, target=target, optional=bool(raw.get("optional", False))))
    return edges


def _parse_time_constraints(raw_items: Any, qid: str, edges: list[EdgeSpec], kinds: dict[str, NodeKind]) -> list[TimeConstraint]:
    constraints: list[TimeConstraint] = []
    for raw in _coerce_list(raw_items):
        if not isinstance(raw, dict):
            continue
        after = _coerce_dict(raw.get("after"))
        alias = str(raw.get("alias", "")).strip()
        anchor = str(after.get("alias", "")).strip()
        if alias not in kinds or anchor not in kinds:
            raise ValueError(f"{qid}: time constraint references unknown alias")
        if not any({e.source, e.target} == {alias, anchor} for e in edges):
            raise ValueError(f"{qid}: time constraint {alias} vs {anchor} needs an edge between them")
        constraints.append(
            TimeConstraint(
                alias=alias,
                field=str(raw.get("field", "")).strip(),
                anchor_alias=anchor,
                anchor_field=str(after.get("field", "")).strip(),
                within_hours=float(raw.get("within_hours", 0)),
            )
        )
    return constraints


def _parse_criteria(raw_items: Any, qid: str, kinds: dict[str, NodeKind]) -> list[ProofCriterion]:
    criteria: list[ProofCriterion] = []
    for i, raw in enumerate(_coerce_list(raw_items), start=1):
        if not isinstance(raw, dict):
            continue
        try:
            ctype = CriterionType(str(raw.get("type", "")).strip().upper())
        except ValueError:
            raise ValueError(f"{qid}: unknown criterion type {raw.get('type')!r}") from None
        params = _coerce_dict(raw.get("params"))
        for key in ("alias", "from", "to"):
            alias = params.get(key)
            if alias is not None and alias not in kinds:
                raise ValueError(f"{qid}: criterion references unknown alias {alias!r}")
        if "operator" in params:
            params = {**params, "operator": Operator(str(params["operator"]).upper()).value}
        if ctype == CriterionType.RELATIONSHIP:
            params = {**params, "edge_type": EdgeType(str(params.get("edge_type", "")).upper()).value}
        criterion_id = str(raw.get("id", f"{qid}-c{i}")).strip()
        criteria.append(
            ProofCriterion(
                criterion_id=criterion_id,
                description=str(raw.get("description", criterion_id)),
                type=ctype,
                params=params,
                weight=float(raw.get("weight", 1.0)),
                mandatory=bool(raw.get("mandatory", False)),
                recommendation=_opt_str(raw.get("recommendation")),
            )
        )
    return criteria


def parse_query(raw: dict[str, Any]) -> ComplianceQuery:
    """
    Build a ComplianceQuery from its YAML mapping.

    Aliases, edge endpoints and criterion references are checked here so a
    bad catalog fails at load time rather than at evaluation time.
    """
    qid = str(raw.get("id", "")).strip()
    if not qid:
        raise ValueError("query id is required")
    regulation = str(raw.get("regulation", "")).strip()
    if not regulation:
        raise ValueError(f"{qid}: regulation is required")

    nodes = _parse_nodes(raw.get("nodes"), qid)
    kinds = {n.alias: n.kind for n in nodes}
    edges = _parse_edges(raw.get("edges"), qid, kinds)

    confidence = float(raw.get("required_confidence", 0.8))
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"{qid}: required_confidence must be between 0 and 1")

    return ComplianceQuery(
        query_id=qid,
        name=str(raw.get("name", qid)),
        regulation=regulation,
        articles=tuple(str(a) for a in _coerce_list(raw.get("articles"))),
        description=_opt_str(raw.get("description")),
        category=_opt_str(raw.get("category")),
        severity=str(raw.get("severity", "MEDIUM")).upper(),
        required_confidence=confidence,
        nodes=tuple(nodes),
        edges=tuple(edges),
        time_constraints=tuple(_parse_time_constraints(raw.get("time_constraints"), qid, edges, kinds)),
        criteria=tuple(_parse_criteria(raw.get("criteria"), qid, kinds)),
    )


def load_queries(path: Path | None = None) -> list[ComplianceQuery]:
    """Load a query catalog from YAML (the bundled default when `path` is None)."""
    path = path or DEFAULT_CATALOG_PATH
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    queries = [parse_query(q) for q in _coerce_list(data.get("queries")) if isinstance(q, dict)]
    seen: set[str] = set()
    for q in queries:
        if q.query_id in seen:
            raise ValueError(f"Duplicate query id: {q.query_id}")
        seen.add(q.query_id)
    return queries
