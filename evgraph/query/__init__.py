"""Compliance queries over the evidence graph."""

from .criteria import CRITERIA, CUSTOM_CRITERIA, EvaluationContext, register_criterion
from .engine import ComplianceQueryEngine, evaluate
from .load import DEFAULT_CATALOG_PATH, load_queries, parse_query
from .schema import (
    ComplianceQuery,
    ComplianceQueryResult,
    CriterionOutcome,
    CriterionType,
    Operator,
    ProofCriterion,
    ProofGap,
    TimeRange,
    Verdict,
)

__all__ = [
    "CRITERIA",
    "CUSTOM_CRITERIA",
    "DEFAULT_CATALOG_PATH",
    "ComplianceQuery",
    "ComplianceQueryEngine",
    "ComplianceQueryResult",
    "CriterionOutcome",
    "CriterionType",
    "EvaluationContext",
    "Operator",
    "ProofCriterion",
    "ProofGap",
    "TimeRange",
    "Verdict",
    "evaluate",
    "load_queries",
    "parse_query",
    "register_criterion",
]
