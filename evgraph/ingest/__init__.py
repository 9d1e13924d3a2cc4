"""Event ingestion: the single write path into the evidence graph."""

from .orchestrator import (
    AUDIT_STREAM,
    GOVERNANCE_STREAM,
    DecisionResult,
    EventIngestionOrchestrator,
    IngestResult,
)

__all__ = [
    "AUDIT_STREAM",
    "GOVERNANCE_STREAM",
    "DecisionResult",
    "EventIngestionOrchestrator",
    "IngestResult",
]
