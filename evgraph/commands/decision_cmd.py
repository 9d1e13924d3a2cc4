"""Decision commands."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..graph.nodes import NodeKind
from . import open_system, print_json


def run_decision_create(
    cfg: EvidenceConfig,
    decision_type: str,
    outcome: str,
    justification: str,
    actor_id: str,
    event_id: str,
    *,
    regulation: str | None = None,
    ai_assisted: bool = False,
    ai_model: str | None = None,
    ai_confidence: float | None = None,
    human_verified: bool | None = None,
    approver_id: str | None = None,
    output_json: bool = False,
) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            result = system.create_decision(
                decision_type.upper(),
                outcome,
                justification,
                actor_id,
                event_id,
                regulation=regulation,
                ai_assisted=ai_assisted,
                ai_model=ai_model,
                ai_confidence=ai_confidence,
                human_verified=human_verified,
                requires_approval=approver_id is not None,
                approver_id=approver_id,
            )
    except EvidenceGraphError as e:
        err.print(f"Decision rejected: {e}", style="bold red")
        return 1

    if output_json:
        print_json(result.to_dict())
        return 0
    Console().print(f"{result.decision_id}  (event {result.event_id})", style="cyan")
    if result.artifact_id:
        Console().print(f"  decision record: {result.artifact_id}", style="dim")
    return 0


def run_decision_list(cfg: EvidenceConfig, *, event_id: str | None = None) -> int:
    console = Console()
    system = open_system(cfg)
    decisions = system.store.query_nodes(
        NodeKind.DECISION, lambda d: event_id is None or d.related_event_id == event_id  # type: ignore[union-attr]
    )
    decisions.sort(key=lambda d: (d.timestamp_value, d.node_id))

    table = Table(title="Decisions")
    table.add_column("decision_id", style="cyan", no_wrap=True)
    table.add_column("type", style="magenta")
    table.add_column("outcome")
    table.add_column("actor")
    table.add_column("event", style="dim")
    table.add_column("ai")
    for d in decisions:
        ai = ""
        if d.ai_assisted:  # type: ignore[union-attr]
            ai = "verified" if d.human_verified else "unverified"  # type: ignore[union-attr]
        table.add_row(d.node_id, d.decision_type.value, d.outcome, d.actor_id, d.related_event_id, ai)  # type: ignore[union-attr]
    console.print(table)
    return 0
