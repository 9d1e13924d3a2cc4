"""Event ingestion and inspection commands."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..graph.edges import EdgeType
from ..graph.nodes import Event, NodeKind, NodeRef
from . import open_system, print_json


def _parse_payload(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise EvidenceGraphError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise EvidenceGraphError("Payload must be a JSON object")
    return data


def run_event_create(
    cfg: EvidenceConfig,
    event_type: str,
    source_system: str,
    *,
    payload: str | None = None,
    severity: str | None = None,
    tags: list[str] | None = None,
    articles: list[str] | None = None,
    correlation_id: str | None = None,
    causation_id: str | None = None,
    control_id: str | None = None,
    auto_trigger_clocks: bool = True,
    output_json: bool = False,
) -> int:
    err = Console(stderr=True)
    console = Console()
    try:
        with open_system(cfg) as system:
            result = system.create_event(
                event_type,
                source_system,
                _parse_payload(payload),
                severity=severity,
                regulatory_tags=tags or None,
                articles=articles or None,
                correlation_id=correlation_id,
                causation_id=causation_id,
                related_control_id=control_id,
                auto_trigger_clocks=auto_trigger_clocks,
            )
    except EvidenceGraphError as e:
        err.print(f"Event rejected: {e}", style="bold red")
        return 1

    if output_json:
        print_json(result.to_dict())
        return 0
    console.print(f"{result.event_id}  {source_system}#{result.sequence_number}", style="cyan")
    console.print(f"  hash: {result.payload_hash}", style="dim")
    for clock_id in result.clock_ids:
        console.print(f"  clock started: {clock_id}")
    return 0


def run_event_list(cfg: EvidenceConfig, *, source_system: str | None = None, limit: int = 50) -> int:
    console = Console()
    system = open_system(cfg)
    streams = [source_system] if source_system else system.store.streams()
    events: list[Event] = []
    for stream in streams:
        events.extend(system.store.stream_events(stream))
    events.sort(key=lambda e: (e.recorded_at, e.source_system, e.sequence_number))
    if limit:
        events = events[-limit:]

    table = Table(title="Events")
    table.add_column("event_id", style="cyan", no_wrap=True)
    table.add_column("stream")
    table.add_column("seq", justify="right")
    table.add_column("type", style="magenta")
    table.add_column("severity")
    table.add_column("occurred_at", style="dim")
    for e in events:
        table.add_row(
            e.event_id,
            e.source_system,
            str(e.sequence_number),
            e.event_type,
            e.severity.value,
            e.occurred_at.isoformat(),
        )
    console.print(table)
    return 0


def run_event_show(cfg: EvidenceConfig, event_id: str) -> int:
    err = Console(stderr=True)
    system = open_system(cfg)
    ref = NodeRef(NodeKind.EVENT, event_id)
    event = system.store.get_node(ref)
    if event is None:
        err.print(f"Event not found: {event_id}", style="bold red")
        return 1
    data = {
        "event": event.to_dict(),
        "edges_out": [e.to_dict() for e in system.store.query_edges(source=ref)],
        "edges_in": [e.to_dict() for e in system.store.query_edges(target=ref)],
        "clocks": [e.target.node_id for e in system.store.query_edges(source=ref, edge_type=EdgeType.TRIGGERS)],
        "timestamps": [t.to_dict() for t in system.store.timestamps_for(event_id)],
    }
    anchor = system.store.anchor_for_event(event_id)
    data["anchor_id"] = anchor.anchor_id if anchor else None
    print_json(data)
    return 0
