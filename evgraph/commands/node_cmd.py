"""Actors, controls, artifacts and explicit edges."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..graph.edges import ALLOWED_ENDPOINTS, EdgeType
from ..graph.nodes import NodeKind, NodeRef
from . import open_system, print_json


def run_actor_register(
    cfg: EvidenceConfig,
    name: str,
    *,
    actor_type: str = "USER",
    actor_id: str | None = None,
    role: str | None = None,
    supervisor_id: str | None = None,
) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            actor = system.orchestrator.register_actor(
                name, actor_type.upper(), actor_id=actor_id, role=role, supervisor_id=supervisor_id
            )
    except (EvidenceGraphError, ValueError) as e:
        err.print(f"Actor not registered: {e}", style="bold red")
        return 1
    Console().print(actor.actor_id, style="cyan")
    return 0


def run_control_register(
    cfg: EvidenceConfig,
    name: str,
    control_type: str,
    *,
    applies_to: list[str] | None = None,
    enforced_by: str | None = None,
) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            control = system.orchestrator.register_control(
                name, control_type, applies_to=applies_to, enforced_by=enforced_by
            )
    except EvidenceGraphError as e:
        err.print(f"Control not registered: {e}", style="bold red")
        return 1
    Console().print(control.control_id, style="cyan")
    return 0


def run_artifact_create(
    cfg: EvidenceConfig,
    artifact_type: str,
    name: str,
    file: Path,
    *,
    decision_id: str | None = None,
    clock_id: str | None = None,
    signer_id: str | None = None,
) -> int:
    """Register a file as evidence; only its hash and location are stored."""
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            artifact = system.orchestrator.create_artifact(
                artifact_type,
                name,
                file.read_bytes(),
                storage_ref=str(file),
                related_decision_id=decision_id,
                related_clock_id=clock_id,
                signer_id=signer_id,
            )
    except EvidenceGraphError as e:
        err.print(f"Artifact not registered: {e}", style="bold red")
        return 1
    Console().print(f"{artifact.artifact_id}  sha256 {artifact.hash}", style="cyan")
    return 0


def run_link(cfg: EvidenceConfig, edge_type: str, source_id: str, target_id: str) -> int:
    err = Console(stderr=True)
    try:
        etype = EdgeType(edge_type.upper())
    except ValueError:
        err.print(f"Unknown edge type: {edge_type}", style="bold red")
        return 1
    source_kind, target_kind = ALLOWED_ENDPOINTS[etype]
    try:
        with open_system(cfg) as system:
            edge = system.orchestrator.link(
                etype, NodeRef(source_kind, source_id), NodeRef(target_kind, target_id)
            )
    except EvidenceGraphError as e:
        err.print(f"Edge not created: {e}", style="bold red")
        return 1
    Console().print(f"{edge.edge_id}  {edge.source} -{etype.value}-> {edge.target}", style="cyan")
    return 0


def run_node_show(cfg: EvidenceConfig, kind: str, node_id: str) -> int:
    err = Console(stderr=True)
    system = open_system(cfg)
    try:
        node = system.store.require_node(NodeRef(NodeKind(kind.capitalize()), node_id))
    except (EvidenceGraphError, ValueError) as e:
        err.print(str(e), style="bold red")
        return 1
    print_json({"kind": node.kind.value, **node.to_dict()})
    return 0
