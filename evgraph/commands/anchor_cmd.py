"""Merkle anchoring commands."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..graph.records import VerificationStatus
from . import open_system, print_json


def run_anchor_run(cfg: EvidenceConfig, *, output_json: bool = False) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            anchor = system.run_anchor()
    except EvidenceGraphError as e:
        err.print(f"Anchoring failed: {e}", style="bold red")
        return 1
    if anchor is None:
        Console().print("Nothing to anchor")
        return 0
    if output_json:
        print_json(anchor.to_dict())
        return 0
    style = "green" if anchor.verification_status == VerificationStatus.VERIFIED else "yellow"
    Console().print(
        f"{anchor.anchor_id}: {anchor.event_count} event(s), root {anchor.merkle_root[:16]}…, "
        f"{anchor.verification_status.value}",
        style=style,
    )
    return 0


def run_anchor_list(cfg: EvidenceConfig, *, status: str | None = None) -> int:
    console = Console()
    system = open_system(cfg)
    anchors = system.store.anchors(VerificationStatus(status.upper()) if status else None)

    table = Table(title="Anchors")
    table.add_column("anchor_id", style="cyan", no_wrap=True)
    table.add_column("events", justify="right")
    table.add_column("root", style="dim")
    table.add_column("status")
    table.add_column("witnesses")
    table.add_column("attempts", justify="right")
    for a in anchors:
        table.add_row(
            a.anchor_id,
            str(a.event_count),
            a.merkle_root[:16] + "…",
            a.verification_status.value,
            ", ".join(w.provider for w in a.witnesses),
            str(a.attempts),
        )
    console.print(table)
    return 0


def run_anchor_verify(cfg: EvidenceConfig, anchor_id: str, *, output_json: bool = False) -> int:
    err = Console(stderr=True)
    system = open_system(cfg)
    try:
        result = system.anchors.verify_anchor(anchor_id)
    except EvidenceGraphError as e:
        err.print(str(e), style="bold red")
        return 1
    if output_json:
        print_json(result.to_dict())
    elif result.valid:
        Console().print(f"{anchor_id}: root matches", style="green")
    else:
        Console().print(f"{anchor_id}: root MISMATCH (stored {result.stored_root}, computed {result.computed_root})", style="bold red")
    return 0 if result.valid else 1


def run_anchor_prove(cfg: EvidenceConfig, event_id: str) -> int:
    err = Console(stderr=True)
    system = open_system(cfg)
    try:
        proof = system.anchors.prove_inclusion(event_id)
    except EvidenceGraphError as e:
        err.print(str(e), style="bold red")
        return 1
    print_json(proof.to_dict())
    return 0
