"""Hash-chain integrity commands."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from . import open_system, print_json


def run_chain_validate(
    cfg: EvidenceConfig,
    *,
    source_system: str | None = None,
    from_seq: int | None = None,
    to_seq: int | None = None,
    output_json: bool = False,
) -> int:
    system = open_system(cfg)
    result = system.validate_chain(source_system, from_seq, to_seq)
    if output_json:
        print_json(result.to_dict())
        return 0 if result.valid else 1

    console = Console()
    if result.valid:
        console.print(f"Chain valid: {result.checked_events} of {result.total_events} event(s) checked", style="green")
        return 0
    console.print(f"Chain INVALID in {result.source_system}: {result.error}", style="bold red")
    return 1


def run_chain_gaps(cfg: EvidenceConfig, *, source_system: str | None = None, output_json: bool = False) -> int:
    system = open_system(cfg)
    gaps = system.detect_gaps(source_system)
    if output_json:
        print_json([g.to_dict() for g in gaps])
        return 1 if gaps else 0

    console = Console()
    if not gaps:
        console.print("No sequence gaps", style="green")
        return 0
    table = Table(title="Sequence gaps")
    table.add_column("stream", style="cyan")
    table.add_column("from", justify="right")
    table.add_column("to", justify="right")
    table.add_column("missing", justify="right", style="red")
    for g in gaps:
        table.add_row(g.source_system, str(g.start), str(g.end), str(g.missing))
    console.print(table)
    return 1


def run_chain_streams(cfg: EvidenceConfig) -> int:
    console = Console()
    system = open_system(cfg)
    table = Table(title="Streams")
    table.add_column("stream", style="cyan")
    table.add_column("head", justify="right")
    table.add_column("last_hash", style="dim")
    for stream in system.store.streams():
        head = system.ledger.head(stream)
        table.add_row(stream, str(head.sequence), head.last_hash[:16] + "…")
    console.print(table)
    return 0


def run_integrity(cfg: EvidenceConfig, *, output_json: bool = False) -> int:
    system = open_system(cfg)
    report = system.integrity_report()
    if output_json:
        print_json(report)
    else:
        console = Console()
        if not report["warnings"]:
            console.print("Evidence integrity OK", style="green")
        for warning in report["warnings"]:
            console.print(f"  {warning}", style="yellow")
    return 1 if report["warnings"] else 0
