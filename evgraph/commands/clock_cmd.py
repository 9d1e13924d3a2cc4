"""Regulatory clock commands."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..graph.nodes import Clock, ClockStatus
from ..util import utc_now
from . import open_system, print_json

_STATUS_STYLE = {
    ClockStatus.RUNNING: "green",
    ClockStatus.PAUSED: "yellow",
    ClockStatus.MET: "cyan",
    ClockStatus.BREACHED: "bold red",
    ClockStatus.STOPPED: "dim",
}


def _remaining(clock: Clock, now: datetime) -> str:
    if clock.status.is_terminal:
        return ""
    hours = clock.hours_remaining(now)
    return f"{hours:.1f}h" if hours > 0 else "overdue"


def run_clock_list(
    cfg: EvidenceConfig,
    *,
    status: str | None = None,
    regulation: str | None = None,
    output_json: bool = False,
) -> int:
    console = Console()
    system = open_system(cfg)
    clocks = system.clocks.list_clocks(
        status=ClockStatus(status.upper()) if status else None,
        regulation=regulation.upper() if regulation else None,
    )
    clocks.sort(key=lambda c: (c.deadline, c.clock_id))
    if output_json:
        print_json([c.to_dict() for c in clocks])
        return 0

    now = utc_now()
    table = Table(title="Clocks")
    table.add_column("clock_id", style="cyan", no_wrap=True)
    table.add_column("type", style="magenta")
    table.add_column("regulation")
    table.add_column("status")
    table.add_column("deadline")
    table.add_column("remaining", justify="right")
    table.add_column("event", style="dim")
    for c in clocks:
        table.add_row(
            c.clock_id,
            c.clock_type,
            f"{c.regulation} {c.article}".strip(),
            f"[{_STATUS_STYLE[c.status]}]{c.status.value}[/]",
            c.deadline.isoformat(),
            _remaining(c, now),
            c.related_event_id,
        )
    console.print(table)
    return 0


def run_clock_start(
    cfg: EvidenceConfig,
    clock_type: str,
    event_id: str,
    *,
    deadline_hours: float | None = None,
    output_json: bool = False,
) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            clock = system.create_clock(clock_type, event_id, deadline_hours=deadline_hours)
    except EvidenceGraphError as e:
        err.print(f"Clock not started: {e}", style="bold red")
        return 1
    if output_json:
        print_json(clock.to_dict())
    else:
        Console().print(f"{clock.clock_id}  {clock.clock_type}  deadline {clock.deadline.isoformat()}", style="cyan")
    return 0


def run_clock_check(cfg: EvidenceConfig, *, output_json: bool = False) -> int:
    """Run one monitor pass: warnings and breaches for every running clock."""
    with open_system(cfg) as system:
        report = system.check_clocks()
    if output_json:
        print_json(report.to_dict())
        return 0
    console = Console()
    console.print(f"Checked {report.checked} clock(s)")
    for clock_id in report.warnings:
        console.print(f"  warning: {clock_id}", style="yellow")
    for clock_id in report.breaches:
        console.print(f"  breached: {clock_id}", style="bold red")
    for clock_id, error in report.errors.items():
        console.print(f"  error: {clock_id}: {error}", style="red")
    return 1 if report.errors else 0


def run_clock_update(
    cfg: EvidenceConfig,
    clock_id: str,
    status: str,
    *,
    artifact_id: str | None = None,
    decision_id: str | None = None,
    reason: str | None = None,
) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            clock = system.update_clock_status(
                clock_id,
                status.upper(),
                evidence_artifact_id=artifact_id,
                decision_id=decision_id,
                reason=reason,
            )
    except EvidenceGraphError as e:
        err.print(f"Clock not updated: {e}", style="bold red")
        return 1
    Console().print(f"{clock.clock_id}: {clock.status.value}", style=_STATUS_STYLE[clock.status])
    return 0


def run_clock_pause(cfg: EvidenceConfig, clock_id: str, decision_id: str) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            clock = system.orchestrator.pause_clock(clock_id, decision_id)
    except EvidenceGraphError as e:
        err.print(f"Clock not paused: {e}", style="bold red")
        return 1
    Console().print(f"{clock.clock_id}: {clock.status.value}")
    return 0


def run_clock_resume(cfg: EvidenceConfig, clock_id: str) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            clock = system.orchestrator.resume_clock(clock_id)
    except EvidenceGraphError as e:
        err.print(f"Clock not resumed: {e}", style="bold red")
        return 1
    Console().print(f"{clock.clock_id}: {clock.status.value}, deadline {clock.deadline.isoformat()}")
    return 0


def run_clock_extend(cfg: EvidenceConfig, clock_id: str, hours: float, decision_id: str) -> int:
    err = Console(stderr=True)
    try:
        with open_system(cfg) as system:
            clock = system.orchestrator.extend_deadline(clock_id, hours, decision_id)
    except EvidenceGraphError as e:
        err.print(f"Deadline not extended: {e}", style="bold red")
        return 1
    Console().print(f"{clock.clock_id}: deadline {clock.deadline.isoformat()}")
    return 0
