"""Compliance query commands."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.table import Table

from ..config import EvidenceConfig
from ..errors import EvidenceGraphError
from ..query.schema import ComplianceQueryResult, TimeRange, Verdict
from ..util import parse_timestamp, utc_now
from . import open_system, print_json

_VERDICT_STYLE = {
    Verdict.PROVEN: "bold green",
    Verdict.PARTIAL: "bold yellow",
    Verdict.NOT_PROVEN: "bold red",
}


def _time_range(start: str | None, end: str | None, days: int | None) -> TimeRange | None:
    if start is None and end is None and days is None:
        return None
    end_dt: datetime = parse_timestamp(end) if end else utc_now()
    if start:
        return TimeRange(parse_timestamp(start), end_dt)
    return TimeRange.last_days(end_dt, days or 365)


def _print_result(console: Console, result: ComplianceQueryResult) -> None:
    console.print(f"[bold]{result.query_id}[/bold]  {result.query_name}")
    console.print(
        f"  {result.regulation} {', '.join(result.articles)}  "
        f"[{_VERDICT_STYLE[result.verdict]}]{result.verdict.value}[/]  confidence {result.confidence:.2f}"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("criterion", style="cyan")
    table.add_column("met")
    table.add_column("support", justify="right")
    table.add_column("details", style="dim")
    for d in result.proof_details:
        mark = "[green]yes[/]" if d.met else ("[red]no[/]" if d.mandatory else "[yellow]no[/]")
        table.add_row(d.criterion_id, mark, str(d.support), d.details)
    console.print(table)

    for gap in result.gaps:
        console.print(f"  gap: {gap.description}: {gap.recommendation}", style="yellow")
    for warning in result.warnings:
        console.print(f"  integrity: {warning}", style="red")


def run_query_list(cfg: EvidenceConfig, *, regulation: str | None = None) -> int:
    console = Console()
    system = open_system(cfg)
    table = Table(title="Compliance queries")
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("regulation", style="magenta")
    table.add_column("articles")
    table.add_column("severity")
    table.add_column("name")
    for q in system.queries.list_queries(regulation):
        table.add_row(q.query_id, q.regulation, ", ".join(q.articles), q.severity, q.name)
    console.print(table)
    return 0


def run_query_run(
    cfg: EvidenceConfig,
    query_id: str,
    *,
    start: str | None = None,
    end: str | None = None,
    days: int | None = None,
    output_json: bool = False,
    fail_unproven: bool = False,
) -> int:
    err = Console(stderr=True)
    system = open_system(cfg)
    try:
        result = system.run_compliance_query(query_id, _time_range(start, end, days))
    except EvidenceGraphError as e:
        err.print(str(e), style="bold red")
        return 1
    except ValueError as e:
        err.print(f"Invalid time range: {e}", style="bold red")
        return 2

    if output_json:
        print_json(result.to_dict())
    else:
        _print_result(Console(), result)
    if fail_unproven and result.verdict != Verdict.PROVEN:
        return 1
    return 0


def run_query_regulation(
    cfg: EvidenceConfig,
    regulation: str,
    *,
    days: int | None = None,
    output_json: bool = False,
) -> int:
    system = open_system(cfg)
    results = system.queries.run_for_regulation(regulation, _time_range(None, None, days))
    summary = system.queries.summary(results)
    if output_json:
        print_json({"results": [r.to_dict() for r in results], "summary": summary})
        return 0

    console = Console()
    for result in results:
        _print_result(console, result)
        console.print()
    overall = summary["overall"]
    console.print(
        f"{regulation.upper()}: {overall['proven']} proven, {overall['partial']} partial, "
        f"{overall['not_proven']} not proven of {overall['total']}"
    )
    for gap in summary["critical_gaps"]:
        console.print(f"  critical: {gap['query_id']} is {gap['result']}", style="bold red")
    return 0
