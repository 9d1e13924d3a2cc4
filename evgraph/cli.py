"""CLI entrypoint for evgraph."""

import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from . import __version__
from .config import load_config
from .errors import EvidenceGraphError
from .graph.nodes import ActorType

DEFAULT_STORE_DIR = Path(".evgraph")


@click.group()
@click.version_option(__version__, prog_name="evgraph")
@click.option(
    "--store",
    "-s",
    "store_dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Evidence store directory (defaults to the config value, then ./.evgraph)",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to evgraph.toml (defaults to ./evgraph.toml when present)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, store_dir: Path | None, config_path: Path | None, log_level: str) -> None:
    """evgraph - Tamper-evident evidence graph for regulatory compliance.

    Record events and decisions, track notification deadlines, anchor the
    ledger, and prove compliance with regulatory queries.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    try:
        cfg = load_config(config_path)
    except EvidenceGraphError as e:
        raise click.ClickException(str(e)) from e

    store_dir = store_dir or cfg.store_dir or DEFAULT_STORE_DIR
    store_dir.mkdir(parents=True, exist_ok=True)
    ctx.obj["config"] = replace(cfg, store_dir=store_dir.resolve())


# ---------------------------------------------------------------------------
# event
# ---------------------------------------------------------------------------


@cli.group()
def event() -> None:
    """Record and inspect hash-chained events."""


@event.command("create")
@click.argument("event_type")
@click.argument("source_system")
@click.option("--payload", "-p", default=None, help="Event payload as a JSON object")
@click.option(
    "--severity",
    type=click.Choice(["INFO", "LOW", "MEDIUM", "HIGH", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Severity (inferred from the clock policy when omitted)",
)
@click.option("--tag", "tags", multiple=True, help="Regulatory tag (repeatable)")
@click.option("--article", "articles", multiple=True, help="Regulation article (repeatable)")
@click.option("--correlation-id", default=None)
@click.option("--causation-id", default=None, help="Event that caused this one")
@click.option("--control", "control_id", default=None, help="Control that evaluated this event")
@click.option("--no-clocks", is_flag=True, help="Do not start policy-triggered clocks")
@click.option("--json", "output_json", is_flag=True, help="Output result as JSON")
@click.pass_context
def event_create(
    ctx: click.Context,
    event_type: str,
    source_system: str,
    payload: str | None,
    severity: str | None,
    tags: tuple[str, ...],
    articles: tuple[str, ...],
    correlation_id: str | None,
    causation_id: str | None,
    control_id: str | None,
    no_clocks: bool,
    output_json: bool,
) -> None:
    """Seal EVENT_TYPE (e.g. BREACH.DETECTED) on the SOURCE_SYSTEM stream.

    Examples:

        evgraph event create INCIDENT.CREATED payments -p '{"id": "INC-1"}'
    """
    from .commands.event_cmd import run_event_create

    sys.exit(
        run_event_create(
            ctx.obj["config"],
            event_type,
            source_system,
            payload=payload,
            severity=severity.upper() if severity else None,
            tags=list(tags),
            articles=list(articles),
            correlation_id=correlation_id,
            causation_id=causation_id,
            control_id=control_id,
            auto_trigger_clocks=not no_clocks,
            output_json=output_json,
        )
    )


@event.command("list")
@click.option("--source", "source_system", default=None, help="Only this stream")
@click.option("--limit", type=int, default=50, show_default=True, help="Most recent N events (0 = all)")
@click.pass_context
def event_list(ctx: click.Context, source_system: str | None, limit: int) -> None:
    """List events."""
    from .commands.event_cmd import run_event_list

    sys.exit(run_event_list(ctx.obj["config"], source_system=source_system, limit=limit))


@event.command("show")
@click.argument("event_id")
@click.pass_context
def event_show(ctx: click.Context, event_id: str) -> None:
    """Show an event with its edges, timestamps and anchor."""
    from .commands.event_cmd import run_event_show

    sys.exit(run_event_show(ctx.obj["config"], event_id))


# ---------------------------------------------------------------------------
# decision
# ---------------------------------------------------------------------------


@cli.group()
def decision() -> None:
    """Record justified decisions."""


@decision.command("create")
@click.argument("decision_type")
@click.argument("event_id")
@click.option("--outcome", required=True)
@click.option("--justification", "-j", required=True, help="Why (at least 10 characters)")
@click.option("--actor", "actor_id", required=True, help="Actor who made the decision")
@click.option("--regulation", default=None)
@click.option("--ai-model", default=None, help="Mark the decision AI-assisted by this model")
@click.option("--ai-confidence", type=float, default=None)
@click.option("--human-verified/--not-human-verified", default=None)
@click.option("--approver", "approver_id", default=None, help="Approving actor")
@click.option("--json", "output_json", is_flag=True, help="Output result as JSON")
@click.pass_context
def decision_create(
    ctx: click.Context,
    decision_type: str,
    event_id: str,
    outcome: str,
    justification: str,
    actor_id: str,
    regulation: str | None,
    ai_model: str | None,
    ai_confidence: float | None,
    human_verified: bool | None,
    approver_id: str | None,
    output_json: bool,
) -> None:
    """Record a DECISION_TYPE decision taken on EVENT_ID."""
    from .commands.decision_cmd import run_decision_create

    sys.exit(
        run_decision_create(
            ctx.obj["config"],
            decision_type,
            outcome,
            justification,
            actor_id,
            event_id,
            regulation=regulation,
            ai_assisted=ai_model is not None,
            ai_model=ai_model,
            ai_confidence=ai_confidence,
            human_verified=human_verified,
            approver_id=approver_id,
            output_json=output_json,
        )
    )


@decision.command("list")
@click.option("--event", "event_id", default=None, help="Only decisions on this event")
@click.pass_context
def decision_list(ctx: click.Context, event_id: str | None) -> None:
    """List decisions."""
    from .commands.decision_cmd import run_decision_list

    sys.exit(run_decision_list(ctx.obj["config"], event_id=event_id))


# ---------------------------------------------------------------------------
# clock
# ---------------------------------------------------------------------------


@cli.group()
def clock() -> None:
    """Regulatory deadline clocks."""


@clock.command("list")
@click.option("--status", default=None, help="RUNNING, PAUSED, MET, BREACHED or STOPPED")
@click.option("--regulation", default=None)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def clock_list(ctx: click.Context, status: str | None, regulation: str | None, output_json: bool) -> None:
    """List clocks by deadline."""
    from .commands.clock_cmd import run_clock_list

    sys.exit(run_clock_list(ctx.obj["config"], status=status, regulation=regulation, output_json=output_json))


@clock.command("start")
@click.argument("clock_type")
@click.argument("event_id")
@click.option("--hours", "deadline_hours", type=float, default=None, help="Deadline (required for CUSTOM)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def clock_start(ctx: click.Context, clock_type: str, event_id: str, deadline_hours: float | None, output_json: bool) -> None:
    """Start a CLOCK_TYPE clock for EVENT_ID."""
    from .commands.clock_cmd import run_clock_start

    sys.exit(run_clock_start(ctx.obj["config"], clock_type, event_id, deadline_hours=deadline_hours, output_json=output_json))


@clock.command("check")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def clock_check(ctx: click.Context, output_json: bool) -> None:
    """Run one monitor pass (warnings and breaches)."""
    from .commands.clock_cmd import run_clock_check

    sys.exit(run_clock_check(ctx.obj["config"], output_json=output_json))


@clock.command("update")
@click.argument("clock_id")
@click.argument("status", type=click.Choice(["MET", "STOPPED"], case_sensitive=False))
@click.option("--artifact", "artifact_id", default=None, help="Evidence artifact fulfilling the clock")
@click.option("--decision", "decision_id", default=None, help="Decision stopping the clock")
@click.option("--reason", default=None)
@click.pass_context
def clock_update(
    ctx: click.Context,
    clock_id: str,
    status: str,
    artifact_id: str | None,
    decision_id: str | None,
    reason: str | None,
) -> None:
    """Close CLOCK_ID as MET or STOPPED."""
    from .commands.clock_cmd import run_clock_update

    sys.exit(
        run_clock_update(
            ctx.obj["config"], clock_id, status, artifact_id=artifact_id, decision_id=decision_id, reason=reason
        )
    )


@clock.command("pause")
@click.argument("clock_id")
@click.option("--decision", "decision_id", required=True, help="Decision authorising the pause")
@click.pass_context
def clock_pause(ctx: click.Context, clock_id: str, decision_id: str) -> None:
    """Pause a running clock."""
    from .commands.clock_cmd import run_clock_pause

    sys.exit(run_clock_pause(ctx.obj["config"], clock_id, decision_id))


@clock.command("resume")
@click.argument("clock_id")
@click.pass_context
def clock_resume(ctx: click.Context, clock_id: str) -> None:
    """Resume a paused clock; the deadline moves by the paused time."""
    from .commands.clock_cmd import run_clock_resume

    sys.exit(run_clock_resume(ctx.obj["config"], clock_id))


@clock.command("extend")
@click.argument("clock_id")
@click.argument("hours", type=float)
@click.option("--decision", "decision_id", required=True, help="Decision granting the extension")
@click.pass_context
def clock_extend(ctx: click.Context, clock_id: str, hours: float, decision_id: str) -> None:
    """Extend a clock's deadline by HOURS."""
    from .commands.clock_cmd import run_clock_extend

    sys.exit(run_clock_extend(ctx.obj["config"], clock_id, hours, decision_id))


# ---------------------------------------------------------------------------
# chain
# ---------------------------------------------------------------------------


@cli.group()
def chain() -> None:
    """Hash-chain integrity."""


@chain.command("validate")
@click.option("--source", "source_system", default=None, help="Only this stream")
@click.option("--from", "from_seq", type=int, default=None)
@click.option("--to", "to_seq", type=int, default=None)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def chain_validate(
    ctx: click.Context, source_system: str | None, from_seq: int | None, to_seq: int | None, output_json: bool
) -> None:
    """Recompute hashes and linkage. Exits 1 when the chain is broken."""
    from .commands.chain_cmd import run_chain_validate

    sys.exit(
        run_chain_validate(
            ctx.obj["config"], source_system=source_system, from_seq=from_seq, to_seq=to_seq, output_json=output_json
        )
    )


@chain.command("gaps")
@click.option("--source", "source_system", default=None, help="Only this stream")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def chain_gaps(ctx: click.Context, source_system: str | None, output_json: bool) -> None:
    """Report missing sequence numbers. Exits 1 when gaps exist."""
    from .commands.chain_cmd import run_chain_gaps

    sys.exit(run_chain_gaps(ctx.obj["config"], source_system=source_system, output_json=output_json))


@chain.command("streams")
@click.pass_context
def chain_streams(ctx: click.Context) -> None:
    """List streams and their heads."""
    from .commands.chain_cmd import run_chain_streams

    sys.exit(run_chain_streams(ctx.obj["config"]))


@chain.command("integrity")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def chain_integrity(ctx: click.Context, output_json: bool) -> None:
    """Chain validity, gaps and pending anchors in one report."""
    from .commands.chain_cmd import run_integrity

    sys.exit(run_integrity(ctx.obj["config"], output_json=output_json))


# ---------------------------------------------------------------------------
# anchor
# ---------------------------------------------------------------------------


@cli.group()
def anchor() -> None:
    """Merkle anchoring and inclusion proofs."""


@anchor.command("run")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def anchor_run(ctx: click.Context, output_json: bool) -> None:
    """Retry pending anchors, then anchor all unanchored events."""
    from .commands.anchor_cmd import run_anchor_run

    sys.exit(run_anchor_run(ctx.obj["config"], output_json=output_json))


@anchor.command("list")
@click.option("--status", type=click.Choice(["PENDING", "VERIFIED", "FAILED"], case_sensitive=False), default=None)
@click.pass_context
def anchor_list(ctx: click.Context, status: str | None) -> None:
    """List anchors."""
    from .commands.anchor_cmd import run_anchor_list

    sys.exit(run_anchor_list(ctx.obj["config"], status=status))


@anchor.command("verify")
@click.argument("anchor_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def anchor_verify(ctx: click.Context, anchor_id: str, output_json: bool) -> None:
    """Recompute ANCHOR_ID's Merkle root from stored events."""
    from .commands.anchor_cmd import run_anchor_verify

    sys.exit(run_anchor_verify(ctx.obj["config"], anchor_id, output_json=output_json))


@anchor.command("prove")
@click.argument("event_id")
@click.pass_context
def anchor_prove(ctx: click.Context, event_id: str) -> None:
    """Print the inclusion proof for EVENT_ID."""
    from .commands.anchor_cmd import run_anchor_prove

    sys.exit(run_anchor_prove(ctx.obj["config"], event_id))


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


@cli.group()
def query() -> None:
    """Compliance queries."""


@query.command("list")
@click.option("--regulation", default=None)
@click.pass_context
def query_list(ctx: click.Context, regulation: str | None) -> None:
    """List the query catalog."""
    from .commands.query_cmd import run_query_list

    sys.exit(run_query_list(ctx.obj["config"], regulation=regulation))


@query.command("run")
@click.argument("query_id")
@click.option("--from", "start", default=None, help="Range start (ISO-8601)")
@click.option("--to", "end", default=None, help="Range end (ISO-8601, default now)")
@click.option("--days", type=int, default=None, help="Range length ending at --to")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--fail-unproven", is_flag=True, help="Exit 1 unless the verdict is PROVEN")
@click.pass_context
def query_run(
    ctx: click.Context,
    query_id: str,
    start: str | None,
    end: str | None,
    days: int | None,
    output_json: bool,
    fail_unproven: bool,
) -> None:
    """Evaluate QUERY_ID against the evidence graph.

    Examples:

        evgraph query run GDPR-33-BREACH-NOTIFICATION --days 90
    """
    from .commands.query_cmd import run_query_run

    sys.exit(
        run_query_run(
            ctx.obj["config"],
            query_id,
            start=start,
            end=end,
            days=days,
            output_json=output_json,
            fail_unproven=fail_unproven,
        )
    )


@query.command("regulation")
@click.argument("regulation")
@click.option("--days", type=int, default=None)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def query_regulation(ctx: click.Context, regulation: str, days: int | None, output_json: bool) -> None:
    """Run every query for REGULATION and summarise."""
    from .commands.query_cmd import run_query_regulation

    sys.exit(run_query_regulation(ctx.obj["config"], regulation, days=days, output_json=output_json))


# ---------------------------------------------------------------------------
# supporting nodes
# ---------------------------------------------------------------------------


@cli.group()
def actor() -> None:
    """Actors (people, systems, AI agents)."""


@actor.command("register")
@click.argument("name")
@click.option("--type", "actor_type", type=click.Choice([t.value for t in ActorType], case_sensitive=False), default="USER", show_default=True)
@click.option("--id", "actor_id", default=None, help="Explicit actor id")
@click.option("--role", default=None)
@click.option("--supervisor", "supervisor_id", default=None)
@click.pass_context
def actor_register(
    ctx: click.Context, name: str, actor_type: str, actor_id: str | None, role: str | None, supervisor_id: str | None
) -> None:
    """Register an actor."""
    from .commands.node_cmd import run_actor_register

    sys.exit(
        run_actor_register(
            ctx.obj["config"], name, actor_type=actor_type, actor_id=actor_id, role=role, supervisor_id=supervisor_id
        )
    )


@cli.group()
def control() -> None:
    """Controls that evaluate events."""


@control.command("register")
@click.argument("name")
@click.argument("control_type")
@click.option("--applies-to", "applies_to", multiple=True, help="Regulation the control covers (repeatable)")
@click.option("--enforced-by", default=None, help="Actor enforcing the control")
@click.pass_context
def control_register(
    ctx: click.Context, name: str, control_type: str, applies_to: tuple[str, ...], enforced_by: str | None
) -> None:
    """Register a control."""
    from .commands.node_cmd import run_control_register

    sys.exit(run_control_register(ctx.obj["config"], name, control_type, applies_to=list(applies_to), enforced_by=enforced_by))


@cli.group()
def artifact() -> None:
    """Evidence artifacts (stored by hash)."""


@artifact.command("create")
@click.argument("artifact_type")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Display name (defaults to the file name)")
@click.option("--decision", "decision_id", default=None, help="Decision that produced it")
@click.option("--clock", "clock_id", default=None, help="Clock it fulfils")
@click.option("--signer", "signer_id", default=None, help="Signing actor")
@click.pass_context
def artifact_create(
    ctx: click.Context,
    artifact_type: str,
    file: Path,
    name: str | None,
    decision_id: str | None,
    clock_id: str | None,
    signer_id: str | None,
) -> None:
    """Register FILE as an ARTIFACT_TYPE artifact."""
    from .commands.node_cmd import run_artifact_create

    sys.exit(
        run_artifact_create(
            ctx.obj["config"],
            artifact_type,
            name or file.name,
            file,
            decision_id=decision_id,
            clock_id=clock_id,
            signer_id=signer_id,
        )
    )


@cli.command()
@click.argument("edge_type")
@click.argument("source_id")
@click.argument("target_id")
@click.pass_context
def link(ctx: click.Context, edge_type: str, source_id: str, target_id: str) -> None:
    """Create an explicit EDGE_TYPE edge from SOURCE_ID to TARGET_ID."""
    from .commands.node_cmd import run_link

    sys.exit(run_link(ctx.obj["config"], edge_type, source_id, target_id))


@cli.command()
@click.argument("kind", type=click.Choice(["event", "decision", "clock", "actor", "control", "artifact"], case_sensitive=False))
@click.argument("node_id")
@click.pass_context
def show(ctx: click.Context, kind: str, node_id: str) -> None:
    """Show any node as JSON."""
    from .commands.node_cmd import run_node_show

    sys.exit(run_node_show(ctx.obj["config"], kind, node_id))


@cli.command()
@click.pass_context
def monitor(ctx: click.Context) -> None:
    """Run the clock monitor and anchor cycle until interrupted."""
    from .commands.monitor_cmd import run_monitor

    sys.exit(run_monitor(ctx.obj["config"]))


if __name__ == "__main__":
    cli()
