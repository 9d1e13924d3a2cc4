"""
Regulatory clock state machine.

    RUNNING --tick--> BREACHED
    RUNNING --update_status--> MET | STOPPED
    RUNNING <--pause/resume--> PAUSED
    PAUSED  --update_status--> MET | STOPPED

MET, BREACHED and STOPPED are terminal. Every transition is a
compare-and-swap on the clock's version, so concurrent ticks and status
updates can never apply the same transition twice.

Tick planning (`plan_tick`) is a pure function of (clocks, now, policy);
only `ClockEngine.tick` touches the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable

from ..alerts import Alert, AlertCategory, AlertDispatcher, AlertSeverity
from ..errors import EvidenceGraphError, InvalidTransitionError, NotFoundError, ValidationError
from ..graph.edges import Edge, EdgeType
from ..graph.nodes import Clock, ClockStatus, Decision, NodeKind, NodeRef
from ..graph.store import EvidenceStore, WriteSet
from ..util import ensure_utc, new_id, utc_now
from .policy import ClockPolicy

logger = logging.getLogger(__name__)

ClockListener = Callable[[Clock | None, Clock], None]

_CAS_ATTEMPTS = 5


class TransitionKind(str, Enum):
    WARN = "WARN"
    BREACH = "BREACH"


@dataclass(frozen=True)
class ClockTransition:
    clock_id: str
    kind: TransitionKind
    hours_remaining: float
    expected_version: int


@dataclass
class TickReport:
    checked: int = 0
    warnings: list[str] = field(default_factory=list)
    breaches: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "warnings": self.warnings,
            "breaches": self.breaches,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def plan_tick(clocks: Iterable[Clock], now: datetime, policy: ClockPolicy) -> list[ClockTransition]:
    """Decide which RUNNING clocks warn or breach at `now`. Pure."""
    transitions: list[ClockTransition] = []
    for clock in clocks:
        if clock.status != ClockStatus.RUNNING:
            continue
        remaining = clock.hours_remaining(now)
        if remaining <= 0:
            transitions.append(ClockTransition(clock.clock_id, TransitionKind.BREACH, remaining, clock.version))
        elif remaining <= policy.warning_threshold(clock.clock_type) and not clock.warning_sent:
            transitions.append(ClockTransition(clock.clock_id, TransitionKind.WARN, remaining, clock.version))
    return transitions


def build_clock(
    policy: ClockPolicy,
    clock_type: str,
    related_event_id: str,
    *,
    regulation: str | None = None,
    article: str | None = None,
    deadline_hours: float | None = None,
    start_time: datetime | None = None,
) -> Clock:
    """Construct a RUNNING clock from the policy table. Does not persist."""
    definition = policy.clock_type(clock_type)
    hours = deadline_hours if deadline_hours is not None else definition.hours
    if hours is None or hours <= 0:
        raise ValidationError(f"Clock type {clock_type} needs a positive deadline_hours")
    start = ensure_utc(start_time) if start_time else utc_now()
    return Clock(
        clock_id=new_id("CLK"),
        clock_type=clock_type,
        regulation=regulation or definition.regulation,
        article=article or definition.article,
        start_time=start,
        deadline=start + timedelta(hours=hours),
        related_event_id=related_event_id,
    )


class ClockEngine:
    def __init__(
        self,
        store: EvidenceStore,
        policy: ClockPolicy,
        alerts: AlertDispatcher | None = None,
    ):
        self.store = store
        self.policy = policy
        self.alerts = alerts or AlertDispatcher()
        self._listeners: list[ClockListener] = []

    def add_listener(self, listener: ClockListener) -> None:
        """Register a callback run after every committed clock change."""
        self._listeners.append(listener)

    def notify(self, previous: Clock | None, current: Clock) -> None:
        for listener in self._listeners:
            try:
                listener(previous, current)
            except Exception:
                logger.exception("Clock listener failed for %s", current.clock_id)

    # -------------------------------------------------------------------------
    # Creation and lookup
    # -------------------------------------------------------------------------

    def build(self, clock_type: str, related_event_id: str, **kwargs: Any) -> Clock:
        return build_clock(self.policy, clock_type, related_event_id, **kwargs)

    def create_clock(
        self,
        clock_type: str,
        related_event_id: str,
        *,
        regulation: str | None = None,
        article: str | None = None,
        deadline_hours: float | None = None,
        start_time: datetime | None = None,
    ) -> Clock:
        event = self.store.require_node(NodeRef(NodeKind.EVENT, related_event_id))
        clock = self.build(
            clock_type,
            related_event_id,
            regulation=regulation,
            article=article,
            deadline_hours=deadline_hours,
            start_time=start_time,
        )
        ws = WriteSet(nodes=[clock])
        ws.link(EdgeType.TRIGGERS, event, clock)
        self.store.commit(ws)
        self.notify(None, clock)
        return clock

    def get_clock(self, clock_id: str) -> Clock:
        return self.store.require_node(NodeRef(NodeKind.CLOCK, clock_id))  # type: ignore[return-value]

    def list_clocks(self, *, status: ClockStatus | None = None, regulation: str | None = None) -> list[Clock]:
        return [
            c
            for c in self.store.query_nodes(NodeKind.CLOCK)
            if (status is None or c.status == status) and (regulation is None or c.regulation == regulation)
        ]  # type: ignore[misc]

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TickReport:
        """
        Warn and breach RUNNING clocks as of `now`.

        Each transition is applied independently; a failure on one clock
        is logged and recorded in the report without affecting the others.
        """
        now = ensure_utc(now) if now else utc_now()
        clocks = self.list_clocks(status=ClockStatus.RUNNING)
        report = TickReport(checked=len(clocks))

        for transition in plan_tick(clocks, now, self.policy):
            try:
                applied = self._apply_transition(transition, now)
            except Exception as e:
                logger.exception("Clock tick failed for %s", transition.clock_id)
                report.errors[transition.clock_id] = str(e)
                continue
            if applied is None:
                report.skipped.append(transition.clock_id)
            elif transition.kind == TransitionKind.BREACH:
                report.breaches.append(transition.clock_id)
            else:
                report.warnings.append(transition.clock_id)
        return report

    def _apply_transition(self, transition: ClockTransition, now: datetime) -> Clock | None:
        current = self.get_clock(transition.clock_id)
        if transition.kind == TransitionKind.BREACH:
            updated = replace(current, status=ClockStatus.BREACHED, breached_at=now)
            ws = WriteSet()
            ws.link(EdgeType.BREACHED_DUE_TO, current.ref, NodeRef(NodeKind.EVENT, current.related_event_id), created_at=now)
        else:
            updated = replace(current, warning_sent=True, warning_sent_at=now)
            ws = WriteSet()

        stored = self.store.compare_and_swap_clock(updated, transition.expected_version, edges=ws.edges)
        if stored is None:
            return None

        if transition.kind == TransitionKind.BREACH:
            logger.warning("Clock %s (%s) breached its deadline", stored.clock_id, stored.clock_type)
            self.alerts.emit(self._breach_alert(stored))
        else:
            self.alerts.emit(self._warning_alert(stored, transition.hours_remaining))
        self.notify(current, stored)
        return stored

    def _warning_alert(self, clock: Clock, hours_remaining: float) -> Alert:
        severity = AlertSeverity.CRITICAL if hours_remaining <= 1 else AlertSeverity.WARNING
        return Alert(
            category=AlertCategory.CLOCK_WARNING,
            severity=severity,
            title=f"{clock.regulation} {clock.article} deadline approaching",
            message=f"{clock.clock_type} has {hours_remaining:.1f}h remaining (deadline {clock.deadline.isoformat()})",
            regulation=clock.regulation,
            related_ids={"clock_id": clock.clock_id, "event_id": clock.related_event_id},
        )

    def _breach_alert(self, clock: Clock) -> Alert:
        return Alert(
            category=AlertCategory.CLOCK_BREACH,
            severity=AlertSeverity.BREACH,
            title=f"{clock.regulation} {clock.article} deadline breached",
            message=f"{clock.clock_type} passed its deadline {clock.deadline.isoformat()}",
            regulation=clock.regulation,
            related_ids={"clock_id": clock.clock_id, "event_id": clock.related_event_id},
        )

    # -------------------------------------------------------------------------
    # Explicit transitions
    # -------------------------------------------------------------------------

    def _require_decision(self, decision_id: str | None, action: str) -> Decision:
        if not decision_id:
            raise ValidationError(f"{action} requires a documented decision")
        decision = self.store.require_node(NodeRef(NodeKind.DECISION, decision_id))
        if not decision.justification.strip():  # type: ignore[union-attr]
            raise ValidationError(f"{action} requires a decision with a justification")
        return decision  # type: ignore[return-value]

    def _transition(
        self,
        clock_id: str,
        allowed: tuple[ClockStatus, ...],
        mutate: Callable[[Clock], Clock],
        edges: Callable[[Clock], list[Edge]] = lambda _c: [],
    ) -> Clock:
        for _ in range(_CAS_ATTEMPTS):
            current = self.get_clock(clock_id)
            if current.status not in allowed:
                raise InvalidTransitionError(
                    f"Clock {clock_id} is {current.status.value}; expected one of "
                    f"{', '.join(s.value for s in allowed)}"
                )
            stored = self.store.compare_and_swap_clock(mutate(current), current.version, edges=edges(current))
            if stored is not None:
                self.notify(current, stored)
                return stored
        raise EvidenceGraphError(f"Clock {clock_id} kept changing under concurrent updates")

    def update_status(
        self,
        clock_id: str,
        status: ClockStatus | str,
        *,
        evidence_artifact_id: str | None = None,
        decision_id: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Clock:
        """
        Close a clock as MET or STOPPED.

        STOPPED needs a decision carrying a justification; the clock is
        linked to it with STOPPED_BY. An evidence artifact, when given, is
        linked with FULFILLED_BY.
        """
        try:
            status = ClockStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown clock status: {status!r}") from None
        if status not in (ClockStatus.MET, ClockStatus.STOPPED):
            raise ValidationError(f"Clocks can only be set to MET or STOPPED, not {status.value}")

        now = ensure_utc(now) if now else utc_now()
        open_states = (ClockStatus.RUNNING, ClockStatus.PAUSED)

        def edges(current: Clock) -> list[Edge]:
            ws = WriteSet()
            if evidence_artifact_id:
                ws.link(EdgeType.FULFILLED_BY, current.ref, NodeRef(NodeKind.ARTIFACT, evidence_artifact_id), created_at=now)
            if status == ClockStatus.STOPPED and decision_id:
                ws.link(EdgeType.STOPPED_BY, current.ref, NodeRef(NodeKind.DECISION, decision_id), created_at=now)
            return ws.edges

        if status == ClockStatus.STOPPED:
            decision = self._require_decision(decision_id, "Stopping a clock")
            stop_reason = reason or decision.justification
            return self._transition(
                clock_id,
                open_states,
                lambda c: replace(
                    c,
                    status=ClockStatus.STOPPED,
                    stopped_at=now,
                    stop_reason=stop_reason,
                    paused_at=None,
                    evidence_artifact_id=evidence_artifact_id or c.evidence_artifact_id,
                ),
                edges,
            )

        return self._transition(
            clock_id,
            open_states,
            lambda c: replace(
                c,
                status=ClockStatus.MET,
                met_at=now,
                paused_at=None,
                evidence_artifact_id=evidence_artifact_id or c.evidence_artifact_id,
            ),
            edges,
        )

    def pause(self, clock_id: str, decision_id: str, *, now: datetime | None = None) -> Clock:
        self._require_decision(decision_id, "Pausing a clock")
        now = ensure_utc(now) if now else utc_now()
        return self._transition(
            clock_id,
            (ClockStatus.RUNNING,),
            lambda c: replace(c, status=ClockStatus.PAUSED, paused_at=now),
        )

    def resume(self, clock_id: str, *, now: datetime | None = None) -> Clock:
        """Resume a paused clock; the deadline moves out by the time spent paused."""
        now = ensure_utc(now) if now else utc_now()

        def mutate(c: Clock) -> Clock:
            paused_for = max(now - (c.paused_at or now), timedelta(0))
            return replace(
                c,
                status=ClockStatus.RUNNING,
                deadline=c.deadline + paused_for,
                paused_at=None,
                paused_seconds=c.paused_seconds + paused_for.total_seconds(),
            )

        return self._transition(clock_id, (ClockStatus.PAUSED,), mutate)

    def extend_deadline(
        self,
        clock_id: str,
        hours: float,
        decision_id: str,
        *,
        now: datetime | None = None,
    ) -> Clock:
        if hours <= 0:
            raise ValidationError("Deadline extensions must be positive")
        self._require_decision(decision_id, "Extending a deadline")
        now = ensure_utc(now) if now else utc_now()

        def edges(current: Clock) -> list[Edge]:
            ws = WriteSet()
            ws.link(
                EdgeType.EXTENDED_BY,
                current.ref,
                NodeRef(NodeKind.DECISION, decision_id),
                created_at=now,
                metadata={"hours": hours, "previous_deadline": current.deadline.isoformat()},
            )
            return ws.edges

        return self._transition(
            clock_id,
            (ClockStatus.RUNNING, ClockStatus.PAUSED),
            lambda c: replace(c, deadline=c.deadline + timedelta(hours=hours)),
            edges,
        )
