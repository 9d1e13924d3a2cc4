"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from evgraph.alerts import Alert, AlertDispatcher
from evgraph.clocks.engine import ClockEngine
from evgraph.clocks.policy import ClockPolicy, load_policy
from evgraph.config import EvidenceConfig
from evgraph.graph.nodes import Actor, ActorType
from evgraph.graph.store import EvidenceStore
from evgraph.ingest.orchestrator import EventIngestionOrchestrator
from evgraph.ledger.chain import HashChainLedger
from evgraph.system import EvidenceSystem


class ListSink:
    """Collects emitted alerts."""

    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    def send(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def titles(self) -> list[str]:
        return [a.title for a in self.alerts]


@pytest.fixture
def store(tmp_path: Path) -> EvidenceStore:
    """Journal-backed store in a temporary directory."""
    return EvidenceStore(tmp_path)


@pytest.fixture
def ledger(store: EvidenceStore) -> HashChainLedger:
    return HashChainLedger(store)


@pytest.fixture
def policy() -> ClockPolicy:
    """The bundled default clock policy."""
    return load_policy()


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def alerts(sink: ListSink) -> AlertDispatcher:
    return AlertDispatcher([sink])


@pytest.fixture
def clocks(store: EvidenceStore, policy: ClockPolicy, alerts: AlertDispatcher) -> ClockEngine:
    return ClockEngine(store, policy, alerts=alerts)


@pytest.fixture
def orchestrator(
    store: EvidenceStore, ledger: HashChainLedger, clocks: ClockEngine, alerts: AlertDispatcher
) -> EventIngestionOrchestrator:
    return EventIngestionOrchestrator(store, ledger, clocks, alerts=alerts)


@pytest.fixture
def actor(orchestrator: EventIngestionOrchestrator) -> Actor:
    return orchestrator.register_actor("Dana Officer", ActorType.USER, actor_id="ACT_DPO", role="DPO")


@pytest.fixture
def system(tmp_path: Path, alerts: AlertDispatcher) -> Iterator[EvidenceSystem]:
    """Fully wired system without witnesses or a timestamp authority."""
    with EvidenceSystem(EvidenceConfig(store_dir=tmp_path / "store"), alerts=alerts) as evs:
        yield evs
