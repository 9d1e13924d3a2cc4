"""
Wiring for a running evidence graph.

EvidenceSystem builds every component from an EvidenceConfig and owns the
background tasks (clock monitor, anchor cycle). The CLI and embedding
applications go through this facade; components stay usable on their own.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable

from .alerts import AlertDispatcher
from .anchor.service import MerkleAnchorService
from .anchor.witness import FileLogWitness, WitnessProvider
from .clocks.engine import ClockEngine, TickReport
from .clocks.policy import load_policy
from .config import EvidenceConfig, WitnessConfig
from .graph.records import MerkleAnchor, VerificationStatus
from .graph.store import EvidenceStore
from .ingest.orchestrator import EventIngestionOrchestrator
from .ledger.chain import ChainValidation, Gap, HashChainLedger
from .query.engine import ComplianceQueryEngine
from .query.load import load_queries
from .query.schema import ComplianceQueryResult, TimeRange
from .scheduler import PeriodicTask
from .secrets import SecretsProvider, resolve_secret
from .tsa.client import (
    HttpTimestampAuthority,
    LocalTimestampAuthority,
    TimestampAuthority,
    TimestampAuthorityClient,
    TimestampQueue,
    TsaHttpConfig,
    TsaWitnessProvider,
)
from .util import utc_now

logger = logging.getLogger(__name__)


def build_authority(cfg: WitnessConfig, secrets: SecretsProvider | None = None) -> TimestampAuthority:
    if cfg.type == "local_tsa":
        key = resolve_secret(cfg.key_ref, secrets)
        return LocalTimestampAuthority(key or "", name=cfg.name or "local-tsa")
    if cfg.type == "http_tsa":
        return HttpTimestampAuthority(
            TsaHttpConfig(
                url=cfg.url or "",
                token=resolve_secret(cfg.token_ref, secrets),
                timeout_s=cfg.timeout_s,
                name=cfg.name or "http-tsa",
            )
        )
    raise ValueError(f"{cfg.type} is not a timestamp authority")


def build_witness(cfg: WitnessConfig, store: EvidenceStore, secrets: SecretsProvider | None = None) -> WitnessProvider:
    if cfg.type == "file":
        return FileLogWitness(cfg.path, name=cfg.name or "file-log")  # type: ignore[arg-type]
    return TsaWitnessProvider(TimestampAuthorityClient(build_authority(cfg, secrets), store))


class EvidenceSystem:
    def __init__(
        self,
        config: EvidenceConfig | None = None,
        *,
        alerts: AlertDispatcher | None = None,
        secrets: SecretsProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or EvidenceConfig()
        self.store = EvidenceStore(self.config.store_dir)
        self.ledger = HashChainLedger(self.store)
        self.alerts = alerts or AlertDispatcher()
        self.policy = load_policy(self.config.policy_path)
        self.clocks = ClockEngine(self.store, self.policy, alerts=self.alerts)

        self.tsa: TimestampAuthorityClient | None = None
        self.timestamps: TimestampQueue | None = None
        if self.config.tsa is not None:
            self.tsa = TimestampAuthorityClient(build_authority(self.config.tsa, secrets), self.store)
            if self.config.timestamp_critical:
                self.timestamps = TimestampQueue(self.tsa)

        self.anchors = MerkleAnchorService(
            self.store,
            [build_witness(w, self.store, secrets) for w in self.config.witnesses],
            retry=self.config.anchor_retry,
            alerts=self.alerts,
            sleep=sleep,
        )
        self.orchestrator = EventIngestionOrchestrator(
            self.store, self.ledger, self.clocks, alerts=self.alerts, timestamps=self.timestamps
        )
        self.queries = ComplianceQueryEngine(
            self.store,
            load_queries(self.config.queries_path),
            default_range_days=self.config.default_range_days,
            integrity_warnings=self.integrity_warnings,
            clock=clock,
        )
        self._tasks = [
            PeriodicTask("clock-monitor", self.config.monitor_interval_s, self.clocks.tick),
            PeriodicTask("anchor", self.config.anchor_interval_s, self.anchors.run_cycle, run_immediately=False),
        ]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        for task in self._tasks:
            task.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        for task in self._tasks:
            task.stop(timeout)
        if self.timestamps is not None:
            self.timestamps.shutdown(wait=True)

    def __enter__(self) -> "EvidenceSystem":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks)

    # -------------------------------------------------------------------------
    # Integrity
    # -------------------------------------------------------------------------

    def integrity_report(self) -> dict[str, Any]:
        chain = self.ledger.validate_chain()
        gaps = self.ledger.detect_gaps()
        # Anchors only leave PENDING through a witness.
        pending = self.store.anchors(VerificationStatus.PENDING) if self.anchors.providers else []
        return {
            "chain": chain.to_dict(),
            "gaps": [g.to_dict() for g in gaps],
            "degraded_streams": sorted(self.ledger.degraded_streams),
            "pending_anchors": [a.anchor_id for a in pending],
            "warnings": self._warnings(chain, gaps, pending),
        }

    @staticmethod
    def _warnings(chain: ChainValidation, gaps: list[Gap], pending: list[MerkleAnchor]) -> list[str]:
        warnings = []
        if not chain.valid:
            warnings.append(f"Hash chain invalid in stream {chain.source_system}: {chain.error}")
        for gap in gaps:
            warnings.append(f"Stream {gap.source_system} is missing sequences {gap.start}-{gap.end}")
        if pending:
            warnings.append(f"{len(pending)} anchor(s) awaiting external witness")
        return warnings

    def integrity_warnings(self) -> list[str]:
        return self.integrity_report()["warnings"]

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create_event(self, event_type: str, source_system: str, payload: dict[str, Any], **kwargs: Any):
        return self.orchestrator.create_event(event_type, source_system, payload, **kwargs)

    def create_decision(self, *args: Any, **kwargs: Any):
        return self.orchestrator.create_decision(*args, **kwargs)

    def create_clock(self, *args: Any, **kwargs: Any):
        return self.orchestrator.create_clock(*args, **kwargs)

    def update_clock_status(self, *args: Any, **kwargs: Any):
        return self.orchestrator.update_clock_status(*args, **kwargs)

    def validate_chain(self, source_system: str | None = None, from_seq: int | None = None, to_seq: int | None = None) -> ChainValidation:
        return self.ledger.validate_chain(source_system, from_seq, to_seq)

    def detect_gaps(self, source_system: str | None = None) -> list[Gap]:
        return self.ledger.detect_gaps(source_system)

    def check_clocks(self, now: datetime | None = None) -> TickReport:
        return self.clocks.tick(now)

    def run_anchor(self, now: datetime | None = None) -> MerkleAnchor | None:
        return self.anchors.run_cycle(now)

    def run_compliance_query(self, query_id: str, time_range: TimeRange | None = None) -> ComplianceQueryResult:
        return self.queries.run(query_id, time_range)
