"""
Merkle anchor service.

Periodically commits every not-yet-anchored event to a Merkle root and
has that root witnessed externally. Events are claimed atomically before
the anchor is written, so overlapping runs always anchor disjoint sets.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence

from ..alerts import Alert, AlertCategory, AlertDispatcher, AlertSeverity
from ..errors import NotFoundError, WitnessUnavailableError
from ..graph.nodes import Event, NodeKind, NodeRef
from ..graph.records import MerkleAnchor, VerificationStatus, WitnessRecord
from ..graph.store import EvidenceStore
from ..ledger.chain import hash_payload
from ..util import ensure_utc, new_id, utc_now
from .merkle import InclusionProof, inclusion_proof, merkle_root
from .witness import RetryPolicy, WitnessProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnchorVerification:
    anchor_id: str
    valid: bool
    stored_root: str
    computed_root: str
    missing_events: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "valid": self.valid,
            "stored_root": self.stored_root,
            "computed_root": self.computed_root,
            "missing_events": list(self.missing_events),
        }


class MerkleAnchorService:
    def __init__(
        self,
        store: EvidenceStore,
        providers: Sequence[WitnessProvider] = (),
        *,
        retry: RetryPolicy | None = None,
        alerts: AlertDispatcher | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.providers = list(providers)
        self.retry = retry or RetryPolicy()
        self.alerts = alerts or AlertDispatcher()
        self._sleep = sleep

    def run_once(self, now: datetime | None = None) -> MerkleAnchor | None:
        """
        Anchor every unclaimed event recorded up to `now`.

        Returns the anchor, or None when there was nothing to anchor.
        """
        now = ensure_utc(now) if now else utc_now()
        anchor_id = new_id("ANC")
        events = self.store.claim_unanchored_events(anchor_id, now)
        if not events:
            return None

        try:
            anchor = self.store.save_anchor(
                MerkleAnchor(
                    anchor_id=anchor_id,
                    period_start=min(e.recorded_at for e in events),
                    period_end=now,
                    event_count=len(events),
                    merkle_root=merkle_root([e.payload_hash for e in events]),
                    event_ids=tuple(e.event_id for e in events),
                    created_at=now,
                )
            )
        except Exception:
            self.store.release_claim(anchor_id)
            raise

        logger.info("Anchored %d event(s) in %s root=%s", anchor.event_count, anchor.anchor_id, anchor.merkle_root)
        return self._witness(anchor, now)

    def _witness(self, anchor: MerkleAnchor, now: datetime) -> MerkleAnchor:
        if not self.providers:
            return anchor

        records: list[WitnessRecord] = []
        errors: list[str] = []
        for provider in self.providers:
            try:
                records.append(
                    self.retry.call(lambda p=provider: p.witness(anchor.merkle_root, anchor), sleep=self._sleep)
                )
            except WitnessUnavailableError as e:
                errors.append(f"{provider.name}: {e}")
                logger.warning("Witness %s unavailable for %s: %s", provider.name, anchor.anchor_id, e)
            except Exception as e:
                errors.append(f"{provider.name}: {e}")
                logger.exception("Witness %s failed for %s", provider.name, anchor.anchor_id)

        updated = self.store.save_anchor(
            anchor.with_witnesses(
                records,
                attempts=anchor.attempts + 1,
                now=now,
                error="; ".join(errors) or None,
            )
        )
        if updated.verification_status != VerificationStatus.VERIFIED:
            self.alerts.emit(
                Alert(
                    category=AlertCategory.SYSTEM_HEALTH,
                    severity=AlertSeverity.CRITICAL,
                    title="Anchor witnessing degraded",
                    message=f"Anchor {updated.anchor_id} is still PENDING after {updated.attempts} attempt(s): {updated.last_error}",
                    related_ids={"anchor_id": updated.anchor_id},
                )
            )
        return updated

    def retry_pending(self, now: datetime | None = None) -> list[MerkleAnchor]:
        """
        Re-submit PENDING anchors to the witnesses.

        Anchors verified by another run since the listing are skipped, and a
        failure on one anchor is logged without stopping the rest.
        """
        now = ensure_utc(now) if now else utc_now()
        if not self.providers:
            return []
        retried: list[MerkleAnchor] = []
        for pending in self.store.anchors(VerificationStatus.PENDING):
            anchor = self.store.get_anchor(pending.anchor_id)
            if anchor is None or anchor.verification_status != VerificationStatus.PENDING:
                continue
            try:
                retried.append(self._witness(anchor, now))
            except Exception:
                logger.exception("Anchor retry failed for %s", anchor.anchor_id)
        return retried

    def run_cycle(self, now: datetime | None = None) -> MerkleAnchor | None:
        """One scheduled pass: retry pending anchors, then anchor new events."""
        self.retry_pending(now)
        return self.run_once(now)

    def _events(self, anchor: MerkleAnchor) -> tuple[list[Event], list[str]]:
        events: list[Event] = []
        missing: list[str] = []
        for event_id in anchor.event_ids:
            node = self.store.get_node(NodeRef(NodeKind.EVENT, event_id))
            if node is None:
                missing.append(event_id)
            else:
                events.append(node)  # type: ignore[arg-type]
        return events, missing

    def verify_anchor(self, anchor_id: str) -> AnchorVerification:
        """Recompute an anchor's root from the current payloads of its events."""
        anchor = self.store.get_anchor(anchor_id)
        if anchor is None:
            raise NotFoundError(f"Anchor not found: {anchor_id}")
        events, missing = self._events(anchor)
        computed = merkle_root([hash_payload(e.payload) for e in events])
        return AnchorVerification(
            anchor_id=anchor_id,
            valid=not missing and computed == anchor.merkle_root,
            stored_root=anchor.merkle_root,
            computed_root=computed,
            missing_events=tuple(missing),
        )

    def prove_inclusion(self, event_id: str) -> InclusionProof:
        anchor = self.store.anchor_for_event(event_id)
        if anchor is None:
            raise NotFoundError(f"Event {event_id} is not anchored")
        events, missing = self._events(anchor)
        if missing:
            raise NotFoundError(f"Anchor {anchor.anchor_id} references missing events: {', '.join(missing)}")
        index = anchor.event_ids.index(event_id)
        return inclusion_proof([e.payload_hash for e in events], index)
