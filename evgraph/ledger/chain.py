"""
Hash-chain ledger: per-stream sequencing and tamper-evident hashing.

Each source system is an independent stream. An event's previous_hash is
the payload_hash of the prior event in the same stream (or the genesis
constant for sequence 1), so editing, reordering, or deleting a sealed
event breaks the chain at a detectable position.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator

from ..errors import IntegrityError, SequenceGapError, ValidationError
from ..graph.nodes import Event, Severity
from ..graph.store import EvidenceStore, WriteSet
from ..util import GENESIS_HASH, canonical_json, ensure_utc, new_id, sha256_hex, utc_now

logger = logging.getLogger(__name__)

EVENT_TYPE_RE = re.compile(r"^[A-Z][A-Z0-9_]*(\.[A-Z0-9_]+)*$")


def hash_payload(payload: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON encoding of a payload."""
    return sha256_hex(canonical_json(payload))


@dataclass(frozen=True)
class StreamHead:
    """Position of the newest sealed event in one stream."""

    source_system: str
    sequence: int
    last_hash: str

    @classmethod
    def genesis(cls, source_system: str) -> "StreamHead":
        return cls(source_system=source_system, sequence=0, last_hash=GENESIS_HASH)


@dataclass(frozen=True)
class ChainValidation:
    valid: bool
    total_events: int
    checked_events: int
    broken_at_sequence: int | None = None
    source_system: str | None = None
    error: str | None = None

    def raise_for_status(self) -> None:
        if not self.valid:
            raise IntegrityError(self.error or "Hash chain is invalid")

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "total_events": self.total_events,
            "checked_events": self.checked_events,
            "broken_at_sequence": self.broken_at_sequence,
            "source_system": self.source_system,
            "error": self.error,
        }


@dataclass(frozen=True)
class Gap:
    """Missing sequence numbers start..end (inclusive) in one stream."""

    source_system: str
    start: int
    end: int

    @property
    def missing(self) -> int:
        return self.end - self.start + 1

    def to_dict(self) -> dict[str, Any]:
        return {"source_system": self.source_system, "from": self.start, "to": self.end}


def _validate_input(source_system: str, event_type: str, severity: Any, payload: Any) -> Severity:
    if not isinstance(source_system, str) or not source_system.strip():
        raise ValidationError("source_system must be a non-empty string")
    if not isinstance(event_type, str) or not EVENT_TYPE_RE.match(event_type):
        raise ValidationError(f"Malformed event_type: {event_type!r}")
    try:
        sev = Severity(severity)
    except ValueError:
        raise ValidationError(f"Unknown severity: {severity!r}") from None
    if not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")
    try:
        canonical_json(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"payload is not JSON-serializable: {e}") from None
    return sev


class HashChainLedger:
    """
    Seals events into per-source hash chains.

    Appends to the same stream are serialized by a per-stream lock that is
    held across the graph commit, so sequence numbers never collide and the
    stream head only moves once the commit has succeeded. Different streams
    never contend.
    """

    def __init__(self, store: EvidenceStore):
        self.store = store
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._degraded: set[str] = set()

    def _lock_for(self, source_system: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(source_system)
            if lock is None:
                lock = self._locks[source_system] = threading.Lock()
            return lock

    @contextmanager
    def stream_lock(self, source_system: str) -> Iterator[None]:
        with self._lock_for(source_system):
            yield

    def head(self, source_system: str) -> StreamHead:
        stored = self.store.get_stream_head(source_system)
        if stored is None:
            return StreamHead.genesis(source_system)
        sequence, last_hash = stored
        return StreamHead(source_system, sequence, last_hash)

    def append(
        self,
        source_system: str,
        payload: dict[str, Any],
        *,
        event_type: str,
        severity: Severity | str = Severity.INFO,
        occurred_at: datetime | None = None,
        regulatory_tags: list[str] | tuple[str, ...] = (),
        articles: list[str] | tuple[str, ...] = (),
        correlation_id: str | None = None,
        causation_id: str | None = None,
        extend: Callable[[Event, WriteSet], None] | None = None,
    ) -> Event:
        """
        Seal and commit one event.

        `extend` may add further nodes and edges (clocks, relation edges)
        to the same write set; everything commits together or not at all.

        Raises:
            ValidationError: malformed input; nothing is appended.
        """
        sev = _validate_input(source_system, event_type, severity, payload)
        payload_hash = hash_payload(payload)
        recorded_at = utc_now()

        with self.stream_lock(source_system):
            head = self.head(source_system)
            event = Event(
                event_id=new_id("EVT"),
                event_type=event_type,
                severity=sev,
                source_system=source_system,
                sequence_number=head.sequence + 1,
                payload=payload,
                payload_hash=payload_hash,
                previous_hash=head.last_hash,
                occurred_at=ensure_utc(occurred_at) if occurred_at else recorded_at,
                recorded_at=recorded_at,
                regulatory_tags=tuple(regulatory_tags),
                articles=tuple(articles),
                correlation_id=correlation_id,
                causation_id=causation_id,
            )
            write_set = WriteSet(nodes=[event])
            if extend is not None:
                extend(event, write_set)
            self.store.commit(write_set)

        return event

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _validate_stream(
        self,
        source_system: str,
        from_seq: int | None,
        to_seq: int | None,
    ) -> ChainValidation:
        events = self.store.stream_events(source_system)
        prev: Event | None = None
        checked = 0
        total = 0
        for event in events:
            if from_seq is not None and event.sequence_number < from_seq:
                prev = event
                continue
            if to_seq is not None and event.sequence_number > to_seq:
                break
            total += 1

            if hash_payload(event.payload) != event.payload_hash:
                return ChainValidation(
                    valid=False,
                    total_events=total,
                    checked_events=checked,
                    broken_at_sequence=event.sequence_number,
                    source_system=source_system,
                    error=f"Payload hash mismatch at sequence {event.sequence_number}",
                )

            if prev is not None:
                expected = prev.payload_hash
            elif event.sequence_number == 1:
                expected = GENESIS_HASH
            else:
                expected = None

            if expected is None or event.previous_hash != expected:
                return ChainValidation(
                    valid=False,
                    total_events=total,
                    checked_events=checked,
                    broken_at_sequence=event.sequence_number,
                    source_system=source_system,
                    error=f"Chain broken at sequence {event.sequence_number}",
                )

            checked += 1
            prev = event

        return ChainValidation(valid=True, total_events=total, checked_events=checked, source_system=source_system)

    def validate_chain(
        self,
        source_system: str | None = None,
        from_seq: int | None = None,
        to_seq: int | None = None,
    ) -> ChainValidation:
        """
        Recompute hashes and linkage. Read-only; never repairs.

        Without `source_system` every stream is checked and the first
        failure is reported.
        """
        if source_system is not None:
            return self._validate_stream(source_system, from_seq, to_seq)

        total = 0
        checked = 0
        for stream in self.store.streams():
            result = self._validate_stream(stream, from_seq, to_seq)
            total += result.total_events
            checked += result.checked_events
            if not result.valid:
                return ChainValidation(
                    valid=False,
                    total_events=total,
                    checked_events=checked,
                    broken_at_sequence=result.broken_at_sequence,
                    source_system=stream,
                    error=result.error,
                )
        return ChainValidation(valid=True, total_events=total, checked_events=checked)

    def detect_gaps(self, source_system: str | None = None) -> list[Gap]:
        """
        Report missing sequence numbers. Streams with gaps are marked degraded.
        """
        streams = [source_system] if source_system is not None else self.store.streams()
        gaps: list[Gap] = []
        for stream in streams:
            expected = 1
            stream_gaps: list[Gap] = []
            for event in self.store.stream_events(stream):
                if event.sequence_number > expected:
                    stream_gaps.append(Gap(stream, expected, event.sequence_number - 1))
                expected = event.sequence_number + 1
            if stream_gaps:
                if stream not in self._degraded:
                    logger.warning("Stream %s has %d sequence gap(s)", stream, len(stream_gaps))
                self._degraded.add(stream)
            gaps.extend(stream_gaps)
        return gaps

    def require_contiguous(self, source_system: str) -> None:
        gaps = self.detect_gaps(source_system)
        if gaps:
            raise SequenceGapError(source_system, [(g.start, g.end) for g in gaps])

    @property
    def degraded_streams(self) -> set[str]:
        return set(self._degraded)

    def is_degraded(self, source_system: str) -> bool:
        return source_system in self._degraded
