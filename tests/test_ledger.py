from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from evgraph.errors import IntegrityError, SequenceGapError, ValidationError
from evgraph.graph.nodes import Event, Severity
from evgraph.graph.store import EvidenceStore
from evgraph.ledger.chain import HashChainLedger, hash_payload
from evgraph.util import GENESIS_HASH, sha256_hex


def test_first_event_links_to_genesis(ledger: HashChainLedger) -> None:
    event = ledger.append("payments", {"amount": 100}, event_type="TRANSACTION.CREATED")

    assert event.sequence_number == 1
    assert event.previous_hash == GENESIS_HASH
    assert event.payload_hash == sha256_hex('{"amount":100}')


def test_events_chain_within_stream(ledger: HashChainLedger) -> None:
    first = ledger.append("payments", {"amount": 100}, event_type="TRANSACTION.CREATED")
    second = ledger.append("payments", {"amount": 200}, event_type="TRANSACTION.CREATED")

    assert second.sequence_number == 2
    assert second.previous_hash == first.payload_hash
    head = ledger.head("payments")
    assert (head.sequence, head.last_hash) == (2, second.payload_hash)


def test_streams_are_independent(ledger: HashChainLedger) -> None:
    ledger.append("payments", {"a": 1}, event_type="TRANSACTION.CREATED")
    other = ledger.append("identity", {"b": 2}, event_type="LOGIN.FAILED")

    assert other.sequence_number == 1
    assert other.previous_hash == GENESIS_HASH


def test_payload_hash_ignores_key_order() -> None:
    assert hash_payload({"b": 2, "a": 1}) == hash_payload({"a": 1, "b": 2})


@pytest.mark.parametrize(
    ("source", "event_type", "severity", "payload"),
    [
        ("", "INCIDENT.CREATED", "INFO", {}),
        ("payments", "incident created", "INFO", {}),
        ("payments", "INCIDENT.CREATED", "URGENT", {}),
        ("payments", "INCIDENT.CREATED", "INFO", ["not", "a", "dict"]),
        ("payments", "INCIDENT.CREATED", "INFO", {"when": datetime(2026, 1, 1)}),
    ],
)
def test_malformed_input_appends_nothing(
    ledger: HashChainLedger, store: EvidenceStore, source, event_type, severity, payload
) -> None:
    with pytest.raises(ValidationError):
        ledger.append(source, payload, event_type=event_type, severity=severity)

    assert store.streams() == []
    assert list(store.iter_records()) == []


def test_validate_chain_passes_on_untouched_ledger(ledger: HashChainLedger) -> None:
    for i in range(5):
        ledger.append("payments", {"i": i}, event_type="TRANSACTION.CREATED")

    result = ledger.validate_chain("payments")
    assert result.valid
    assert result.checked_events == 5
    result.raise_for_status()


def test_tampered_payload_detected_after_reopen(tmp_path: Path) -> None:
    ledger = HashChainLedger(EvidenceStore(tmp_path))
    for amount in (100, 200, 300):
        ledger.append("payments", {"amount": amount}, event_type="TRANSACTION.CREATED")

    journal = tmp_path / "graph.jsonl"
    text = journal.read_text(encoding="utf-8")
    assert text.count('"amount":200') == 1
    journal.write_text(text.replace('"amount":200', '"amount":250'), encoding="utf-8")

    reopened = HashChainLedger(EvidenceStore(tmp_path))
    result = reopened.validate_chain()

    assert not result.valid
    assert result.source_system == "payments"
    assert result.broken_at_sequence == 2
    assert result.error == "Payload hash mismatch at sequence 2"
    with pytest.raises(IntegrityError):
        result.raise_for_status()


def test_rehashed_payload_still_breaks_linkage(tmp_path: Path) -> None:
    ledger = HashChainLedger(EvidenceStore(tmp_path))
    ledger.append("payments", {"amount": 100}, event_type="TRANSACTION.CREATED")
    ledger.append("payments", {"amount": 200}, event_type="TRANSACTION.CREATED")

    journal = tmp_path / "graph.jsonl"
    old_hash = hash_payload({"amount": 100})
    new_hash = hash_payload({"amount": 101})
    text = journal.read_text(encoding="utf-8")
    # Rewrite the first event consistently; the second event's previous_hash still names the old payload.
    first, rest = text.split("\n", 1)
    first = first.replace('"amount":100', '"amount":101').replace(old_hash, new_hash)
    journal.write_text(first + "\n" + rest, encoding="utf-8")

    result = HashChainLedger(EvidenceStore(tmp_path)).validate_chain("payments")

    assert not result.valid
    assert result.error == "Chain broken at sequence 2"


def test_validate_chain_range(ledger: HashChainLedger) -> None:
    for i in range(6):
        ledger.append("payments", {"i": i}, event_type="TRANSACTION.CREATED")

    result = ledger.validate_chain("payments", from_seq=3, to_seq=5)
    assert result.valid
    assert result.total_events == 3


def _event(seq: int, previous_hash: str) -> Event:
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    payload = {"seq": seq}
    return Event(
        event_id=f"EVT_MANUAL_{seq}",
        event_type="TRANSACTION.CREATED",
        severity=Severity.INFO,
        source_system="payments",
        sequence_number=seq,
        payload=payload,
        payload_hash=hash_payload(payload),
        previous_hash=previous_hash,
        occurred_at=now,
        recorded_at=now,
    )


def test_detect_gaps_marks_stream_degraded(ledger: HashChainLedger, store: EvidenceStore) -> None:
    first = ledger.append("payments", {"seq": 1}, event_type="TRANSACTION.CREATED")
    store.append_event(_event(4, first.payload_hash))

    gaps = ledger.detect_gaps()

    assert [(g.source_system, g.start, g.end, g.missing) for g in gaps] == [("payments", 2, 3, 2)]
    assert ledger.is_degraded("payments")
    assert ledger.degraded_streams == {"payments"}
    with pytest.raises(SequenceGapError) as exc:
        ledger.require_contiguous("payments")
    assert exc.value.gaps == [(2, 3)]


def test_no_gaps_in_contiguous_stream(ledger: HashChainLedger) -> None:
    for i in range(3):
        ledger.append("payments", {"i": i}, event_type="TRANSACTION.CREATED")

    assert ledger.detect_gaps("payments") == []
    ledger.require_contiguous("payments")
    assert not ledger.is_degraded("payments")


def test_sequence_collision_is_rejected(ledger: HashChainLedger, store: EvidenceStore) -> None:
    first = ledger.append("payments", {"seq": 1}, event_type="TRANSACTION.CREATED")

    with pytest.raises(ValidationError, match="already used"):
        store.append_event(_event(1, first.previous_hash))


def test_concurrent_appends_get_unique_sequences(ledger: HashChainLedger) -> None:
    def worker(n: int) -> None:
        for i in range(10):
            ledger.append("payments", {"worker": n, "i": i}, event_type="TRANSACTION.CREATED")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert ledger.head("payments").sequence == 40
    assert ledger.validate_chain("payments").valid
    assert ledger.detect_gaps("payments") == []


def test_head_survives_reopen(tmp_path: Path) -> None:
    ledger = HashChainLedger(EvidenceStore(tmp_path))
    last = ledger.append("payments", {"i": 1}, event_type="TRANSACTION.CREATED")

    reopened = HashChainLedger(EvidenceStore(tmp_path))
    nxt = reopened.append("payments", {"i": 2}, event_type="TRANSACTION.CREATED")

    assert nxt.sequence_number == 2
    assert nxt.previous_hash == last.payload_hash
