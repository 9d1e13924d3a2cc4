"""
Integrity records kept alongside the graph: Merkle anchors and trusted
timestamps. Neither is a graph node; both are immutable once witnessed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from ..util import parse_timestamp


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class TimestampSubject(str, Enum):
    EVENT = "EVENT"
    ANCHOR = "ANCHOR"


@dataclass(frozen=True)
class WitnessRecord:
    """Receipt from an external witness for a Merkle root."""

    provider: str
    reference: str
    witnessed_at: datetime
    proof: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "reference": self.reference,
            "witnessed_at": self.witnessed_at.isoformat(),
            "proof": self.proof,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WitnessRecord":
        return cls(
            provider=str(data["provider"]),
            reference=str(data.get("reference", "")),
            witnessed_at=parse_timestamp(data["witnessed_at"]),
            proof=dict(data.get("proof") or {}),
        )


@dataclass(frozen=True)
class MerkleAnchor:
    anchor_id: str
    period_start: datetime
    period_end: datetime
    event_count: int
    merkle_root: str
    event_ids: tuple[str, ...]
    created_at: datetime
    verification_status: VerificationStatus = VerificationStatus.PENDING
    witnesses: tuple[WitnessRecord, ...] = ()
    attempts: int = 0
    verified_at: datetime | None = None
    last_error: str | None = None

    def with_witnesses(self, witnesses: list[WitnessRecord], *, attempts: int, now: datetime, error: str | None) -> "MerkleAnchor":
        status = VerificationStatus.VERIFIED if witnesses else VerificationStatus.PENDING
        return replace(
            self,
            witnesses=tuple(witnesses),
            attempts=attempts,
            verification_status=status,
            verified_at=now if witnesses else None,
            last_error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "event_count": self.event_count,
            "merkle_root": self.merkle_root,
            "event_ids": list(self.event_ids),
            "created_at": self.created_at.isoformat(),
            "verification_status": self.verification_status.value,
            "witnesses": [w.to_dict() for w in self.witnesses],
            "attempts": self.attempts,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MerkleAnchor":
        verified_at = data.get("verified_at")
        return cls(
            anchor_id=str(data["anchor_id"]),
            period_start=parse_timestamp(data["period_start"]),
            period_end=parse_timestamp(data["period_end"]),
            event_count=int(data["event_count"]),
            merkle_root=str(data["merkle_root"]),
            event_ids=tuple(str(e) for e in data.get("event_ids", [])),
            created_at=parse_timestamp(data["created_at"]),
            verification_status=VerificationStatus(data.get("verification_status", "PENDING")),
            witnesses=tuple(WitnessRecord.from_dict(w) for w in data.get("witnesses", [])),
            attempts=int(data.get("attempts", 0)),
            verified_at=parse_timestamp(verified_at) if verified_at else None,
            last_error=data.get("last_error"),
        )


@dataclass(frozen=True)
class TsaTimestamp:
    """Trusted timestamp token for a hash."""

    timestamp_id: str
    subject_type: TimestampSubject
    subject_id: str
    hash_timestamped: str
    tsa_response: str
    tsa_time: datetime
    tsa_provider: str
    tsa_algorithm: str = "SHA-256"

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp_id": self.timestamp_id,
            "subject_type": self.subject_type.value,
            "subject_id": self.subject_id,
            "hash_timestamped": self.hash_timestamped,
            "tsa_response": self.tsa_response,
            "tsa_time": self.tsa_time.isoformat(),
            "tsa_provider": self.tsa_provider,
            "tsa_algorithm": self.tsa_algorithm,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TsaTimestamp":
        return cls(
            timestamp_id=str(data["timestamp_id"]),
            subject_type=TimestampSubject(data.get("subject_type", "EVENT")),
            subject_id=str(data["subject_id"]),
            hash_timestamped=str(data["hash_timestamped"]),
            tsa_response=str(data["tsa_response"]),
            tsa_time=parse_timestamp(data["tsa_time"]),
            tsa_provider=str(data["tsa_provider"]),
            tsa_algorithm=str(data.get("tsa_algorithm", "SHA-256")),
        )
