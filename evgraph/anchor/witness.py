"""
Witness providers for Merkle roots, plus the retry policy used to call them.

A witness is any external party that can later attest it saw a root at
a given time (a timestamp authority, an append-only public log). Only
the contract lives here; protocol-specific clients plug in as providers.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Protocol, TypeVar

from ..errors import WitnessUnavailableError
from ..graph.records import MerkleAnchor, WitnessRecord
from ..util import new_id, utc_now

T = TypeVar("T")


class WitnessProvider(Protocol):
    name: str

    def witness(self, root: str, anchor: MerkleAnchor) -> WitnessRecord:
        """
        Submit a root and return the receipt.

        Raises:
            WitnessUnavailableError: the witness could not be reached.
        """
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base, base*m, base*m^2, ... capped at max_delay_s."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    multiplier: float = 2.0
    max_delay_s: float = 30.0

    def delays(self) -> Iterator[float]:
        delay = self.base_delay_s
        for _ in range(max(self.max_attempts - 1, 0)):
            yield min(delay, self.max_delay_s)
            delay *= self.multiplier

    def call(self, fn: Callable[[], T], *, sleep: Callable[[float], None] = time.sleep) -> T:
        """Call `fn`, retrying WitnessUnavailableError with backoff."""
        delays = self.delays()
        while True:
            try:
                return fn()
            except WitnessUnavailableError:
                delay = next(delays, None)
                if delay is None:
                    raise
                sleep(delay)


class FileLogWitness:
    """
    Append roots to an external JSON Lines log.

    Stands in for a public append-only ledger: the log lives outside the
    evidence store and each line is a receipt for one root.
    """

    def __init__(self, path: Path, name: str = "file-log"):
        self.path = path
        self.name = name

    def witness(self, root: str, anchor: MerkleAnchor) -> WitnessRecord:
        now = utc_now()
        reference = new_id("WIT")
        entry = {
            "reference": reference,
            "anchor_id": anchor.anchor_id,
            "merkle_root": root,
            "event_count": anchor.event_count,
            "witnessed_at": now.isoformat(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, sort_keys=True) + "\n")
        except OSError as e:
            raise WitnessUnavailableError(f"Cannot write witness log {self.path}: {e}") from e
        return WitnessRecord(provider=self.name, reference=reference, witnessed_at=now, proof={"log": str(self.path)})
