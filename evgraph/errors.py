"""
Exception hierarchy for the evidence graph.

Integrity checks return structured results; these exceptions are raised
only where a caller asked for a hard guarantee or supplied bad input.
"""

from __future__ import annotations


class EvidenceGraphError(Exception):
    """Base class for all evidence graph errors."""


class ValidationError(EvidenceGraphError, ValueError):
    """Malformed input. Nothing was appended."""


class NotFoundError(EvidenceGraphError, KeyError):
    """A referenced node, anchor, or query id does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class IntegrityError(EvidenceGraphError):
    """A hash chain or anchor failed verification."""


class SequenceGapError(IntegrityError):
    """A stream has missing sequence numbers."""

    def __init__(self, source_system: str, gaps: list[tuple[int, int]]):
        self.source_system = source_system
        self.gaps = gaps
        spans = ", ".join(f"{a}-{b}" if a != b else str(a) for a, b in gaps)
        super().__init__(f"Sequence gap in stream {source_system!r}: missing {spans}")


class WitnessUnavailableError(EvidenceGraphError):
    """An external witness or timestamp authority could not be reached."""


class InvalidTransitionError(EvidenceGraphError):
    """A clock transition is not allowed from its current state."""
