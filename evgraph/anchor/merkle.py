"""
Merkle tree over hex digests.

Parents are sha256(left_hex + right_hex); an odd level duplicates its
last node. The root of an empty tree is the genesis constant and the
root of a single leaf is the leaf itself.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Literal, Sequence

from ..util import GENESIS_HASH


def hash_pair(left: str, right: str) -> str:
    return hashlib.sha256((left + right).encode("utf-8")).hexdigest()


def build_levels(leaves: Sequence[str]) -> list[list[str]]:
    """All levels of the tree, leaves first, root last."""
    if not leaves:
        return [[GENESIS_HASH]]
    levels = [list(leaves)]
    while len(levels[-1]) > 1:
        level = levels[-1]
        if len(level) % 2 == 1:
            level = level + [level[-1]]
        levels.append([hash_pair(level[i], level[i + 1]) for i in range(0, len(level), 2)])
    return levels


def merkle_root(leaves: Sequence[str]) -> str:
    return build_levels(leaves)[-1][0]


@dataclass(frozen=True)
class ProofStep:
    sibling: str
    position: Literal["left", "right"]

    def to_dict(self) -> dict[str, str]:
        return {"hash": self.sibling, "position": self.position}


@dataclass(frozen=True)
class InclusionProof:
    leaf: str
    index: int
    root: str
    steps: tuple[ProofStep, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "leaf": self.leaf,
            "index": self.index,
            "root": self.root,
            "steps": [s.to_dict() for s in self.steps],
        }


def inclusion_proof(leaves: Sequence[str], index: int) -> InclusionProof:
    if not 0 <= index < len(leaves):
        raise IndexError(f"Leaf index {index} out of range for {len(leaves)} leaves")
    levels = build_levels(leaves)
    steps: list[ProofStep] = []
    pos = index
    for level in levels[:-1]:
        if pos % 2 == 0:
            sibling = level[pos + 1] if pos + 1 < len(level) else level[pos]
            steps.append(ProofStep(sibling, "right"))
        else:
            steps.append(ProofStep(level[pos - 1], "left"))
        pos //= 2
    return InclusionProof(leaf=leaves[index], index=index, root=levels[-1][0], steps=tuple(steps))


def verify_proof(leaf: str, steps: Sequence[ProofStep], root: str) -> bool:
    current = leaf
    for step in steps:
        if step.position == "left":
            current = hash_pair(step.sibling, current)
        else:
            current = hash_pair(current, step.sibling)
    return current == root
