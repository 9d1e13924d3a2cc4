from __future__ import annotations

import hashlib

import pytest

from evgraph.anchor.merkle import ProofStep, build_levels, hash_pair, inclusion_proof, merkle_root, verify_proof
from evgraph.util import GENESIS_HASH


def _leaf(n: int) -> str:
    return hashlib.sha256(f"leaf-{n}".encode("utf-8")).hexdigest()


def test_empty_tree_root_is_genesis() -> None:
    assert merkle_root([]) == GENESIS_HASH


def test_single_leaf_is_its_own_root() -> None:
    leaf = _leaf(0)
    assert merkle_root([leaf]) == leaf

    proof = inclusion_proof([leaf], 0)
    assert proof.steps == ()
    assert verify_proof(leaf, proof.steps, leaf)


def test_two_leaves() -> None:
    a, b = _leaf(0), _leaf(1)
    assert merkle_root([a, b]) == hashlib.sha256((a + b).encode("utf-8")).hexdigest()


def test_odd_level_duplicates_last_node() -> None:
    a, b, c = _leaf(0), _leaf(1), _leaf(2)

    expected = hash_pair(hash_pair(a, b), hash_pair(c, c))
    assert merkle_root([a, b, c]) == expected
    assert [len(level) for level in build_levels([a, b, c])] == [3, 2, 1]


@pytest.mark.parametrize("count", [2, 3, 5, 8, 13])
def test_every_leaf_has_a_valid_proof(count: int) -> None:
    leaves = [_leaf(i) for i in range(count)]
    root = merkle_root(leaves)

    for i, leaf in enumerate(leaves):
        proof = inclusion_proof(leaves, i)
        assert proof.root == root
        assert verify_proof(leaf, proof.steps, root)


def test_proof_rejects_wrong_leaf() -> None:
    leaves = [_leaf(i) for i in range(4)]
    proof = inclusion_proof(leaves, 1)

    assert not verify_proof(_leaf(99), proof.steps, proof.root)


def test_proof_rejects_swapped_position() -> None:
    leaves = [_leaf(i) for i in range(4)]
    proof = inclusion_proof(leaves, 0)
    flipped = [ProofStep(s.sibling, "left" if s.position == "right" else "right") for s in proof.steps]

    assert not verify_proof(leaves[0], flipped, proof.root)


def test_proof_index_out_of_range() -> None:
    with pytest.raises(IndexError):
        inclusion_proof([_leaf(0)], 1)
    with pytest.raises(IndexError):
        inclusion_proof([], 0)


def test_proof_serialization() -> None:
    leaves = [_leaf(i) for i in range(3)]
    data = inclusion_proof(leaves, 2).to_dict()

    assert data["index"] == 2
    assert data["leaf"] == leaves[2]
    assert data["steps"][0] == {"hash": leaves[2], "position": "right"}
