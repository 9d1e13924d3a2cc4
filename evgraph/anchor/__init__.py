"""Merkle anchoring of sealed events."""

from .merkle import InclusionProof, ProofStep, inclusion_proof, merkle_root, verify_proof
from .service import AnchorVerification, MerkleAnchorService
from .witness import FileLogWitness, RetryPolicy, WitnessProvider

__all__ = [
    "AnchorVerification",
    "FileLogWitness",
    "InclusionProof",
    "MerkleAnchorService",
    "ProofStep",
    "RetryPolicy",
    "WitnessProvider",
    "inclusion_proof",
    "merkle_root",
    "verify_proof",
]
