"""Hash-chain ledger."""

from .chain import ChainValidation, Gap, HashChainLedger, StreamHead, hash_payload

__all__ = ["ChainValidation", "Gap", "HashChainLedger", "StreamHead", "hash_payload"]
