from __future__ import annotations

from spvchain.core.errors import ProofOfWorkFailure


def hash_to_int(block_hash: bytes) -> int:
    """Numeric value of a storage-order hash (bytes reversed, then big-endian)."""
    return int.from_bytes(block_hash, "little")


def meets_target(block_hash: bytes, threshold: int) -> bool:
    """Check if the block hash satisfies the threshold."""
    return hash_to_int(block_hash) <= threshold


def check_proof_of_work(block_hash: bytes, threshold: int, index: int | None = None) -> None:
    if not meets_target(block_hash, threshold):
        raise ProofOfWorkFailure("hash above threshold", index)
