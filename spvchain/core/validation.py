from __future__ import annotations

from typing import Callable, Sequence

from spvchain.core.config import HASH_SIZE, MAINNET, ConsensusParams
from spvchain.core.errors import (
    MalformedMantissa,
    ParentHashMismatch,
    ThresholdMismatch,
    ThresholdOutOfRange,
)
from spvchain.core.header import BlockHeader
from spvchain.core.pow import check_proof_of_work
from spvchain.core.target import decode_compact


# -- Single-value checks --


def validate_threshold_range(threshold: int, params: ConsensusParams = MAINNET) -> None:
    """A threshold must be positive and no easier than the network's limit."""
    if not 0 < threshold <= params.pow_limit:
        raise ThresholdOutOfRange(f"threshold {threshold:#x} outside (0, pow_limit]")


def validate_hash(block_hash: bytes) -> None:
    if len(block_hash) != HASH_SIZE:
        raise ValueError(f"hash must be {HASH_SIZE} bytes, got {len(block_hash)}")


def header_threshold(header: BlockHeader, index: int | None = None) -> int:
    """Decode a header's bits, attributing a malformed mantissa to ``index``."""
    try:
        return decode_compact(header.bits)
    except MalformedMantissa as e:
        raise MalformedMantissa(f"malformed bits {header.bits:08x}", index) from e


# -- Chain linking --


def link_headers(
    headers: Sequence[BlockHeader],
    prior_hash: bytes,
    threshold_for_index: Callable[[int], int],
    hashes: Sequence[bytes] | None = None,
) -> list[bytes]:
    """Walk a batch from a trusted hash, enforcing continuity, bits and PoW.

    ``hashes`` may carry the digests of ``headers`` computed ahead of time;
    hashing has no inter-header dependency, linking does. The first failed
    check raises and nothing is returned.
    """
    if hashes is None:
        hashes = [header.block_hash() for header in headers]
    elif len(hashes) != len(headers):
        raise ValueError("hashes and headers differ in length")

    linked: list[bytes] = []
    expected_parent = prior_hash
    for i, header in enumerate(headers):
        if header.prev_hash != expected_parent:
            raise ParentHashMismatch("parent hash mismatch", i)

        threshold = threshold_for_index(i)
        if header_threshold(header, i) != threshold:
            raise ThresholdMismatch(
                f"bits {header.bits:08x} do not encode threshold {threshold:#x}", i
            )

        check_proof_of_work(hashes[i], threshold, i)

        linked.append(hashes[i])
        expected_parent = hashes[i]
    return linked
