from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Union

from spvchain.core.config import MAINNET, ConsensusParams
from spvchain.core.errors import (
    PeriodAnchorMismatch,
    RetargetMismatch,
    UnsupportedSpan,
    ValidationError,
)
from spvchain.core.header import BlockHeader
from spvchain.core.pow import meets_target
from spvchain.core.retarget import adjust, boundary_index
from spvchain.core.serialization import hash_to_hex
from spvchain.core.target import round_to_compact
from spvchain.core.validation import (
    header_threshold,
    link_headers,
    validate_hash,
    validate_threshold_range,
)
from spvchain.source import HeaderSource, fetch_retarget_inputs

logger = logging.getLogger(__name__)

HeaderLike = Union[bytes, BlockHeader]


@dataclass(frozen=True)
class ChainTip:
    """Trusted anchor a batch is verified from. Never mutated."""

    height: int
    hash: bytes
    threshold: int


def _as_header(header: HeaderLike) -> BlockHeader:
    if isinstance(header, BlockHeader):
        return header
    return BlockHeader.from_bytes(header)


def _as_headers(headers: Sequence[HeaderLike]) -> list[BlockHeader]:
    batch = []
    for i, header in enumerate(headers):
        try:
            batch.append(_as_header(header))
        except ValidationError as e:
            raise type(e)(str(e), i) from e
    return batch


# -- Single period --


def verify(
    prior_hash: bytes,
    threshold: int,
    headers: Sequence[HeaderLike],
    params: ConsensusParams = MAINNET,
) -> list[bytes]:
    """Verify a batch against one constant threshold. Returns header hashes.

    Does not look for period boundaries; the caller keeps the batch inside
    one period.
    """
    validate_hash(prior_hash)
    try:
        validate_threshold_range(threshold, params)
        batch = _as_headers(headers)
        hashes = link_headers(batch, prior_hash, lambda i: threshold)
    except ValidationError as e:
        logger.warning(f"rejected batch after {hash_to_hex(prior_hash)[:16]}: {e}")
        raise

    if hashes:
        logger.info(
            f"verified {len(hashes)} headers, tip {hash_to_hex(hashes[-1])[:16]}..."
        )
    return hashes


# -- Period boundary --


def _check_anchor(
    header: BlockHeader, block_hash: bytes, threshold: int, name: str
) -> None:
    if header_threshold(header) != threshold:
        raise PeriodAnchorMismatch(
            f"{name} header bits {header.bits:08x} do not encode the current threshold"
        )
    if not meets_target(block_hash, threshold):
        raise PeriodAnchorMismatch(f"{name} header fails proof of work")


def _verify_with_retarget(
    prior_height: int,
    prior_hash: bytes,
    period_start_hash: bytes,
    current_threshold: int,
    next_threshold: int,
    period_start_header: BlockHeader,
    period_end_header: BlockHeader,
    batch: list[BlockHeader],
    params: ConsensusParams,
) -> list[bytes]:
    boundary = boundary_index(prior_height, params)
    if len(batch) > boundary + params.retarget_interval:
        raise UnsupportedSpan(
            f"batch of {len(batch)} headers after height {prior_height} "
            f"crosses more than one retarget boundary"
        )

    start_hash = period_start_header.block_hash()
    if start_hash != period_start_hash:
        raise PeriodAnchorMismatch("period start header does not match its claimed hash")
    _check_anchor(period_start_header, start_hash, current_threshold, "period start")

    end_hash = period_end_header.block_hash()
    _check_anchor(period_end_header, end_hash, current_threshold, "period end")
    if boundary == 0 and end_hash != prior_hash:
        raise PeriodAnchorMismatch("period end header is not the prior tip")

    computed = adjust(
        current_threshold,
        period_start_header.timestamp,
        period_end_header.timestamp,
        params,
    )
    if round_to_compact(computed) != next_threshold:
        raise RetargetMismatch(
            f"claimed next threshold {next_threshold:#x}, computed {computed:#x}"
        )

    hashes = link_headers(
        batch,
        prior_hash,
        lambda i: current_threshold if i < boundary else next_threshold,
    )

    # the closing header inside the batch must be the anchor the timespan came from
    if 0 < boundary <= len(batch) and hashes[boundary - 1] != end_hash:
        raise PeriodAnchorMismatch(
            "last header of the closing period differs from the period end header",
            boundary - 1,
        )
    return hashes


def verify_with_retarget(
    prior_height: int,
    prior_hash: bytes,
    period_start_hash: bytes,
    current_threshold: int,
    next_threshold: int,
    period_start_header: HeaderLike,
    period_end_header: HeaderLike,
    headers: Sequence[HeaderLike],
    params: ConsensusParams = MAINNET,
) -> tuple[list[bytes], int]:
    """Verify a batch that may cross one retarget boundary.

    Headers before the boundary are checked against ``current_threshold``,
    the rest against ``next_threshold``, which must equal the threshold
    recomputed from the period-start and period-end headers.
    Returns the header hashes and ``next_threshold``.
    """
    validate_hash(prior_hash)
    validate_hash(period_start_hash)
    try:
        validate_threshold_range(current_threshold, params)
        validate_threshold_range(next_threshold, params)
        hashes = _verify_with_retarget(
            prior_height,
            prior_hash,
            period_start_hash,
            current_threshold,
            next_threshold,
            _as_header(period_start_header),
            _as_header(period_end_header),
            _as_headers(headers),
            params,
        )
    except ValidationError as e:
        logger.warning(
            f"rejected batch after height {prior_height} "
            f"({hash_to_hex(prior_hash)[:16]}): {e}"
        )
        raise

    logger.info(
        f"verified {len(hashes)} headers after height {prior_height}, "
        f"next threshold {next_threshold:#x}"
    )
    return hashes, next_threshold


def fetch_and_verify(
    source: HeaderSource,
    tip: ChainTip,
    period_start_hash: bytes,
    count: int,
    params: ConsensusParams = MAINNET,
) -> tuple[list[bytes], int]:
    """Pull anchors and ``count`` headers after ``tip`` from ``source``, then verify.

    Fetch errors propagate unchanged; nothing is retried.
    """
    inputs = fetch_retarget_inputs(source, tip.height, count, params)
    return verify_with_retarget(
        tip.height,
        tip.hash,
        period_start_hash,
        tip.threshold,
        inputs.next_threshold,
        inputs.period_start_header,
        inputs.period_end_header,
        inputs.headers,
        params,
    )
