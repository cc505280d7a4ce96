from __future__ import annotations

import logging

from spvchain.core.config import MAINNET, ConsensusParams

logger = logging.getLogger(__name__)


# -- Period arithmetic --


def period_start_height(height: int, params: ConsensusParams = MAINNET) -> int:
    """Height of the first header in the period containing ``height``."""
    return height - height % params.retarget_interval


def period_end_height(height: int, params: ConsensusParams = MAINNET) -> int:
    """Height of the last header in the period containing ``height``."""
    return period_start_height(height, params) + params.retarget_interval - 1


def is_retarget_height(height: int, params: ConsensusParams = MAINNET) -> bool:
    """True for the first header of a period, the one carrying new bits."""
    return height > 0 and height % params.retarget_interval == 0


def boundary_index(prior_height: int, params: ConsensusParams = MAINNET) -> int:
    """Number of headers after ``prior_height`` still in the tip's period.

    Zero when the tip closes its period, i.e. the batch starts on a new one.
    """
    if prior_height < 0:
        raise ValueError("prior height must be non-negative")
    return params.retarget_interval - 1 - prior_height % params.retarget_interval


# -- Threshold adjustment --


def clamp_timespan(timespan: int, params: ConsensusParams = MAINNET) -> int:
    return max(params.min_timespan, min(params.max_timespan, timespan))


def adjust(
    old_threshold: int,
    period_start_ts: int,
    period_end_ts: int,
    params: ConsensusParams = MAINNET,
) -> int:
    """Compute the next period's threshold from the closed period's timespan.

    Multiplies before dividing, exactly once, so the result truncates the
    way the network does. Python ints are unbounded; the product may exceed
    256 bits before the division. An end timestamp earlier than the start
    yields a negative timespan, which clamps to the minimum like any other
    short period.
    """
    timespan = period_end_ts - period_start_ts
    clamped = clamp_timespan(timespan, params)

    new_threshold = old_threshold * clamped // params.target_timespan
    if new_threshold > params.pow_limit:
        new_threshold = params.pow_limit

    logger.debug(
        f"retarget: timespan={timespan}s clamped={clamped}s "
        f"threshold {old_threshold:#x} -> {new_threshold:#x}"
    )
    return new_threshold
