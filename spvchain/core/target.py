from __future__ import annotations

from typing import Iterable

from spvchain.core.errors import MalformedMantissa

MANTISSA_MASK = 0x00FFFFFF
SIGN_BIT = 0x00800000


def decode_compact(bits: int) -> int:
    """Expand compact ``bits`` into a 256-bit threshold.

    The mantissa is taken as stored, without sign extension. Mantissa bytes
    pushed past the low end of the target (exponent below 3) are dropped; a
    nonzero byte pushed past the high end cannot be represented in 256 bits
    and raises MalformedMantissa.
    """
    if not 0 <= bits <= 0xFFFFFFFF:
        raise ValueError(f"bits out of u32 range: {bits}")
    exponent = bits >> 24
    mantissa = (bits & MANTISSA_MASK).to_bytes(3, "big")

    target = bytearray(32)
    start = 32 - exponent
    for offset, byte in enumerate(mantissa):
        position = start + offset
        if 0 <= position < 32:
            target[position] = byte
        elif position < 0 and byte:
            raise MalformedMantissa(
                f"mantissa byte outside 256-bit target (bits={bits:08x})"
            )
    return int.from_bytes(target, "big")


def encode_compact(target: int) -> int:
    """Canonical compact encoding of a threshold (lossy below 3 bytes of precision)."""
    if target < 0:
        raise ValueError("target must be non-negative")
    size = (target.bit_length() + 7) // 8
    if size <= 3:
        compact = target << (8 * (3 - size))
    else:
        compact = target >> (8 * (size - 3))
    # a set top mantissa bit would read back as negative on the network
    if compact & SIGN_BIT:
        compact >>= 8
        size += 1
    return compact | (size << 24)


def round_to_compact(target: int) -> int:
    """Truncate a threshold to the precision a header's bits field can carry."""
    return decode_compact(encode_compact(target))


def block_work(threshold: int) -> int:
    """Expected number of hashes to meet ``threshold``: 2^256 // (threshold + 1)."""
    if threshold < 0:
        raise ValueError("threshold must be non-negative")
    return (1 << 256) // (threshold + 1)


def chain_work(thresholds: Iterable[int]) -> int:
    """Cumulative work of a run of headers."""
    return sum(block_work(t) for t in thresholds)
