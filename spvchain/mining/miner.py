from __future__ import annotations

import logging
import struct

from spvchain.core.config import TARGET_SPACING
from spvchain.core.header import BlockHeader
from spvchain.core.pow import meets_target
from spvchain.core.serialization import sha256d
from spvchain.core.target import decode_compact

logger = logging.getLogger(__name__)

MAX_NONCE = 0xFFFFFFFF


def grind(header: BlockHeader, max_nonce: int = MAX_NONCE) -> BlockHeader:
    """Search nonces from ``header.nonce`` until the hash meets the header's bits."""
    threshold = decode_compact(header.bits)
    for nonce in range(header.nonce, max_nonce + 1):
        candidate = header.with_nonce(nonce)
        if meets_target(candidate.block_hash(), threshold):
            return candidate
    raise RuntimeError(f"nonce space exhausted for bits {header.bits:08x}")


class HeaderMiner:
    """Extends a chain with synthetic headers, each ground to its own bits.

    Only practical against regtest-sized thresholds; used to build fixtures
    that exercise retarget boundaries.
    """

    def __init__(
        self,
        prev_hash: bytes,
        timestamp: int,
        spacing: int = TARGET_SPACING,
        version: int = 1,
    ):
        self.prev_hash = prev_hash
        self.timestamp = timestamp
        self.spacing = spacing
        self.version = version
        self._count = 0

    def mine_next(self, bits: int, timestamp: int | None = None) -> BlockHeader:
        """Mine one header on top of the current tip and advance the tip."""
        if timestamp is None:
            timestamp = self.timestamp + self.spacing
        # distinct merkle roots keep otherwise identical headers apart
        merkle_root = sha256d(self.prev_hash + struct.pack("<Q", self._count))
        header = grind(
            BlockHeader(
                version=self.version,
                prev_hash=self.prev_hash,
                merkle_root=merkle_root,
                timestamp=timestamp,
                bits=bits,
                nonce=0,
            )
        )
        self.prev_hash = header.block_hash()
        self.timestamp = timestamp
        self._count += 1
        return header

    def mine_chain(self, count: int, bits: int) -> list[BlockHeader]:
        headers = [self.mine_next(bits) for _ in range(count)]
        logger.debug(f"mined {count} headers at bits {bits:08x}")
        return headers
