from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from spvchain.core.config import HEADER_SIZE, MAINNET, ConsensusParams
from spvchain.core.header import BlockHeader, decode_headers
from spvchain.core.retarget import period_end_height, period_start_height
from spvchain.core.serialization import sha256d
from spvchain.core.target import decode_compact

logger = logging.getLogger(__name__)


class HeaderSource(Protocol):
    def get_header(self, height: int) -> bytes:
        """Raw 80-byte header at ``height``."""
        ...

    def get_headers(self, start_height: int, count: int) -> list[bytes]:
        """``count`` consecutive raw headers from ``start_height``, ascending."""
        ...


class HeaderStore:
    """Consecutive raw headers indexed by height and by hash."""

    def __init__(self, base_height: int = 0):
        self.base_height = base_height
        self._headers: list[bytes] = []
        self._heights: dict[bytes, int] = {}

    @property
    def height(self) -> int:
        """Height of the last stored header (base_height - 1 if empty)."""
        return self.base_height + len(self._headers) - 1

    @property
    def tip_hash(self) -> bytes | None:
        if not self._headers:
            return None
        return sha256d(self._headers[-1])

    def append(self, raw: bytes) -> int:
        """Store the next header. Returns its height."""
        if len(raw) != HEADER_SIZE:
            raise ValueError(f"header must be {HEADER_SIZE} bytes, got {len(raw)}")
        self._headers.append(bytes(raw))
        height = self.height
        self._heights[sha256d(raw)] = height
        return height

    def extend(self, raw_headers: Iterable[bytes]) -> None:
        for raw in raw_headers:
            self.append(raw)

    def get_header(self, height: int) -> bytes:
        offset = height - self.base_height
        if not 0 <= offset < len(self._headers):
            raise KeyError(f"no header at height {height}")
        return self._headers[offset]

    def get_headers(self, start_height: int, count: int) -> list[bytes]:
        return [self.get_header(start_height + i) for i in range(count)]

    def get_height(self, block_hash: bytes) -> int | None:
        """Look up a stored header's height by its storage-order hash."""
        return self._heights.get(block_hash)

    @classmethod
    def from_hex_lines(cls, lines: Iterable[str], base_height: int = 0) -> HeaderStore:
        """Build a store from hex-encoded headers, one per line; blanks skipped."""
        store = cls(base_height)
        for line in lines:
            line = line.strip()
            if line:
                store.append(bytes.fromhex(line))
        return store

    @classmethod
    def load(cls, path: str, base_height: int = 0) -> HeaderStore:
        with open(path, "r") as f:
            store = cls.from_hex_lines(f, base_height)
        logger.info(f"loaded {len(store._headers)} headers from {path}")
        return store


@dataclass(frozen=True)
class RetargetInputs:
    """Everything the boundary-crossing verifier needs besides the trusted tip."""

    period_start_header: BlockHeader
    period_end_header: BlockHeader
    next_threshold: int
    headers: list[BlockHeader]


def fetch_retarget_inputs(
    source: HeaderSource,
    prior_height: int,
    count: int,
    params: ConsensusParams = MAINNET,
) -> RetargetInputs:
    """Gather the period anchors and the batch following ``prior_height``.

    The claimed next threshold is read from the first header of the next
    period; verification checks it against the recomputed value.
    """
    start = period_start_height(prior_height, params)
    end = period_end_height(prior_height, params)

    period_start = BlockHeader.from_bytes(source.get_header(start))
    period_end = BlockHeader.from_bytes(source.get_header(end))
    next_period_first = BlockHeader.from_bytes(source.get_header(end + 1))

    raw_batch = source.get_headers(prior_height + 1, count)
    if len(raw_batch) != count:
        raise ValueError(f"source returned {len(raw_batch)} headers, expected {count}")

    return RetargetInputs(
        period_start_header=period_start,
        period_end_header=period_end,
        next_threshold=decode_compact(next_period_first.bits),
        headers=decode_headers(raw_batch),
    )
