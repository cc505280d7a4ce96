from __future__ import annotations

import struct
from dataclasses import dataclass, replace

from spvchain.core.config import (
    BITS_OFFSET,
    HASH_SIZE,
    HEADER_SIZE,
    MERKLE_ROOT_OFFSET,
    NONCE_OFFSET,
    PREV_HASH_OFFSET,
    TIMESTAMP_OFFSET,
    VERSION_OFFSET,
)
from spvchain.core.errors import MalformedHeader
from spvchain.core.serialization import hash_to_hex, read_i32, read_u32, sha256d

_HEADER_FORMAT = struct.Struct("<i32s32sIII")


@dataclass(frozen=True)
class BlockHeader:
    """Bitcoin block header in its fixed 80-byte consensus layout.

    Hashes are kept in storage byte order, exactly as they appear in the
    serialized header.
    """

    version: int
    prev_hash: bytes
    merkle_root: bytes
    timestamp: int
    bits: int
    nonce: int

    @classmethod
    def from_bytes(cls, raw: bytes) -> BlockHeader:
        """Decode any 80-byte string. Semantic checks happen elsewhere."""
        if len(raw) != HEADER_SIZE:
            raise MalformedHeader(f"header must be {HEADER_SIZE} bytes, got {len(raw)}")
        return cls(
            version=read_i32(raw, VERSION_OFFSET),
            prev_hash=bytes(raw[PREV_HASH_OFFSET:PREV_HASH_OFFSET + HASH_SIZE]),
            merkle_root=bytes(raw[MERKLE_ROOT_OFFSET:MERKLE_ROOT_OFFSET + HASH_SIZE]),
            timestamp=read_u32(raw, TIMESTAMP_OFFSET),
            bits=read_u32(raw, BITS_OFFSET),
            nonce=read_u32(raw, NONCE_OFFSET),
        )

    @classmethod
    def from_hex(cls, hex_str: str) -> BlockHeader:
        return cls.from_bytes(bytes.fromhex(hex_str))

    def serialize(self) -> bytes:
        return _HEADER_FORMAT.pack(
            self.version,
            self.prev_hash,
            self.merkle_root,
            self.timestamp,
            self.bits,
            self.nonce,
        )

    def block_hash(self) -> bytes:
        """Double SHA-256 of the serialized header, storage byte order."""
        return sha256d(self.serialize())

    def with_nonce(self, nonce: int) -> BlockHeader:
        return replace(self, nonce=nonce)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "prev_hash": hash_to_hex(self.prev_hash),
            "merkle_root": hash_to_hex(self.merkle_root),
            "timestamp": self.timestamp,
            "bits": f"{self.bits:08x}",
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, d: dict) -> BlockHeader:
        return cls(
            version=d["version"],
            prev_hash=bytes.fromhex(d["prev_hash"])[::-1],
            merkle_root=bytes.fromhex(d["merkle_root"])[::-1],
            timestamp=d["timestamp"],
            bits=int(d["bits"], 16),
            nonce=d["nonce"],
        )


def decode_headers(raw_headers: list[bytes]) -> list[BlockHeader]:
    """Decode a batch of raw headers, reporting the index of a bad length."""
    headers = []
    for i, raw in enumerate(raw_headers):
        if len(raw) != HEADER_SIZE:
            raise MalformedHeader(f"header must be {HEADER_SIZE} bytes", i)
        headers.append(BlockHeader.from_bytes(raw))
    return headers
