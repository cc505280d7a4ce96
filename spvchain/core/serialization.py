import hashlib
import struct


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """SHA-256 applied twice (hash of the hash)."""
    return sha256(sha256(data))


def hash_to_hex(block_hash: bytes) -> str:
    """Render a storage-order hash the way block explorers display it."""
    return block_hash[::-1].hex()


def hex_to_hash(display_hex: str) -> bytes:
    """Parse a display-order hash back into storage byte order."""
    block_hash = bytes.fromhex(display_hex)[::-1]
    if len(block_hash) != 32:
        raise ValueError("hash must be 32 bytes")
    return block_hash


def read_u32(data: bytes, offset: int) -> int:
    """Little-endian unsigned 32-bit field."""
    return struct.unpack_from("<I", data, offset)[0]


def read_i32(data: bytes, offset: int) -> int:
    """Little-endian signed 32-bit field."""
    return struct.unpack_from("<i", data, offset)[0]
