# Consensus parameters for Bitcoin header-chain verification

from dataclasses import dataclass

# Header layout
HEADER_SIZE = 80
HASH_SIZE = 32

VERSION_OFFSET = 0
PREV_HASH_OFFSET = 4
MERKLE_ROOT_OFFSET = 36
TIMESTAMP_OFFSET = 68
BITS_OFFSET = 72
NONCE_OFFSET = 76

# Difficulty retargeting
RETARGET_INTERVAL = 2016
TARGET_SPACING = 600  # seconds
TARGET_TIMESPAN = RETARGET_INTERVAL * TARGET_SPACING
MAX_ADJUSTMENT = 4

# PoW target ceiling (2^224 - 1)
POW_LIMIT = (1 << 224) - 1
REGTEST_POW_LIMIT = (1 << 255) - 1

# Genesis
GENESIS_BITS = 0x1D00FFFF
GENESIS_TIMESTAMP = 1231006505
# storage byte order (display order reversed)
GENESIS_HASH = bytes.fromhex(
    "6fe28c0ab6f1b372c1a6a246ae63f74f931e8365e15a089c68d6190000000000"
)


@dataclass(frozen=True)
class ConsensusParams:
    """Network rules the retarget calculator and verifier depend on."""

    retarget_interval: int = RETARGET_INTERVAL
    target_spacing: int = TARGET_SPACING
    max_adjustment: int = MAX_ADJUSTMENT
    pow_limit: int = POW_LIMIT

    @property
    def target_timespan(self) -> int:
        return self.retarget_interval * self.target_spacing

    @property
    def min_timespan(self) -> int:
        return self.target_timespan // self.max_adjustment

    @property
    def max_timespan(self) -> int:
        return self.target_timespan * self.max_adjustment


MAINNET = ConsensusParams()

# Same retarget rules, minimal difficulty so headers can be ground on a CPU
REGTEST = ConsensusParams(pow_limit=REGTEST_POW_LIMIT)
