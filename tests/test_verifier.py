import logging
from dataclasses import replace

import pytest
from spvchain.core.config import GENESIS_HASH, POW_LIMIT, REGTEST, TARGET_TIMESPAN
from spvchain.core.errors import (
    MalformedHeader,
    ParentHashMismatch,
    PeriodAnchorMismatch,
    RetargetMismatch,
    ThresholdMismatch,
    ThresholdOutOfRange,
    UnsupportedSpan,
)
from spvchain.core.header import decode_headers
from spvchain.core.retarget import adjust
from spvchain.core.serialization import sha256d
from spvchain.core.target import decode_compact
from spvchain.mining.miner import HeaderMiner
from spvchain.verifier import ChainTip, fetch_and_verify, verify, verify_with_retarget
from tests.test_header import mainnet_hashes, mainnet_headers
from tests.test_miner import REGTEST_BITS, REGTEST_THRESHOLD, build_boundary_case
from tests.test_source import SHORT, build_store
from tests.test_target import GENESIS_THRESHOLD
from tests.test_validation import is_linked


def retarget(case, **overrides):
    args = dict(
        prior_height=case.prior_height,
        prior_hash=case.prior_hash,
        period_start_hash=case.period_start_hash,
        current_threshold=case.current_threshold,
        next_threshold=case.next_threshold,
        period_start_header=case.period_start_header,
        period_end_header=case.period_end_header,
        headers=case.headers,
        params=REGTEST,
    )
    args.update(overrides)
    return verify_with_retarget(**args)


def twin(header):
    """A different header with the same bits and timestamp."""
    return HeaderMiner(b"\x01" * 32, header.timestamp).mine_next(
        header.bits, timestamp=header.timestamp
    )


# -- Single period --


class TestVerify:
    def test_ten_headers_after_genesis(self):
        hashes = verify(GENESIS_HASH, GENESIS_THRESHOLD, mainnet_headers()[1:11])
        assert len(hashes) == 10
        assert hashes[-1] == bytes.fromhex(
            "e915d9a478e3adf3186c07c61a22228b10fd87df343c92782ecc052c00000000"
        )
        assert hashes == mainnet_hashes()[1:11]

    def test_genesis_from_zero_parent(self):
        hashes = verify(bytes(32), GENESIS_THRESHOLD, mainnet_headers())
        assert hashes == mainnet_hashes()

    def test_accepts_decoded_headers(self):
        hashes = verify(bytes(32), GENESIS_THRESHOLD, decode_headers(mainnet_headers()))
        assert hashes == mainnet_hashes()

    def test_empty_batch(self):
        assert verify(GENESIS_HASH, GENESIS_THRESHOLD, []) == []

    def test_wrong_prior_hash(self):
        with pytest.raises(ParentHashMismatch) as exc:
            verify(GENESIS_HASH, GENESIS_THRESHOLD, mainnet_headers())
        assert exc.value.index == 0

    def test_wrong_threshold(self):
        with pytest.raises(ThresholdMismatch) as exc:
            verify(bytes(32), GENESIS_THRESHOLD // 2, mainnet_headers())
        assert exc.value.index == 0

    def test_short_header(self):
        headers = mainnet_headers()
        headers[3] = headers[3][:79]
        with pytest.raises(MalformedHeader) as exc:
            verify(bytes(32), GENESIS_THRESHOLD, headers)
        assert exc.value.index == 3

    def test_threshold_out_of_range(self):
        with pytest.raises(ThresholdOutOfRange):
            verify(bytes(32), POW_LIMIT + 1, mainnet_headers())
        with pytest.raises(ThresholdOutOfRange):
            verify(bytes(32), 0, mainnet_headers())

    def test_prior_hash_length(self):
        with pytest.raises(ValueError):
            verify(bytes(20), GENESIS_THRESHOLD, mainnet_headers())

    def test_rejection_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="spvchain.verifier"):
            with pytest.raises(ParentHashMismatch):
                verify(GENESIS_HASH, GENESIS_THRESHOLD, mainnet_headers())
        assert "rejected batch" in caplog.text

    def test_does_not_notice_boundary(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(ThresholdMismatch) as exc:
            verify(case.prior_hash, case.current_threshold, case.headers, REGTEST)
        assert exc.value.index == 2


# -- Period boundary --


class TestVerifyWithRetarget:
    @pytest.mark.parametrize("boundary", [0, 1, 2, 3, 4, 6])
    def test_every_boundary_position(self, boundary):
        case = build_boundary_case(boundary=boundary, count=4)
        hashes, next_threshold = retarget(case)
        assert hashes == [h.block_hash() for h in case.headers]
        assert case.headers[0].prev_hash == case.prior_hash
        assert is_linked(case.headers, hashes)
        assert next_threshold == case.next_threshold

    def test_raw_bytes_accepted(self):
        case = build_boundary_case(boundary=2, count=4)
        hashes, _ = retarget(
            case,
            period_start_header=case.period_start_header.serialize(),
            period_end_header=case.period_end_header.serialize(),
            headers=[h.serialize() for h in case.headers],
        )
        assert hashes[-1] == case.headers[-1].block_hash()

    def test_difficulty_unchanged_on_target_timespan(self):
        case = build_boundary_case(boundary=1, count=3, timespan=TARGET_TIMESPAN)
        _, next_threshold = retarget(case)
        assert next_threshold == REGTEST_THRESHOLD

    def test_fast_period_clamped(self):
        case = build_boundary_case(boundary=2, count=3, timespan=10)
        _, next_threshold = retarget(case)
        assert next_threshold == REGTEST_THRESHOLD // 4

    def test_slow_period_clamped(self):
        case = build_boundary_case(boundary=2, count=3, timespan=10 * TARGET_TIMESPAN)
        _, next_threshold = retarget(case)
        assert next_threshold == REGTEST_THRESHOLD * 4

    def test_claimed_threshold_rounded_to_compact(self):
        case = build_boundary_case(boundary=2, count=4, timespan=TARGET_TIMESPAN // 2 + 1)
        exact = adjust(
            case.current_threshold,
            case.period_start_header.timestamp,
            case.period_end_header.timestamp,
            REGTEST,
        )
        assert exact != case.next_threshold
        retarget(case)
        with pytest.raises(RetargetMismatch):
            retarget(case, next_threshold=exact)

    def test_wrong_next_threshold(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(RetargetMismatch):
            retarget(case, next_threshold=case.next_threshold // 2)

    def test_header_after_boundary_keeps_old_bits(self):
        case = build_boundary_case(boundary=2, count=2)
        stale = HeaderMiner(case.headers[-1].block_hash(), 0).mine_next(
            REGTEST_BITS, timestamp=case.headers[-1].timestamp + 600
        )
        with pytest.raises(ThresholdMismatch) as exc:
            retarget(case, headers=case.headers + [stale])
        assert exc.value.index == 2

    def test_period_start_hash_mismatch(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(PeriodAnchorMismatch, match="period start"):
            retarget(case, period_start_hash=bytes(32))

    def test_period_start_bits_mismatch(self):
        case = build_boundary_case(boundary=2, count=4)
        harder = HeaderMiner(bytes(32), 0).mine_next(
            0x1F7FFFFF, timestamp=case.period_start_header.timestamp
        )
        with pytest.raises(PeriodAnchorMismatch, match="bits"):
            retarget(
                case,
                period_start_header=harder,
                period_start_hash=harder.block_hash(),
            )

    def test_period_end_not_tip(self):
        case = build_boundary_case(boundary=0, count=3)
        with pytest.raises(PeriodAnchorMismatch, match="prior tip"):
            retarget(case, period_end_header=twin(case.period_end_header))

    def test_period_end_not_in_batch(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(PeriodAnchorMismatch) as exc:
            retarget(case, period_end_header=twin(case.period_end_header))
        assert exc.value.index == 1

    def test_broken_link_reported_before_anchor(self):
        case = build_boundary_case(boundary=2, count=4)
        headers = list(case.headers)
        headers[0] = replace(headers[0], prev_hash=bytes(32))
        with pytest.raises(ParentHashMismatch) as exc:
            retarget(
                case,
                headers=headers,
                period_end_header=twin(case.period_end_header),
            )
        assert exc.value.index == 0

    def test_span_beyond_next_boundary(self):
        case = build_boundary_case(boundary=1, count=2)
        padding = [case.headers[-1]] * REGTEST.retarget_interval
        with pytest.raises(UnsupportedSpan):
            retarget(case, headers=case.headers + padding)

    def test_span_up_to_next_boundary_allowed(self):
        case = build_boundary_case(boundary=1, count=2)
        padding = [case.headers[-1]] * (REGTEST.retarget_interval - 1)
        # length is checked, then the duplicates fail to link
        with pytest.raises(ParentHashMismatch) as exc:
            retarget(case, headers=case.headers + padding)
        assert exc.value.index == 2

    def test_threshold_out_of_range(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(ThresholdOutOfRange):
            retarget(case, next_threshold=REGTEST.pow_limit + 1)

    def test_mainnet_limit_applies_by_default(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(ThresholdOutOfRange):
            verify_with_retarget(*case.args())

    def test_negative_prior_height(self):
        case = build_boundary_case(boundary=2, count=4)
        with pytest.raises(ValueError):
            retarget(case, prior_height=-1)


class TestFetchAndVerify:
    def test_crosses_boundary_from_store(self):
        store, headers, next_threshold = build_store()
        tip = ChainTip(height=5, hash=headers[5].block_hash(), threshold=REGTEST_THRESHOLD)
        hashes, got = fetch_and_verify(
            store, tip, sha256d(store.get_header(0)), 4, SHORT
        )
        assert hashes == [h.block_hash() for h in headers[6:10]]
        assert got == next_threshold
        assert decode_compact(headers[9].bits) == next_threshold

    def test_wrong_tip_hash(self):
        store, headers, _ = build_store()
        tip = ChainTip(height=5, hash=headers[4].block_hash(), threshold=REGTEST_THRESHOLD)
        with pytest.raises(ParentHashMismatch):
            fetch_and_verify(store, tip, headers[0].block_hash(), 4, SHORT)

    def test_fetch_error_propagates(self):
        store, headers, _ = build_store()
        tip = ChainTip(height=5, hash=headers[5].block_hash(), threshold=REGTEST_THRESHOLD)
        with pytest.raises(KeyError):
            fetch_and_verify(store, tip, headers[0].block_hash(), 10, SHORT)
