"""
Tests for the Claim Ledger

Tests:
  - Insert-if-absent deposit claims (first record wins)
  - Withdrawal records, payout reservation and the paid transition
  - Keyset-paginated unclaimed sweep
  - Monotonic scan cursors and atomic candidate + cursor writes
  - Faucet registry and diagnostics
  - Cross-connection races on one database file
"""

import asyncio
import logging
import os
import sys

import pytest
import pytest_asyncio

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from zkbridge.bridge.ledger import ClaimLedger
from zkbridge.bridge.types import ScanCursor, WithdrawalCandidate
from zkbridge.exceptions import ConfigurationError, InvalidCommitment


def _commitment(n: int) -> str:
    return "0x" + f"{n:064x}"


TXID_A = "a1" * 32
TXID_B = "b2" * 32


class FakeClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def ledger(tmp_path, clock):
    lg = await ClaimLedger.create(str(tmp_path / "bridge.db"), clock=clock)
    yield lg
    await lg.close()


async def _collect(aiter):
    return [item async for item in aiter]


# ═══════════════════════════════════════════════════════════════════════
#  1. OPENING
# ═══════════════════════════════════════════════════════════════════════

class TestOpen:

    @pytest.mark.asyncio
    async def test_fresh_ledger_is_empty(self, ledger):
        stats = await ledger.stats()
        assert stats == {
            "deposits": 0,
            "deposited": 0,
            "withdrawals": 0,
            "paid": 0,
            "unpaid": 0,
            "paid_out": 0,
        }

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "bridge.db"
        lg = await ClaimLedger.create(str(path))
        try:
            assert path.exists()
        finally:
            await lg.close()

    @pytest.mark.asyncio
    async def test_unopenable_path_is_configuration_error(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        with pytest.raises(ConfigurationError):
            await ClaimLedger.create(str(blocker / "bridge.db"))

    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, tmp_path):
        path = str(tmp_path / "bridge.db")
        async with await ClaimLedger.create(path) as lg:
            await lg.record_deposit_claim(_commitment(1), TXID_A, 100)
        async with await ClaimLedger.create(path) as lg:
            assert await lg.is_deposit_claimed(_commitment(1))


# ═══════════════════════════════════════════════════════════════════════
#  2. DEPOSIT CLAIMS
# ═══════════════════════════════════════════════════════════════════════

class TestDepositClaims:

    @pytest.mark.asyncio
    async def test_record_then_claimed(self, ledger):
        c = _commitment(1)
        assert not await ledger.is_deposit_claimed(c)
        assert await ledger.record_deposit_claim(c, TXID_A, 2_000_000_000, note_id="0xnote")
        assert await ledger.is_deposit_claimed(c)

    @pytest.mark.asyncio
    async def test_second_record_is_noop_and_first_wins(self, ledger, clock):
        c = _commitment(2)
        assert await ledger.record_deposit_claim(c, TXID_A, 100, note_id="0xfirst")
        first = await ledger.get_deposit_claim(c)

        clock.now += 60
        assert not await ledger.record_deposit_claim(c, TXID_B, 999, note_id="0xsecond")
        assert await ledger.get_deposit_claim(c) == first
        assert first.source_txid == TXID_A
        assert first.note_id == "0xfirst"

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, ledger):
        c = _commitment(0xABCDEF)
        await ledger.record_deposit_claim(c, TXID_A, 100)
        assert await ledger.is_deposit_claimed(c.upper().replace("0X", "0x"))
        assert await ledger.is_deposit_claimed(c[2:])

    @pytest.mark.asyncio
    async def test_rejects_malformed_commitment(self, ledger):
        with pytest.raises(InvalidCommitment):
            await ledger.record_deposit_claim("0x1234", TXID_A, 100)

    @pytest.mark.asyncio
    async def test_unknown_claim_is_none(self, ledger):
        assert await ledger.get_deposit_claim(_commitment(3)) is None

    @pytest.mark.asyncio
    async def test_concurrent_records_insert_once(self, ledger):
        c = _commitment(4)
        results = await asyncio.gather(*[
            ledger.record_deposit_claim(c, TXID_A, 100) for _ in range(10)
        ])
        assert results.count(True) == 1
        assert (await ledger.stats())["deposits"] == 1


# ═══════════════════════════════════════════════════════════════════════
#  3. WITHDRAWAL RECORDS
# ═══════════════════════════════════════════════════════════════════════

class TestWithdrawals:

    @pytest.mark.asyncio
    async def test_record_seen_is_idempotent(self, ledger):
        c = _commitment(10)
        assert await ledger.record_withdrawal_seen(c, "0xnote10", 500, 1000, "utest1dest")
        assert not await ledger.record_withdrawal_seen(c, "0xnote10", 500, 1000, "utest1dest")
        record = await ledger.get_withdrawal(c)
        assert record.rollup_note_id == "0xnote10"
        assert record.destination_address == "utest1dest"
        assert not record.is_paid

    @pytest.mark.asyncio
    async def test_note_id_is_unique(self, ledger):
        assert await ledger.record_withdrawal_seen(_commitment(11), "0xsame", 500, 1000)
        assert not await ledger.record_withdrawal_seen(_commitment(12), "0xsame", 500, 1000)
        assert await ledger.get_withdrawal(_commitment(12)) is None

    @pytest.mark.asyncio
    async def test_lookup_by_note_id(self, ledger):
        await ledger.record_withdrawal_seen(_commitment(13), "0xnote13", 500, 1000)
        record = await ledger.get_withdrawal_by_note_id("0xnote13")
        assert record.commitment == _commitment(13)
        assert await ledger.get_withdrawal_by_note_id("0xmissing") is None

    @pytest.mark.asyncio
    async def test_mark_paid_once(self, ledger):
        c = _commitment(14)
        await ledger.record_withdrawal_seen(c, "0xnote14", 500, 1000)
        assert await ledger.mark_withdrawal_paid(c, TXID_A)
        assert not await ledger.mark_withdrawal_paid(c, TXID_B)

        record = await ledger.get_withdrawal(c)
        assert record.is_paid
        assert record.payout_txid == TXID_A

    @pytest.mark.asyncio
    async def test_mark_unknown_is_false(self, ledger):
        assert not await ledger.mark_withdrawal_paid(_commitment(15), TXID_A)

    @pytest.mark.asyncio
    async def test_reused_commitment_is_logged(self, ledger, caplog):
        c = _commitment(16)
        candidates = [
            WithdrawalCandidate(c, "0xnoteA", 100, 1000, "utest1a"),
            WithdrawalCandidate(c, "0xnoteB", 500_000_000, 1001, "utest1b"),
        ]
        with caplog.at_level(logging.WARNING, logger="zkbridge.bridge.ledger"):
            assert await ledger.record_withdrawals_seen(candidates) == 1

        assert (await ledger.get_withdrawal(c)).rollup_note_id == "0xnoteA"
        assert await ledger.get_withdrawal_by_note_id("0xnoteB") is None
        [warning] = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert "0xnoteB" in warning
        assert "0xnoteA" in warning
        assert c in warning

    @pytest.mark.asyncio
    async def test_reused_note_id_is_logged(self, ledger, caplog):
        await ledger.record_withdrawal_seen(_commitment(17), "0xnote17", 500, 1000)
        with caplog.at_level(logging.WARNING, logger="zkbridge.bridge.ledger"):
            assert not await ledger.record_withdrawal_seen(_commitment(18), "0xnote17", 500, 1000)
        [warning] = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert _commitment(17) in warning

    @pytest.mark.asyncio
    async def test_repeat_of_same_note_is_silent(self, ledger, caplog):
        candidate = WithdrawalCandidate(_commitment(19), "0xnote19", 500, 1000, "utest1a")
        await ledger.record_withdrawals_seen([candidate])
        with caplog.at_level(logging.WARNING, logger="zkbridge.bridge.ledger"):
            assert await ledger.record_withdrawals_seen([candidate]) == 0
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


class TestReservations:

    @pytest.mark.asyncio
    async def test_single_owner(self, ledger):
        c = _commitment(20)
        await ledger.record_withdrawal_seen(c, "0xnote20", 500, 1000)
        assert await ledger.reserve_withdrawal_payout(c, "relayer-a")
        assert not await ledger.reserve_withdrawal_payout(c, "relayer-b")
        assert (await ledger.get_withdrawal(c)).payout_reserved_by == "relayer-a"

    @pytest.mark.asyncio
    async def test_release_requires_owner(self, ledger):
        c = _commitment(21)
        await ledger.record_withdrawal_seen(c, "0xnote21", 500, 1000)
        await ledger.reserve_withdrawal_payout(c, "relayer-a")

        assert not await ledger.release_withdrawal_payout(c, "relayer-b")
        assert await ledger.release_withdrawal_payout(c, "relayer-a")
        assert await ledger.reserve_withdrawal_payout(c, "relayer-b")

    @pytest.mark.asyncio
    async def test_paid_cannot_be_reserved_or_released(self, ledger):
        c = _commitment(22)
        await ledger.record_withdrawal_seen(c, "0xnote22", 500, 1000)
        await ledger.reserve_withdrawal_payout(c, "relayer-a")
        await ledger.mark_withdrawal_paid(c, TXID_A)

        assert not await ledger.release_withdrawal_payout(c, "relayer-a")
        assert not await ledger.reserve_withdrawal_payout(c, "relayer-b")

    @pytest.mark.asyncio
    async def test_unknown_cannot_be_reserved(self, ledger):
        assert not await ledger.reserve_withdrawal_payout(_commitment(23), "relayer-a")

    @pytest.mark.asyncio
    async def test_stale_reservations(self, ledger, clock):
        fresh, stale, paid = _commitment(24), _commitment(25), _commitment(26)
        for i, c in enumerate((fresh, stale, paid)):
            await ledger.record_withdrawal_seen(c, f"0xnote{i}", 500, 1000)

        await ledger.reserve_withdrawal_payout(stale, "relayer-a")
        await ledger.reserve_withdrawal_payout(paid, "relayer-a")
        await ledger.mark_withdrawal_paid(paid, TXID_A)
        clock.now += 3600
        await ledger.reserve_withdrawal_payout(fresh, "relayer-a")

        result = await ledger.stale_reservations(older_than=1800)
        assert [r.commitment for r in result] == [stale]

    @pytest.mark.asyncio
    async def test_race_across_connections(self, tmp_path):
        path = str(tmp_path / "shared.db")
        a = await ClaimLedger.create(path)
        b = await ClaimLedger.create(path)
        try:
            c = _commitment(27)
            await a.record_withdrawal_seen(c, "0xnote27", 500, 1000)
            results = await asyncio.gather(
                a.reserve_withdrawal_payout(c, "relayer-a"),
                b.reserve_withdrawal_payout(c, "relayer-b"),
            )
            assert sorted(results) == [False, True]
        finally:
            await a.close()
            await b.close()


# ═══════════════════════════════════════════════════════════════════════
#  4. UNCLAIMED SWEEP
# ═══════════════════════════════════════════════════════════════════════

class TestUnclaimedSweep:

    @pytest.mark.asyncio
    async def test_pages_through_all_rows(self, ledger):
        commitments = [_commitment(n) for n in (5, 3, 1, 4, 2)]
        for i, c in enumerate(commitments):
            await ledger.record_withdrawal_seen(c, f"0xnote{i}", 100, 1000)

        records = await _collect(ledger.unclaimed_withdrawals(batch_size=2))
        assert [r.commitment for r in records] == sorted(commitments)

    @pytest.mark.asyncio
    async def test_excludes_paid(self, ledger):
        for n in range(1, 5):
            await ledger.record_withdrawal_seen(_commitment(n), f"0xnote{n}", 100, 1000)
        await ledger.mark_withdrawal_paid(_commitment(2), TXID_A)

        records = await _collect(ledger.unclaimed_withdrawals(batch_size=3))
        assert [r.commitment for r in records] == [_commitment(1), _commitment(3), _commitment(4)]

    @pytest.mark.asyncio
    async def test_resume_after(self, ledger):
        for n in range(1, 5):
            await ledger.record_withdrawal_seen(_commitment(n), f"0xnote{n}", 100, 1000)

        records = await _collect(ledger.unclaimed_withdrawals(after=_commitment(2)))
        assert [r.commitment for r in records] == [_commitment(3), _commitment(4)]

    @pytest.mark.asyncio
    async def test_empty(self, ledger):
        assert await _collect(ledger.unclaimed_withdrawals()) == []


# ═══════════════════════════════════════════════════════════════════════
#  5. CURSORS
# ═══════════════════════════════════════════════════════════════════════

class TestCursors:

    @pytest.mark.asyncio
    async def test_missing_cursor(self, ledger):
        assert await ledger.get_cursor("zcash_testnet") is None

    @pytest.mark.asyncio
    async def test_cursor_only_moves_forward(self, ledger):
        assert await ledger.advance_cursor("zcash_testnet", 100)
        assert not await ledger.advance_cursor("zcash_testnet", 50)
        assert not await ledger.advance_cursor("zcash_testnet", 100)
        assert await ledger.advance_cursor("zcash_testnet", 101)
        assert (await ledger.get_cursor("zcash_testnet")).last_scanned_height == 101

    @pytest.mark.asyncio
    async def test_cursors_are_per_chain(self, ledger):
        await ledger.advance_cursor("zcash_testnet", 100)
        await ledger.advance_cursor("miden_testnet", 7)
        assert (await ledger.get_cursor("zcash_testnet")).last_scanned_height == 100
        assert (await ledger.get_cursor("miden_testnet")).last_scanned_height == 7

    @pytest.mark.asyncio
    async def test_candidates_and_cursor_written_together(self, ledger):
        candidates = [
            WithdrawalCandidate(_commitment(30), "0xnote30", 500, 1000, "utest1a"),
            WithdrawalCandidate(_commitment(31), "0xnote31", 700, 1001, "utest1b"),
        ]
        inserted = await ledger.record_withdrawals_seen(
            candidates, ScanCursor("miden_testnet", 1005),
        )
        assert inserted == 2
        assert (await ledger.get_cursor("miden_testnet")).last_scanned_height == 1005

        again = await ledger.record_withdrawals_seen(
            candidates, ScanCursor("miden_testnet", 1006),
        )
        assert again == 0
        assert (await ledger.get_cursor("miden_testnet")).last_scanned_height == 1006

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back_cursor(self, ledger):
        await ledger.advance_cursor("miden_testnet", 900)
        candidates = [
            WithdrawalCandidate(_commitment(32), "0xnote32", 500, 1000, "utest1a"),
            WithdrawalCandidate("not-a-commitment", "0xnote33", 500, 1000, "utest1b"),
        ]
        with pytest.raises(InvalidCommitment):
            await ledger.record_withdrawals_seen(candidates, ScanCursor("miden_testnet", 1005))

        assert await ledger.get_withdrawal(_commitment(32)) is None
        assert (await ledger.get_cursor("miden_testnet")).last_scanned_height == 900

    @pytest.mark.asyncio
    async def test_reads_wait_for_open_batch(self, ledger):
        candidates = [
            WithdrawalCandidate(_commitment(34), "0xnote34", 500, 1000, "utest1a"),
            WithdrawalCandidate("not-a-commitment", "0xnote35", 500, 1000, "utest1b"),
        ]
        batch, seen = await asyncio.gather(
            ledger.record_withdrawals_seen(candidates, ScanCursor("miden_testnet", 1005)),
            ledger.get_withdrawal(_commitment(34)),
            return_exceptions=True,
        )
        assert isinstance(batch, InvalidCommitment)
        # The rolled-back row was never visible to the concurrent read
        assert seen is None


# ═══════════════════════════════════════════════════════════════════════
#  6. FAUCETS & STATS
# ═══════════════════════════════════════════════════════════════════════

class TestFaucetsAndStats:

    @pytest.mark.asyncio
    async def test_first_faucet_wins(self, ledger):
        assert await ledger.get_faucet_id("zcash_testnet") is None
        assert await ledger.store_faucet_id("zcash_testnet", "0xfaucet1") == "0xfaucet1"
        assert await ledger.store_faucet_id("zcash_testnet", "0xfaucet2") == "0xfaucet1"
        assert await ledger.get_faucet_id("zcash_testnet") == "0xfaucet1"

    @pytest.mark.asyncio
    async def test_stats_totals(self, ledger):
        await ledger.record_deposit_claim(_commitment(1), TXID_A, 2_000_000_000)
        await ledger.record_deposit_claim(_commitment(2), TXID_B, 500)
        await ledger.record_withdrawal_seen(_commitment(3), "0xa", 300, 10)
        await ledger.record_withdrawal_seen(_commitment(4), "0xb", 400, 11)
        await ledger.mark_withdrawal_paid(_commitment(3), TXID_A)

        stats = await ledger.stats()
        assert stats["deposits"] == 2
        assert stats["deposited"] == 2_000_000_500
        assert stats["withdrawals"] == 2
        assert stats["paid"] == 1
        assert stats["unpaid"] == 1
        assert stats["paid_out"] == 300
