"""
zkbridge Relayers

Two independent cooperative polling loops sharing one ClaimLedger:

    DepositRelayer:  DepositScanner → ledger dedupe → MintIssuer → ledger record
    ExitRelayer:     ExitScanner → ledger record (+cursor) → payout sweep

A cycle never overlaps the previous one, never lets a single candidate abort
it, and never lets a failed cycle stop the loop. Restart safety comes from the
ledger and the persisted cursors, not from anything held in memory.
"""

import asyncio
import os
import socket
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional

from ..constants import ROLLUP_CHAIN_NAME, SOURCE_CHAIN_NAME
from ..exceptions import MalformedInputError, PayoutError
from ..logger import get_logger
from .deposits import DepositScanner, MintIssuer
from .exits import ExitScanner, PayoutExecutor
from .ledger import ClaimLedger
from .types import CycleReport, DepositCandidate, ScanCursor, WithdrawalRecord

logger = get_logger(__name__)


def default_owner_id() -> str:
    """Identifies this process in payout reservations."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


# ══════════════════════════════════════════════════════════════════════
#  BASE RELAYER
# ══════════════════════════════════════════════════════════════════════

class BaseRelayer(ABC):
    """
    Fixed-interval loop around :meth:`run_once`.

    ``stop()`` lets a running cycle finish; it only interrupts the sleep
    between cycles.
    """

    name = "relayer"

    def __init__(self, ledger: ClaimLedger, interval: float):
        self.ledger = ledger
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def _cycle(self) -> CycleReport:
        ...

    async def run_once(self) -> CycleReport:
        """Run exactly one cycle (waits for an in-flight cycle first)."""
        async with self._cycle_lock:
            return await self._cycle()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._wakeup.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"{self.name} started (interval {self.interval}s)")

    async def stop(self) -> None:
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info(f"{self.name} stopped")

    async def wait(self) -> None:
        """Block until the loop exits."""
        if self._task is not None:
            await self._task

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def _loop(self) -> None:
        while self._running:
            try:
                report = await self.run_once()
                logger.info(f"{self.name} cycle complete: {report}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {self.name} cycle: {type(e).__name__}: {e}")
                logger.debug(f"{self.name} cycle traceback", exc_info=True)

            if self._running:
                await self._sleep()


# ══════════════════════════════════════════════════════════════════════
#  DEPOSIT RELAYER
# ══════════════════════════════════════════════════════════════════════

class DepositRelayer(BaseRelayer):
    """
    Mints rollup notes for new source-chain deposits.

    The cursor advances to the highest mined height whose candidates all
    succeeded; a failed candidate holds it back so the next cycle sees the
    deposit again.
    """

    name = "deposit relayer"

    def __init__(
        self,
        scanner: DepositScanner,
        issuer: MintIssuer,
        ledger: ClaimLedger,
        interval: float = 5.0,
        chain: str = SOURCE_CHAIN_NAME,
        rescan_window: int = 100,
    ):
        super().__init__(ledger, interval)
        self.scanner = scanner
        self.issuer = issuer
        self.chain = chain
        self.rescan_window = rescan_window

    async def _process(self, candidate: DepositCandidate, report: CycleReport) -> bool:
        """Returns False if the candidate must be retried."""
        try:
            if await self.ledger.is_deposit_claimed(candidate.commitment):
                logger.debug(f"Deposit {candidate.commitment} already claimed (tx {candidate.txid})")
                report.skipped += 1
                return True

            result = await self.issuer.mint(candidate.commitment, candidate.amount)
            await self.ledger.record_deposit_claim(
                candidate.commitment,
                candidate.txid,
                candidate.amount,
                note_id=result.note_id,
                rollup_tx_id=result.tx_id or None,
            )
            report.processed += 1
            return True
        except MalformedInputError as e:
            logger.warning(f"Skipping deposit {candidate.commitment} (tx {candidate.txid}): {e}")
            report.skipped += 1
            return True
        except Exception as e:
            logger.error(f"Failed deposit {candidate.commitment} (tx {candidate.txid}): {e}")
            report.failed += 1
            return False

    async def _cycle(self) -> CycleReport:
        cursor = await self.ledger.get_cursor(self.chain)
        after = None
        if cursor is not None:
            after = max(cursor.last_scanned_height - self.rescan_window, 0)

        candidates = await self.scanner.scan(after)
        report = CycleReport(seen=len(candidates))

        highest: Optional[int] = None
        failed_heights: List[int] = []
        for candidate in candidates:
            ok = await self._process(candidate, report)
            if candidate.mined_height is None:
                continue
            highest = candidate.mined_height if highest is None else max(highest, candidate.mined_height)
            if not ok:
                failed_heights.append(candidate.mined_height)

        if highest is not None:
            target = min(failed_heights) - 1 if failed_heights else highest
            if await self.ledger.advance_cursor(self.chain, target):
                logger.debug(f"{self.chain} cursor advanced to {target}")
        return report


# ══════════════════════════════════════════════════════════════════════
#  EXIT RELAYER
# ══════════════════════════════════════════════════════════════════════

class ExitRelayer(BaseRelayer):
    """
    Pays out withdrawals observed on the rollup.

    Every cycle records the scan's candidates together with the cursor, then
    sweeps all unpaid withdrawals: reserve → send → mark paid. A reservation
    is released only when the send definitely did not go out; otherwise it is
    left in place for an operator (see ``stale_reservations``).
    """

    name = "exit relayer"

    def __init__(
        self,
        scanner: ExitScanner,
        payout: PayoutExecutor,
        ledger: ClaimLedger,
        interval: float = 10.0,
        chain: str = ROLLUP_CHAIN_NAME,
        owner: Optional[str] = None,
        batch_size: int = 100,
        stale_after: int = 3600,
        faucet_network: str = SOURCE_CHAIN_NAME,
    ):
        super().__init__(ledger, interval)
        self.scanner = scanner
        self.payout = payout
        self.chain = chain
        self.faucet_network = faucet_network
        self.owner = owner or default_owner_id()
        self.batch_size = batch_size
        self.stale_after = stale_after

    async def _pay(self, record: WithdrawalRecord, report: CycleReport) -> None:
        commitment = record.commitment
        if not record.destination_address:
            logger.warning(f"Skipping withdrawal {commitment}: no destination address on record")
            report.skipped += 1
            return

        if not await self.ledger.reserve_withdrawal_payout(commitment, self.owner):
            logger.debug(f"Withdrawal {commitment} reserved elsewhere or already paid")
            report.skipped += 1
            return

        try:
            txid = await self.payout.send(record.destination_address, record.amount)
        except PayoutError as e:
            report.failed += 1
            if e.definite:
                await self.ledger.release_withdrawal_payout(commitment, self.owner)
                logger.warning(f"Failed payout for {commitment}, will retry: {e}")
            else:
                logger.error(
                    f"Payout outcome unknown for {commitment} (note {record.rollup_note_id}); "
                    f"reservation kept for manual reconciliation: {e}"
                )
            return

        try:
            await self.ledger.mark_withdrawal_paid(commitment, txid)
        except Exception:
            logger.critical(
                f"Payout {txid} for {commitment} was sent but could not be recorded; "
                f"reservation kept to prevent a second payout"
            )
            raise
        report.processed += 1

    async def _report_stale(self) -> None:
        stale = await self.ledger.stale_reservations(self.stale_after)
        for record in stale:
            logger.warning(
                f"Withdrawal {record.commitment} reserved by {record.payout_reserved_by} "
                f"since {record.payout_reserved_at} is still unpaid"
            )

    async def _cycle(self) -> CycleReport:
        if self.scanner.faucet_id is None:
            self.scanner.faucet_id = await self.ledger.get_faucet_id(self.faucet_network)

        candidates, height = await self.scanner.scan()
        # Heights scanned before the faucet is known are not final
        scanned = ScanCursor(self.chain, height) if self.scanner.faucet_id else None
        new = await self.ledger.record_withdrawals_seen(candidates, scanned)
        report = CycleReport(seen=len(candidates))
        if new:
            logger.info(f"{new} new withdrawal(s) recorded up to block {height}")

        async for record in self.ledger.unclaimed_withdrawals(self.batch_size):
            if record.is_reserved:
                report.skipped += 1
                continue
            try:
                await self._pay(record, report)
            except Exception as e:
                logger.error(f"Failed withdrawal {record.commitment}: {type(e).__name__}: {e}")
                logger.debug(f"Withdrawal {record.commitment} traceback", exc_info=True)
                report.failed += 1

        await self._report_stale()
        return report
