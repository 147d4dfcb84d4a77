"""
zkbridge Claim Ledger — durable at-most-once bookkeeping

SQLite-backed store (through ``aiosqlite``) shared by both relayers and the
service layer. It is the only state the bridge owns, and the only place
dedupe state lives: nothing about "already handled" is kept in process memory.

Schema:
    deposits     — one row per minted deposit, keyed by commitment
    withdrawals  — one row per observed burn, keyed by commitment, unique note id
    scan_cursors — last fully scanned height per chain
    faucets      — rollup faucet issuing the wrapped asset, per origin network

Every write is insert-if-absent or a conditional update, so concurrent cycles,
restarted relayers and duplicate deployments cannot double-process a
commitment.

Usage:
    ledger = await ClaimLedger.create("data/bridge.db")
    if not await ledger.is_deposit_claimed(commitment):
        ...
        await ledger.record_deposit_claim(commitment, txid, amount)
"""

import asyncio
import os
import time
from typing import (
    Any, AsyncIterator, Callable, Dict, Iterable, List, Optional,
)

import aiosqlite

from ..exceptions import ConfigurationError
from ..logger import get_logger
from .codec import normalize_commitment
from .types import DepositClaim, ScanCursor, WithdrawalCandidate, WithdrawalRecord

logger = get_logger(__name__)

# ── SQL DDL ─────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS deposits (
    commitment    TEXT    PRIMARY KEY,
    source_txid   TEXT    NOT NULL,
    amount        INTEGER NOT NULL,
    claimed_at    INTEGER NOT NULL,
    note_id       TEXT,
    rollup_tx_id  TEXT
);

CREATE INDEX IF NOT EXISTS idx_deposits_txid ON deposits(source_txid);

CREATE TABLE IF NOT EXISTS withdrawals (
    commitment          TEXT    PRIMARY KEY,
    note_id             TEXT    UNIQUE NOT NULL,
    amount              INTEGER NOT NULL,
    block_number        INTEGER NOT NULL,
    destination_address TEXT    NOT NULL DEFAULT '',
    created_at          INTEGER NOT NULL,
    claimed_at          INTEGER,
    payout_txid         TEXT,
    payout_reserved_by  TEXT,
    payout_reserved_at  INTEGER,
    CHECK ((claimed_at IS NULL) = (payout_txid IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_withdrawals_claimed ON withdrawals(claimed_at);

CREATE TABLE IF NOT EXISTS scan_cursors (
    chain               TEXT    PRIMARY KEY,
    last_scanned_height INTEGER NOT NULL,
    updated_at          INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS faucets (
    origin_network TEXT    PRIMARY KEY,
    faucet_id      TEXT    NOT NULL,
    created_at     INTEGER NOT NULL
);
"""

# ── Deposits ────────────────────────────────────────────────────────

_SELECT_DEPOSIT_EXISTS = "SELECT 1 FROM deposits WHERE commitment = ? LIMIT 1"

_INSERT_DEPOSIT = """
INSERT INTO deposits (commitment, source_txid, amount, claimed_at, note_id, rollup_tx_id)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(commitment) DO NOTHING
"""

_SELECT_DEPOSIT = """
SELECT commitment, source_txid, amount, claimed_at, note_id, rollup_tx_id
FROM deposits WHERE commitment = ?
"""

# ── Withdrawals ─────────────────────────────────────────────────────

_WITHDRAWAL_COLUMNS = """
commitment, note_id, amount, block_number, destination_address, created_at,
claimed_at, payout_txid, payout_reserved_by, payout_reserved_at
"""

_INSERT_WITHDRAWAL = """
INSERT INTO withdrawals (commitment, note_id, amount, block_number, destination_address, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT DO NOTHING
"""

_SELECT_WITHDRAWAL = f"SELECT {_WITHDRAWAL_COLUMNS} FROM withdrawals WHERE commitment = ?"

_SELECT_WITHDRAWAL_BY_NOTE = f"SELECT {_WITHDRAWAL_COLUMNS} FROM withdrawals WHERE note_id = ?"

_SELECT_UNCLAIMED = f"""
SELECT {_WITHDRAWAL_COLUMNS} FROM withdrawals
WHERE claimed_at IS NULL AND commitment > ?
ORDER BY commitment
LIMIT ?
"""

_RESERVE_PAYOUT = """
UPDATE withdrawals
SET payout_reserved_by = ?, payout_reserved_at = ?
WHERE commitment = ? AND claimed_at IS NULL AND payout_reserved_at IS NULL
"""

_RELEASE_PAYOUT = """
UPDATE withdrawals
SET payout_reserved_by = NULL, payout_reserved_at = NULL
WHERE commitment = ? AND claimed_at IS NULL AND payout_reserved_by = ?
"""

_MARK_PAID = """
UPDATE withdrawals
SET claimed_at = ?, payout_txid = ?
WHERE commitment = ? AND claimed_at IS NULL
"""

_SELECT_STALE_RESERVATIONS = f"""
SELECT {_WITHDRAWAL_COLUMNS} FROM withdrawals
WHERE claimed_at IS NULL AND payout_reserved_at IS NOT NULL AND payout_reserved_at <= ?
ORDER BY payout_reserved_at
"""

# ── Cursors & faucets ───────────────────────────────────────────────

_SELECT_CURSOR = "SELECT chain, last_scanned_height, updated_at FROM scan_cursors WHERE chain = ?"

_ADVANCE_CURSOR = """
INSERT INTO scan_cursors (chain, last_scanned_height, updated_at) VALUES (?, ?, ?)
ON CONFLICT(chain) DO UPDATE SET
    last_scanned_height = excluded.last_scanned_height,
    updated_at          = excluded.updated_at
WHERE excluded.last_scanned_height > scan_cursors.last_scanned_height
"""

_SELECT_FAUCET = "SELECT faucet_id FROM faucets WHERE origin_network = ?"

_INSERT_FAUCET = """
INSERT INTO faucets (origin_network, faucet_id, created_at) VALUES (?, ?, ?)
ON CONFLICT(origin_network) DO NOTHING
"""

_STATS = """
SELECT
    (SELECT COUNT(*) FROM deposits)                                  AS deposits,
    (SELECT COALESCE(SUM(amount), 0) FROM deposits)                  AS deposited,
    (SELECT COUNT(*) FROM withdrawals)                               AS withdrawals,
    (SELECT COUNT(*) FROM withdrawals WHERE claimed_at IS NOT NULL)  AS paid,
    (SELECT COUNT(*) FROM withdrawals WHERE claimed_at IS NULL)      AS unpaid,
    (SELECT COALESCE(SUM(amount), 0) FROM withdrawals
        WHERE claimed_at IS NOT NULL)                                AS paid_out
"""


class ClaimLedger:
    """
    Durable keyed store of deposit claims and withdrawal records.

    One instance wraps one ``aiosqlite`` connection. Several instances (or
    processes) may open the same database file; correctness relies on the
    conditional SQL above, not on in-process locking. ``_lock`` serialises
    every statement on this connection while both relayers share one
    instance, so no read observes a transaction that has not committed.
    """

    def __init__(self, db_path: str, clock: Optional[Callable[[], float]] = None):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None
        self._clock = clock or time.time
        self._lock = asyncio.Lock()

    @staticmethod
    async def create(
        db_path: str,
        wal_mode: bool = True,
        busy_timeout: float = 10.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> "ClaimLedger":
        """
        Open (creating if needed) the ledger database and its schema.

        Raises:
            ConfigurationError: if the database cannot be opened or initialized
        """
        self = ClaimLedger(db_path, clock=clock)
        try:
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            self.connection = await aiosqlite.connect(db_path, timeout=busy_timeout)
            self.connection.row_factory = aiosqlite.Row

            if wal_mode:
                await self.connection.execute("PRAGMA journal_mode=WAL")
                await self.connection.execute("PRAGMA synchronous=NORMAL")

            await self.connection.executescript(_SCHEMA)
            await self.connection.commit()
        except (aiosqlite.Error, OSError) as e:
            if self.connection is not None:
                await self.connection.close()
            raise ConfigurationError(f"Cannot open claim ledger at {db_path}: {e}") from e

        logger.info(f"Claim ledger initialized: {db_path}")
        return self

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    async def __aenter__(self) -> "ClaimLedger":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _now(self) -> int:
        return int(self._clock())

    async def _query_one(self, query: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        """Read on the shared connection; the caller must hold ``_lock``."""
        async with self.connection.execute(query, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        async with self._lock:
            return await self._query_one(query, params)

    async def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[aiosqlite.Row]:
        async with self._lock:
            async with self.connection.execute(query, tuple(params)) as cursor:
                return list(await cursor.fetchall())

    async def _write(self, query: str, params: Iterable[Any] = ()) -> int:
        """Execute one statement in its own transaction, returning the row count."""
        async with self._lock:
            try:
                cursor = await self.connection.execute(query, tuple(params))
                rowcount = cursor.rowcount
                await cursor.close()
                await self.connection.commit()
            except aiosqlite.Error:
                await self.connection.rollback()
                raise
        return rowcount

    # ── Deposits ────────────────────────────────────────────────────

    async def is_deposit_claimed(self, commitment: str) -> bool:
        commitment = normalize_commitment(commitment)
        return await self._fetchone(_SELECT_DEPOSIT_EXISTS, (commitment,)) is not None

    async def record_deposit_claim(
        self,
        commitment: str,
        txid: str,
        amount: int,
        note_id: Optional[str] = None,
        rollup_tx_id: Optional[str] = None,
    ) -> bool:
        """
        Record a minted deposit (insert-if-absent).

        A second call with the same commitment is a successful no-op and
        leaves the first record untouched.

        Returns:
            True if a new row was written, False if the commitment was already claimed
        """
        commitment = normalize_commitment(commitment)
        inserted = await self._write(
            _INSERT_DEPOSIT,
            (commitment, txid, int(amount), self._now(), note_id, rollup_tx_id),
        ) == 1
        if inserted:
            logger.info(f"Recorded deposit claim {commitment} (source tx {txid}, {amount} base units)")
        else:
            logger.debug(f"Deposit {commitment} already claimed, record unchanged")
        return inserted

    async def get_deposit_claim(self, commitment: str) -> Optional[DepositClaim]:
        row = await self._fetchone(_SELECT_DEPOSIT, (normalize_commitment(commitment),))
        if row is None:
            return None
        return DepositClaim(
            commitment=row["commitment"],
            source_txid=row["source_txid"],
            amount=row["amount"],
            claimed_at=row["claimed_at"],
            note_id=row["note_id"],
            rollup_tx_id=row["rollup_tx_id"],
        )

    # ── Withdrawals ─────────────────────────────────────────────────

    @staticmethod
    def _row_to_withdrawal(row: aiosqlite.Row) -> WithdrawalRecord:
        return WithdrawalRecord(
            commitment=row["commitment"],
            rollup_note_id=row["note_id"],
            amount=row["amount"],
            source_block_number=row["block_number"],
            created_at=row["created_at"],
            destination_address=row["destination_address"],
            claimed_at=row["claimed_at"],
            payout_txid=row["payout_txid"],
            payout_reserved_by=row["payout_reserved_by"],
            payout_reserved_at=row["payout_reserved_at"],
        )

    async def _warn_if_conflicting(self, commitment: str, note_id: str, amount: int) -> None:
        """Log a burn that lost the insert to a different note. Caller holds ``_lock``."""
        row = await self._query_one(_SELECT_WITHDRAWAL, (commitment,))
        if row is not None and row["note_id"] != note_id:
            logger.warning(
                f"Skipping withdrawal note {note_id} ({amount} base units): commitment "
                f"{commitment} is already recorded for note {row['note_id']}"
            )
        elif row is None:
            other = await self._query_one(_SELECT_WITHDRAWAL_BY_NOTE, (note_id,))
            if other is not None:
                logger.warning(
                    f"Skipping withdrawal note {note_id}: already recorded under "
                    f"commitment {other['commitment']}, not {commitment}"
                )

    async def record_withdrawal_seen(
        self,
        commitment: str,
        note_id: str,
        amount: int,
        block_number: int,
        destination_address: str = "",
    ) -> bool:
        """
        Record a burn that owes a payout (insert-if-absent on commitment and note id).

        Returns:
            True if a new row was written
        """
        commitment = normalize_commitment(commitment)
        inserted = await self._write(
            _INSERT_WITHDRAWAL,
            (commitment, note_id, int(amount), int(block_number), destination_address, self._now()),
        ) == 1
        if inserted:
            logger.info(
                f"Recorded withdrawal {commitment} (note {note_id}, {amount} base units, block {block_number})"
            )
        else:
            async with self._lock:
                await self._warn_if_conflicting(commitment, note_id, amount)
        return inserted

    async def record_withdrawals_seen(
        self,
        candidates: Iterable[WithdrawalCandidate],
        cursor: Optional[ScanCursor] = None,
    ) -> int:
        """
        Record a scan range's candidates and advance its cursor in one transaction.

        Returns:
            Number of newly recorded withdrawals
        """
        now = self._now()
        inserted = 0
        async with self._lock:
            try:
                for c in candidates:
                    db_cursor = await self.connection.execute(
                        _INSERT_WITHDRAWAL,
                        (
                            normalize_commitment(c.commitment), c.note_id, int(c.amount),
                            int(c.block_number), c.destination_address, now,
                        ),
                    )
                    if db_cursor.rowcount == 1:
                        inserted += 1
                        logger.info(
                            f"Recorded withdrawal {c.commitment} (note {c.note_id}, "
                            f"{c.amount} base units, block {c.block_number})"
                        )
                    else:
                        await self._warn_if_conflicting(
                            normalize_commitment(c.commitment), c.note_id, c.amount
                        )
                    await db_cursor.close()
                if cursor is not None:
                    await self.connection.execute(
                        _ADVANCE_CURSOR, (cursor.chain, int(cursor.last_scanned_height), now)
                    )
                await self.connection.commit()
            except Exception:
                await self.connection.rollback()
                raise
        return inserted

    async def get_withdrawal(self, commitment: str) -> Optional[WithdrawalRecord]:
        row = await self._fetchone(_SELECT_WITHDRAWAL, (normalize_commitment(commitment),))
        return self._row_to_withdrawal(row) if row else None

    async def get_withdrawal_by_note_id(self, note_id: str) -> Optional[WithdrawalRecord]:
        row = await self._fetchone(_SELECT_WITHDRAWAL_BY_NOTE, (note_id,))
        return self._row_to_withdrawal(row) if row else None

    async def reserve_withdrawal_payout(self, commitment: str, owner: str) -> bool:
        """
        Take the exclusive right to send this withdrawal's payout.

        Succeeds for exactly one caller per unpaid, unreserved record, across
        connections and processes.
        """
        commitment = normalize_commitment(commitment)
        return await self._write(_RESERVE_PAYOUT, (owner, self._now(), commitment)) == 1

    async def release_withdrawal_payout(self, commitment: str, owner: str) -> bool:
        """Drop a reservation after a send that definitely did not go out."""
        commitment = normalize_commitment(commitment)
        return await self._write(_RELEASE_PAYOUT, (commitment, owner)) == 1

    async def mark_withdrawal_paid(self, commitment: str, payout_txid: str) -> bool:
        """
        Set ``claimed_at``/``payout_txid`` on an unpaid record.

        Returns:
            True if a row was updated; False if it was already paid (the first
            payout txid is kept) or does not exist
        """
        commitment = normalize_commitment(commitment)
        updated = await self._write(_MARK_PAID, (self._now(), payout_txid, commitment)) == 1
        if updated:
            logger.info(f"Paid withdrawal {commitment}: source tx {payout_txid}")
        else:
            logger.warning(f"Withdrawal {commitment} was not updated (already paid or unknown)")
        return updated

    async def unclaimed_withdrawals(
        self,
        batch_size: int = 100,
        after: Optional[str] = None,
    ) -> AsyncIterator[WithdrawalRecord]:
        """
        Iterate withdrawals whose payout is still owed, in commitment order.

        Rows are fetched lazily in batches; pass ``after`` (a commitment) to
        resume an interrupted sweep.
        """
        last = normalize_commitment(after) if after else ""
        while True:
            rows = await self._fetchall(_SELECT_UNCLAIMED, (last, batch_size))
            for row in rows:
                yield self._row_to_withdrawal(row)
            if len(rows) < batch_size:
                return
            last = rows[-1]["commitment"]

    async def stale_reservations(self, older_than: int) -> List[WithdrawalRecord]:
        """Reserved-but-unpaid withdrawals older than ``older_than`` seconds."""
        rows = await self._fetchall(_SELECT_STALE_RESERVATIONS, (self._now() - older_than,))
        return [self._row_to_withdrawal(r) for r in rows]

    # ── Cursors ─────────────────────────────────────────────────────

    async def get_cursor(self, chain: str) -> Optional[ScanCursor]:
        row = await self._fetchone(_SELECT_CURSOR, (chain,))
        if row is None:
            return None
        return ScanCursor(
            chain=row["chain"],
            last_scanned_height=row["last_scanned_height"],
            updated_at=row["updated_at"],
        )

    async def advance_cursor(self, chain: str, height: int) -> bool:
        """Move a cursor forward; lower or equal heights are ignored."""
        return await self._write(_ADVANCE_CURSOR, (chain, int(height), self._now())) == 1

    # ── Faucets ─────────────────────────────────────────────────────

    async def get_faucet_id(self, origin_network: str) -> Optional[str]:
        row = await self._fetchone(_SELECT_FAUCET, (origin_network,))
        return row["faucet_id"] if row else None

    async def store_faucet_id(self, origin_network: str, faucet_id: str) -> str:
        """Store the faucet for a network; an existing entry wins and is returned."""
        await self._write(_INSERT_FAUCET, (origin_network, faucet_id, self._now()))
        return await self.get_faucet_id(origin_network)

    # ── Diagnostics ─────────────────────────────────────────────────

    async def stats(self) -> Dict[str, int]:
        row = await self._fetchone(_STATS)
        return {key: row[key] for key in row.keys()}
