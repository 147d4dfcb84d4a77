"""
zkbridge Deposit Path — source chain → rollup

DepositScanner reads inbound memo transfers from the bridge wallet and turns
them into validated DepositCandidates. MintIssuer mints the wrapped note on
the rollup for a candidate, reconciling against notes that already exist so
that a crash between mint and ledger write never mints twice.

Memo grammar:
    <commitment>        canonical: 64 hex chars, ``0x`` optional, any case
    <identity>|<secret> legacy: hashed into a commitment here, logged as legacy
"""

import asyncio
import weakref
from typing import List, Optional, Tuple

from ..clients.rollup import RollupClient
from ..clients.wallet import SourceWallet
from ..constants import SOURCE_CHAIN_NAME, SOURCE_DECIMALS, SOURCE_TICKER
from ..exceptions import (
    InvalidCommitment,
    MalformedInputError,
    MalformedMemo,
    MintError,
    RollupError,
    WalletError,
)
from ..logger import get_logger
from .codec import CommitmentCodec, commitment_to_words, normalize_commitment
from .ledger import ClaimLedger
from .types import (
    DEPOSIT_NOTE_TAG,
    DepositCandidate,
    DepositRecipient,
    FungibleAsset,
    MintResult,
    NoteType,
    OutputNote,
    TransactionInfo,
)

logger = get_logger(__name__)

_MEMO_WRAPPERS = ('Memo::Text(', 'Text(')
LEGACY_MEMO_SEPARATOR = "|"


# ══════════════════════════════════════════════════════════════════════
#  MEMO PARSING
# ══════════════════════════════════════════════════════════════════════

def normalize_memo(memo: str) -> str:
    """
    Strip the transfer layer's wrappers from a memo.

    ``Memo::Text("0xAB..")`` -> ``0xAB..``; surrounding quotes, whitespace and
    trailing NUL padding are removed. Hex normalization happens in
    :func:`parse_deposit_memo`.
    """
    text = memo.strip().rstrip("\x00").strip()
    for wrapper in _MEMO_WRAPPERS:
        if text.startswith(wrapper) and text.endswith(")"):
            text = text[len(wrapper):-1].strip()
            break
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1]
    return text.strip()


def parse_deposit_memo(memo: str, codec: Optional[CommitmentCodec] = None) -> Tuple[str, bool]:
    """
    Derive the deposit commitment a memo carries.

    Returns:
        (commitment, legacy) where ``legacy`` is True for ``identity|secret`` memos

    Raises:
        MalformedMemo: if the memo matches neither grammar
    """
    text = normalize_memo(memo)
    if not text:
        raise MalformedMemo("empty memo")

    if LEGACY_MEMO_SEPARATOR in text:
        identity, _, secret = text.partition(LEGACY_MEMO_SEPARATOR)
        codec = codec or CommitmentCodec()
        try:
            return codec.deposit_commitment(identity, secret), True
        except MalformedInputError as e:
            raise MalformedMemo(f"legacy memo rejected: {e}") from e

    try:
        commitment = normalize_commitment(text)
        commitment_to_words(commitment)
    except InvalidCommitment as e:
        raise MalformedMemo(f"memo is not a commitment: {e}") from e
    return commitment, False


# ══════════════════════════════════════════════════════════════════════
#  DEPOSIT SCANNER
# ══════════════════════════════════════════════════════════════════════

class DepositScanner:
    """
    Lists inbound memo transfers to the bridge wallet.

    The scanner is stateless; the DepositRelayer owns the cursor and the
    ledger owns dedupe.
    """

    def __init__(
        self,
        wallet: SourceWallet,
        codec: Optional[CommitmentCodec] = None,
        filter_bridge_addresses: bool = True,
        refresh_before_scan: bool = True,
    ):
        self.wallet = wallet
        self.codec = codec or CommitmentCodec()
        self.filter_bridge_addresses = filter_bridge_addresses
        self.refresh_before_scan = refresh_before_scan

    async def refresh(self) -> None:
        """Sync the wallet and download memo data."""
        await self.wallet.sync()
        await self.wallet.enhance()

    async def _bridge_addresses(self) -> Optional[set]:
        if not self.filter_bridge_addresses:
            return None
        try:
            addresses = await self.wallet.list_addresses()
        except WalletError as e:
            logger.warning(f"Cannot list bridge addresses, recipient filter disabled this cycle: {e}")
            return None
        return set(addresses) or None

    async def _inbound(self) -> List[TransactionInfo]:
        if self.refresh_before_scan:
            await self.refresh()
        transactions = await self.wallet.list_transactions()
        owned = await self._bridge_addresses()

        inbound = []
        for tx in transactions:
            if tx.amount <= 0 or not tx.memo:
                continue
            if owned is not None and tx.to_address is not None and tx.to_address not in owned:
                logger.debug(f"Skipping tx {tx.txid}: output {tx.to_address} is not a bridge address")
                continue
            inbound.append(tx)
        return inbound

    def _to_candidate(self, tx: TransactionInfo) -> Optional[DepositCandidate]:
        try:
            commitment, legacy = parse_deposit_memo(tx.memo, self.codec)
        except MalformedMemo as e:
            logger.warning(f"Skipping tx {tx.txid}: {e}")
            return None
        if legacy:
            logger.warning(f"Tx {tx.txid} uses a legacy identity|secret memo (commitment {commitment})")
        return DepositCandidate(
            commitment=commitment,
            txid=tx.txid,
            amount=tx.amount,
            mined_height=tx.mined_height,
            legacy_memo=legacy,
        )

    async def scan(self, after_height: Optional[int] = None) -> List[DepositCandidate]:
        """
        Valid inbound memo transfers mined above ``after_height``, in wallet order.

        Unmined transfers are left for a later cycle.
        """
        candidates = []
        for tx in await self._inbound():
            if tx.mined_height is None:
                logger.debug(f"Tx {tx.txid} not mined yet")
                continue
            if after_height is not None and tx.mined_height <= after_height:
                continue
            candidate = self._to_candidate(tx)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    async def find_deposit(self, commitment: str) -> Optional[Tuple[str, int]]:
        """
        The mined inbound transfer carrying ``commitment``.

        Returns:
            (txid, amount) or None. If several transfers carry the same
            commitment only the first is returned; a commitment pays out once.
        """
        commitment = normalize_commitment(commitment)
        matches = [c for c in await self.scan() if c.commitment == commitment]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} transfers carry commitment {commitment}; "
                f"only tx {matches[0].txid} is honoured"
            )
        return matches[0].txid, matches[0].amount


# ══════════════════════════════════════════════════════════════════════
#  MINT ISSUER
# ══════════════════════════════════════════════════════════════════════

class MintIssuer:
    """
    Mints wrapped-asset notes on the rollup.

    Each mint runs execute → prove → submit → apply from the bridge faucet.
    Any rollup failure surfaces as MintError and leaves the deposit unclaimed.
    """

    def __init__(
        self,
        rollup: RollupClient,
        ledger: ClaimLedger,
        symbol: str = SOURCE_TICKER,
        decimals: int = SOURCE_DECIMALS,
        max_supply: int = 10**18,
        origin_network: str = SOURCE_CHAIN_NAME,
        note_type: NoteType = NoteType.PUBLIC,
        faucet_id: Optional[str] = None,
    ):
        self.rollup = rollup
        self.ledger = ledger
        self.symbol = symbol
        self.decimals = decimals
        self.max_supply = max_supply
        self.origin_network = origin_network
        self.note_type = note_type
        self._faucet_id = faucet_id
        self._faucet_lock = asyncio.Lock()
        # Serializes mints of one commitment between the relayer and claim path
        self._inflight: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def ensure_faucet(self) -> str:
        """Faucet issuing the wrapped asset, created on the rollup on first use."""
        if self._faucet_id:
            return self._faucet_id

        async with self._faucet_lock:
            if self._faucet_id:
                return self._faucet_id

            faucet_id = await self.ledger.get_faucet_id(self.origin_network)
            if faucet_id is None:
                logger.info(
                    f"Creating {self.symbol} faucet for {self.origin_network} "
                    f"(decimals={self.decimals}, max_supply={self.max_supply})"
                )
                created = await self.rollup.create_faucet(self.symbol, self.decimals, self.max_supply)
                faucet_id = await self.ledger.store_faucet_id(self.origin_network, created)
                if faucet_id != created:
                    logger.warning(f"Faucet {created} discarded; {faucet_id} was stored first")
                else:
                    logger.info(f"Created faucet {faucet_id}")
            self._faucet_id = faucet_id
        return self._faucet_id

    async def reconcile(self, commitment: str) -> Optional[MintResult]:
        """An existing rollup note for ``commitment``, if a previous mint landed."""
        notes = await self.rollup.find_notes_by_recipient(commitment)
        for note in notes:
            if note.recipient_digest and note.recipient_digest.lower() != commitment:
                continue
            if note.tag != DEPOSIT_NOTE_TAG:
                continue
            return MintResult(note_id=note.note_id, tx_id="", reconciled=True)
        return None

    def _build_note(
        self,
        commitment: str,
        amount: int,
        faucet_id: str,
        recipient: Optional[DepositRecipient],
    ) -> OutputNote:
        return OutputNote(
            recipient_digest=commitment,
            assets=[FungibleAsset(faucet_id=faucet_id, amount=amount)],
            tag=DEPOSIT_NOTE_TAG,
            sender=faucet_id,
            note_type=self.note_type,
            recipient_account=recipient.account_id if recipient else None,
            serial_number=recipient.secret if recipient else None,
        )

    async def mint(
        self,
        commitment: str,
        amount: int,
        recipient: Optional[DepositRecipient] = None,
    ) -> MintResult:
        """
        Mint ``amount`` base units addressed to ``commitment``.

        A partial note (digest only) is minted unless the claimant supplied
        the full recipient material.

        Raises:
            MintError: on any rollup failure
        """
        commitment = normalize_commitment(commitment)
        if amount <= 0:
            raise MalformedInputError(f"refusing to mint non-positive amount {amount}")

        lock = self._inflight.get(commitment)
        if lock is None:
            lock = asyncio.Lock()
            self._inflight[commitment] = lock
        async with lock:
            return await self._mint(commitment, amount, recipient)

    async def _mint(
        self,
        commitment: str,
        amount: int,
        recipient: Optional[DepositRecipient],
    ) -> MintResult:
        try:
            faucet_id = await self.ensure_faucet()

            existing = await self.reconcile(commitment)
            if existing is not None:
                logger.info(f"Reconciled {commitment}: note {existing.note_id} already on the rollup")
                return existing

            note = self._build_note(commitment, amount, faucet_id, recipient)
            kind = "partial" if note.is_partial else "full"

            tx = await self.rollup.execute_transaction(faucet_id, [note])
            proven = await self.rollup.prove_transaction(tx)
            height = await self.rollup.submit_proven_transaction(proven)
            await self.rollup.apply_transaction(tx, height)
        except MintError:
            raise
        except RollupError as e:
            raise MintError(f"mint for {commitment} failed: {e}") from e

        if not tx.created_note_ids:
            raise MintError(f"mint for {commitment} produced no output note (tx {tx.tx_id})")

        note_id = tx.created_note_ids[0]
        logger.info(
            f"Minted {kind} note {note_id} for {commitment}: {amount} base units "
            f"(tx {tx.tx_id}, block {height})"
        )
        return MintResult(note_id=note_id, tx_id=tx.tx_id)
