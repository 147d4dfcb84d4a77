"""
zkbridge Exit Path — rollup → source chain

ExitScanner turns consumed withdrawal notes on the rollup into
WithdrawalCandidates. PayoutExecutor sends the native payout from the bridge
wallet.

Withdrawal note inputs:
    [0..4)   withdrawal commitment (one word)
    [4]      destination chain id
    [5..45)  packed destination address

The payout amount always comes from the note's fungible asset. Inputs are
supplied by the burner and are never trusted for value.
"""

from typing import List, Optional, Set, Tuple

from ..clients.rollup import RollupClient
from ..clients.wallet import SourceWallet, base_units_to_coins
from ..constants import (
    SOURCE_CHAIN_ID,
    SOURCE_TICKER,
    WITHDRAWAL_INPUT_ADDRESS,
    WITHDRAWAL_INPUT_CHAIN_ID,
    WITHDRAWAL_INPUT_COMMITMENT,
    WITHDRAWAL_INPUT_MIN_LENGTH,
)
from ..exceptions import (
    MalformedInputError,
    PayoutError,
    UndecodableAddress,
    WalletError,
)
from ..logger import get_logger
from .codec import CommitmentCodec, commitment_from_words, normalize_commitment
from .types import (
    DEPOSIT_NOTE_TAG,
    WITHDRAWAL_NOTE_TAG,
    DepositPayload,
    NotePayload,
    NoteState,
    RollupNote,
    WithdrawalCandidate,
    WithdrawalPayload,
)

logger = get_logger(__name__)


def decode_note_payload(note: RollupNote, faucet_id: Optional[str] = None) -> Optional[NotePayload]:
    """
    Decode a bridge note into its payload variant.

    Returns:
        DepositPayload, WithdrawalPayload, or None for notes without a bridge tag

    Raises:
        MalformedInputError: if a bridge-tagged note cannot be decoded
    """
    if note.tag == DEPOSIT_NOTE_TAG:
        return DepositPayload(commitment=normalize_commitment(note.recipient_digest))

    if note.tag != WITHDRAWAL_NOTE_TAG:
        return None

    inputs = note.inputs
    if len(inputs) < WITHDRAWAL_INPUT_MIN_LENGTH:
        raise MalformedInputError(
            f"insufficient inputs: {len(inputs)} < {WITHDRAWAL_INPUT_MIN_LENGTH}"
        )
    return WithdrawalPayload(
        commitment=commitment_from_words(inputs[WITHDRAWAL_INPUT_COMMITMENT]),
        chain_id=inputs[WITHDRAWAL_INPUT_CHAIN_ID],
        address_tuple=tuple(inputs[WITHDRAWAL_INPUT_ADDRESS]),
        amount=note.fungible_amount(faucet_id),
    )


# ══════════════════════════════════════════════════════════════════════
#  EXIT SCANNER
# ══════════════════════════════════════════════════════════════════════

class ExitScanner:
    """
    Polls the rollup for burn notes addressed to this bridge.

    Every poll re-reads the full set of notes in ``note_state``. A burn can be
    consumed long after its inclusion block, so no height floor applies; the
    ledger's unique ``note_id`` keeps repeats from being recorded twice. Only
    assets issued by ``faucet_id`` count as payout value.
    """

    def __init__(
        self,
        rollup: RollupClient,
        codec: Optional[CommitmentCodec] = None,
        target_chain_id: int = SOURCE_CHAIN_ID,
        faucet_id: Optional[str] = None,
        note_state: NoteState = NoteState.CONSUMED,
    ):
        self.rollup = rollup
        self.codec = codec or CommitmentCodec()
        self.target_chain_id = target_chain_id
        self.faucet_id = faucet_id
        self.note_state = note_state
        self._tag_registered = False
        # Rejected notes are re-evaluated every poll but warned about once
        self._rejected: Set[str] = set()

    async def _ensure_tag(self) -> None:
        if not self._tag_registered:
            await self.rollup.add_note_tag(WITHDRAWAL_NOTE_TAG)
            self._tag_registered = True

    def _skip(self, note: RollupNote, reason: str) -> None:
        if note.note_id in self._rejected:
            logger.debug(f"Skipping note {note.note_id}: {reason}")
            return
        self._rejected.add(note.note_id)
        logger.warning(f"Skipping note {note.note_id}: {reason}")

    def _to_candidate(self, note: RollupNote) -> Optional[WithdrawalCandidate]:
        try:
            payload = decode_note_payload(note, self.faucet_id)
        except MalformedInputError as e:
            self._skip(note, str(e))
            return None

        if not isinstance(payload, WithdrawalPayload):
            return None

        if payload.chain_id != self.target_chain_id:
            self._skip(note, f"chain {payload.chain_id}, expected {self.target_chain_id}")
            return None

        try:
            address = self.codec.decode_foreign_address(payload.address_tuple)
        except UndecodableAddress as e:
            self._skip(note, f"undecodable address ({e})")
            return None

        if payload.amount <= 0:
            self._skip(note, "no fungible asset or zero amount")
            return None

        return WithdrawalCandidate(
            commitment=payload.commitment,
            note_id=note.note_id,
            amount=payload.amount,
            block_number=note.block_num,
            destination_address=address,
        )

    async def scan(self) -> Tuple[List[WithdrawalCandidate], int]:
        """
        Sync and collect qualifying withdrawal candidates.

        Returns:
            (candidates in scan order, synced height)
        """
        await self._ensure_tag()
        height = await self.rollup.sync_state()

        if self.faucet_id is None:
            # Without the bridge faucet no burn can carry wrapped value
            logger.warning("Bridge faucet unknown, exit notes ignored this cycle")
            return [], height

        notes = await self.rollup.list_notes(self.note_state, tag=WITHDRAWAL_NOTE_TAG)
        candidates = []
        for note in notes:
            if note.tag != WITHDRAWAL_NOTE_TAG:
                continue
            if note.block_num is None:
                logger.debug(f"Note {note.note_id} has no inclusion block yet")
                continue
            candidate = self._to_candidate(note)
            if candidate is not None:
                candidates.append(candidate)

        logger.debug(f"Exit scan at height {height}: {len(notes)} notes, {len(candidates)} candidates")
        return candidates, height


# ══════════════════════════════════════════════════════════════════════
#  PAYOUT EXECUTOR
# ══════════════════════════════════════════════════════════════════════

class PayoutExecutor:
    """Sends native payouts from the bridge wallet."""

    def __init__(self, wallet: SourceWallet, memo: Optional[str] = None):
        self.wallet = wallet
        self.memo = memo

    async def send(self, destination: str, amount: int) -> str:
        """
        Pay ``amount`` base units to ``destination``.

        Returns:
            Source-chain transaction id

        Raises:
            PayoutError: if the wallet send failed; ``definite`` tells whether
                the payment certainly did not go out
        """
        if amount <= 0:
            raise PayoutError(f"refusing to send non-positive amount {amount}")

        value = base_units_to_coins(amount)
        try:
            txid = await self.wallet.send(destination, value, memo=self.memo)
        except PayoutError:
            raise
        except WalletError as e:
            raise PayoutError(f"send to {destination} failed: {e}", definite=e.definite) from e

        logger.info(f"Sent {value} {SOURCE_TICKER} to {destination}: {txid}")
        return txid
