"""
zkbridge Bridge Types

Core data structures for the deposit (source chain → rollup) and withdrawal
(rollup → source chain) paths.

Defines:
  - NoteState / NoteType enums mirroring the rollup client's note filters
  - FungibleAsset, RollupNote and OutputNote for notes read from / sent to the rollup
  - TransactionInfo for transfers listed by the source-chain wallet
  - DepositClaim, WithdrawalRecord, ScanCursor: the persisted ledger entities
  - DepositPayload / WithdrawalPayload: the closed set of bridge note payloads
  - Candidates and results passed between scanners, executors and relayers
"""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..constants import (
    BRIDGE_USECASE,
    DEPOSIT_SUBTAG,
    NOTE_TAG_LOCAL_PREFIX,
    NOTE_TAG_MAX_PAYLOAD,
    NOTE_TAG_MAX_USECASE,
    WITHDRAWAL_SUBTAG,
)


FieldTuple = Tuple[int, ...]


# ══════════════════════════════════════════════════════════════════════
#  NOTE TAGS
# ══════════════════════════════════════════════════════════════════════

def local_use_case_tag(use_case: int, payload: int) -> int:
    """
    Build a local-use-case note tag.

    Args:
        use_case: 14-bit use case identifier
        payload: 16-bit use case specific payload (the bridge's sub-tag)

    Returns:
        32-bit tag value
    """
    if not 0 <= use_case <= NOTE_TAG_MAX_USECASE:
        raise ValueError(f"use_case {use_case} exceeds 14 bits")
    if not 0 <= payload <= NOTE_TAG_MAX_PAYLOAD:
        raise ValueError(f"payload {payload} exceeds 16 bits")
    return NOTE_TAG_LOCAL_PREFIX | (use_case << 16) | payload


DEPOSIT_NOTE_TAG = local_use_case_tag(BRIDGE_USECASE, DEPOSIT_SUBTAG)
WITHDRAWAL_NOTE_TAG = local_use_case_tag(BRIDGE_USECASE, WITHDRAWAL_SUBTAG)


class NoteState(str, Enum):
    """Rollup client note filters."""
    EXPECTED  = "expected"
    COMMITTED = "committed"
    CONSUMED  = "consumed"
    ALL       = "all"


class NoteType(IntEnum):
    PUBLIC  = 1
    PRIVATE = 2


# ══════════════════════════════════════════════════════════════════════
#  ROLLUP NOTES
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FungibleAsset:
    """A quantity of a faucet's fungible token attached to a note."""
    faucet_id: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"faucet_id": self.faucet_id, "amount": self.amount}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'FungibleAsset':
        return cls(faucet_id=d["faucet_id"], amount=int(d["amount"]))


@dataclass
class RollupNote:
    """
    A note as reported by the rollup client.

    Attributes:
        note_id: Note identifier (hex)
        tag: 32-bit note tag
        state: Lifecycle state the client last observed
        inputs: Note input field elements (adversary-influenced)
        assets: Fungible assets attached to the note
        block_num: Block in which the note was included (None if not yet)
        recipient_digest: Commitment the note is addressed to
        note_type: Public or private
    """
    note_id: str
    tag: int
    state: NoteState
    inputs: List[int] = field(default_factory=list)
    assets: List[FungibleAsset] = field(default_factory=list)
    block_num: Optional[int] = None
    recipient_digest: str = ""
    note_type: NoteType = NoteType.PUBLIC

    def fungible_amount(self, faucet_id: Optional[str] = None) -> int:
        """Amount of the first fungible asset, optionally restricted to one faucet."""
        for asset in self.assets:
            if faucet_id is None or asset.faucet_id == faucet_id:
                return asset.amount
        return 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'RollupNote':
        return cls(
            note_id=d["note_id"],
            tag=int(d["tag"]),
            state=NoteState(d.get("state", NoteState.COMMITTED.value)),
            inputs=[int(v) for v in d.get("inputs", [])],
            assets=[FungibleAsset.from_dict(a) for a in d.get("assets", [])],
            block_num=d.get("block_num"),
            recipient_digest=d.get("recipient_digest", ""),
            note_type=NoteType(d.get("note_type", NoteType.PUBLIC)),
        )


@dataclass
class OutputNote:
    """
    A note the bridge asks the rollup client to create.

    A *partial* note carries only the recipient digest (the minter never
    learns the destination account); a *full* note carries the recipient
    material (account id and serial number secret) as well.
    """
    recipient_digest: str
    assets: List[FungibleAsset]
    tag: int
    sender: str
    note_type: NoteType = NoteType.PRIVATE
    recipient_account: Optional[str] = None
    serial_number: Optional[str] = None

    @property
    def is_partial(self) -> bool:
        return self.recipient_account is None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "kind": "partial" if self.is_partial else "full",
            "recipient_digest": self.recipient_digest,
            "assets": [a.to_dict() for a in self.assets],
            "tag": self.tag,
            "sender": self.sender,
            "note_type": int(self.note_type),
        }
        if not self.is_partial:
            d["recipient_account"] = self.recipient_account
            d["serial_number"] = self.serial_number
        return d


@dataclass
class TransactionResult:
    """Executed (not yet proven) rollup transaction."""
    tx_id: str
    created_note_ids: List[str]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvenTransaction:
    tx_id: str
    proof: str


# ══════════════════════════════════════════════════════════════════════
#  SOURCE CHAIN
# ══════════════════════════════════════════════════════════════════════

@dataclass
class TransactionInfo:
    """
    A transaction listed by the source-chain wallet.

    Attributes:
        txid: Transaction id (64 hex chars)
        amount: Net amount in base units (positive for inbound)
        memo: Decoded memo text of the first memo-bearing output, if any
        to_address: Recipient address of that output
        mined_height: Block height, None while unmined
    """
    txid: str
    amount: int = 0
    memo: Optional[str] = None
    to_address: Optional[str] = None
    mined_height: Optional[int] = None


@dataclass
class WalletBalance:
    total: str = "0"
    spendable: str = "0"
    pending: str = "0"

    def to_dict(self) -> Dict[str, str]:
        return {"total": self.total, "spendable": self.spendable, "pending": self.pending}


# ══════════════════════════════════════════════════════════════════════
#  LEDGER ENTITIES
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DepositClaim:
    """
    A deposit that has been minted on the rollup.

    Created exactly once per commitment, never mutated. Only the commitment
    is stored, never the depositor's rollup identity.
    """
    commitment: str
    source_txid: str
    amount: int
    claimed_at: int
    note_id: Optional[str] = None
    rollup_tx_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "source_txid": self.source_txid,
            "amount": self.amount,
            "claimed_at": self.claimed_at,
            "note_id": self.note_id,
            "rollup_tx_id": self.rollup_tx_id,
        }


@dataclass(frozen=True)
class WithdrawalRecord:
    """
    A burn observed on the rollup that owes a payout on the source chain.

    ``claimed_at`` and ``payout_txid`` are set together, once. A record with
    ``claimed_at is None`` means "payout owed but not yet sent".
    """
    commitment: str
    rollup_note_id: str
    amount: int
    source_block_number: int
    created_at: int
    destination_address: str = ""
    claimed_at: Optional[int] = None
    payout_txid: Optional[str] = None
    payout_reserved_by: Optional[str] = None
    payout_reserved_at: Optional[int] = None

    @property
    def is_paid(self) -> bool:
        return self.claimed_at is not None

    @property
    def is_reserved(self) -> bool:
        return self.payout_reserved_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "rollup_note_id": self.rollup_note_id,
            "amount": self.amount,
            "source_block_number": self.source_block_number,
            "created_at": self.created_at,
            "destination_address": self.destination_address,
            "claimed_at": self.claimed_at,
            "payout_txid": self.payout_txid,
        }


@dataclass(frozen=True)
class ScanCursor:
    """Last height a relayer fully scanned on one chain."""
    chain: str
    last_scanned_height: int
    updated_at: int = 0


# ══════════════════════════════════════════════════════════════════════
#  NOTE PAYLOADS  (closed set, decoded once at the scanner boundary)
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DepositPayload:
    """A bridge-minted deposit note addressed to ``commitment``."""
    commitment: str


@dataclass(frozen=True)
class WithdrawalPayload:
    """
    A burn note requesting a payout.

    ``amount`` comes from the attached fungible asset, never from inputs.
    """
    commitment: str
    chain_id: int
    address_tuple: FieldTuple
    amount: int


NotePayload = Union[DepositPayload, WithdrawalPayload]


# ══════════════════════════════════════════════════════════════════════
#  CANDIDATES & RESULTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DepositCandidate:
    """A validated inbound memo transfer awaiting a mint."""
    commitment: str
    txid: str
    amount: int
    mined_height: Optional[int] = None
    legacy_memo: bool = False


@dataclass(frozen=True)
class WithdrawalCandidate:
    """A qualifying exit note ready to be recorded as owed."""
    commitment: str
    note_id: str
    amount: int
    block_number: int
    destination_address: str


@dataclass(frozen=True)
class DepositRecipient:
    """Full recipient material supplied by a claimant (identity + secret)."""
    account_id: str
    secret: str


@dataclass(frozen=True)
class MintResult:
    note_id: str
    tx_id: str
    reconciled: bool = False


@dataclass
class ClaimResult:
    """Outcome of a user-initiated deposit claim."""
    success: bool
    commitment: str
    message: str
    note_id: Optional[str] = None
    transaction_id: Optional[str] = None
    already_claimed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "commitment": self.commitment,
            "message": self.message,
            "note_id": self.note_id,
            "transaction_id": self.transaction_id,
            "already_claimed": self.already_claimed,
        }


@dataclass
class WithdrawalRequest:
    """Everything a user's wallet needs to build a qualifying burn note."""
    commitment: str
    destination_address: str
    amount: int
    chain_id: int
    tag: int
    note_inputs: List[int]
    nonce: str
    created_at: int = 0

    def __post_init__(self):
        if self.created_at == 0:
            self.created_at = int(time.time())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "destination_address": self.destination_address,
            "amount": self.amount,
            "chain_id": self.chain_id,
            "tag": self.tag,
            "note_inputs": [str(v) for v in self.note_inputs],
            "nonce": self.nonce,
            "created_at": self.created_at,
        }


@dataclass
class CycleReport:
    """Counters for one relayer cycle, logged at the end of the cycle."""
    seen: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def __str__(self) -> str:
        return (
            f"seen={self.seen} processed={self.processed} "
            f"skipped={self.skipped} failed={self.failed}"
        )
