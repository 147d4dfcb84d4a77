"""
zkbridge Bridge Core

Provides:
  - types: Core data structures (notes, ledger entities, payloads, results)
  - codec: CommitmentCodec, commitment helpers, reversible address packing
  - ledger: ClaimLedger (aiosqlite)
  - deposits: DepositScanner, MintIssuer
  - exits: ExitScanner, PayoutExecutor
  - relayer: DepositRelayer, ExitRelayer
  - service: BridgeService, build_bridge

Components that depend on the clients package are loaded lazily so that
``zkbridge.clients`` can import the types defined here.
"""

from .types import (
    ClaimResult,
    CycleReport,
    DEPOSIT_NOTE_TAG,
    DepositCandidate,
    DepositClaim,
    DepositPayload,
    DepositRecipient,
    FungibleAsset,
    MintResult,
    NotePayload,
    NoteState,
    NoteType,
    OutputNote,
    RollupNote,
    ScanCursor,
    TransactionInfo,
    WITHDRAWAL_NOTE_TAG,
    WithdrawalCandidate,
    WithdrawalPayload,
    WithdrawalRecord,
    WithdrawalRequest,
    local_use_case_tag,
)

from .codec import (
    CommitmentCodec,
    commitment_from_words,
    commitment_to_words,
    decode_foreign_address,
    deposit_commitment,
    encode_foreign_address,
    generate_secret,
    normalize_commitment,
    withdrawal_commitment,
)

_LAZY = {
    "ClaimLedger": ".ledger",
    "DepositScanner": ".deposits",
    "MintIssuer": ".deposits",
    "parse_deposit_memo": ".deposits",
    "ExitScanner": ".exits",
    "PayoutExecutor": ".exits",
    "decode_note_payload": ".exits",
    "DepositRelayer": ".relayer",
    "ExitRelayer": ".relayer",
    "BridgeService": ".service",
    "build_bridge": ".service",
}


def __getattr__(name):
    """Lazy loading of the I/O components."""
    if name in _LAZY:
        import importlib
        module = importlib.import_module(_LAZY[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module 'zkbridge.bridge' has no attribute {name!r}")


__all__ = [
    # Types
    "ClaimResult",
    "CycleReport",
    "DEPOSIT_NOTE_TAG",
    "DepositCandidate",
    "DepositClaim",
    "DepositPayload",
    "DepositRecipient",
    "FungibleAsset",
    "MintResult",
    "NotePayload",
    "NoteState",
    "NoteType",
    "OutputNote",
    "RollupNote",
    "ScanCursor",
    "TransactionInfo",
    "WITHDRAWAL_NOTE_TAG",
    "WithdrawalCandidate",
    "WithdrawalPayload",
    "WithdrawalRecord",
    "WithdrawalRequest",
    "local_use_case_tag",
    # Codec
    "CommitmentCodec",
    "commitment_from_words",
    "commitment_to_words",
    "decode_foreign_address",
    "deposit_commitment",
    "encode_foreign_address",
    "generate_secret",
    "normalize_commitment",
    "withdrawal_commitment",
    # Components
    *_LAZY,
]
