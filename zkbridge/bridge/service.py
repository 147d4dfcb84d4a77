"""
zkbridge Bridge Service

The surface the HTTP and CLI layers call into: deposit hashing and claiming,
withdrawal note preparation, and read-only status over the ClaimLedger.

``build_bridge`` wires every component from a BridgeConfig and performs the
startup checks; a ConfigurationError from it means no relayer may start.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..clients.rollup import RollupClient, RpcRollupClient
from ..clients.wallet import DevtoolWallet, SourceWallet
from ..config.loader import BridgeConfig
from ..constants import ROLLUP_CHAIN_NAME, SOURCE_CHAIN_ID, SOURCE_CHAIN_NAME
from ..exceptions import ConfigurationError, MalformedInputError, TransientError
from ..logger import get_logger
from .codec import CommitmentCodec, commitment_to_words, generate_secret
from .deposits import DepositScanner, MintIssuer
from .exits import ExitScanner, PayoutExecutor
from .ledger import ClaimLedger
from .relayer import DepositRelayer, ExitRelayer
from .types import (
    WITHDRAWAL_NOTE_TAG,
    ClaimResult,
    DepositClaim,
    DepositRecipient,
    NoteState,
    NoteType,
    WalletBalance,
    WithdrawalRecord,
    WithdrawalRequest,
)

logger = get_logger(__name__)


def prepare_withdrawal(
    codec: CommitmentCodec,
    destination: str,
    amount: int,
    target_chain_id: int,
    nonce: Optional[str] = None,
) -> WithdrawalRequest:
    """Build the withdrawal commitment, note tag and note inputs for a burn."""
    nonce = nonce or generate_secret()
    address_tuple = codec.encode_foreign_address(destination)
    commitment = codec.withdrawal_commitment(destination, amount, nonce)
    inputs = list(commitment_to_words(commitment)) + [target_chain_id] + list(address_tuple)
    return WithdrawalRequest(
        commitment=commitment,
        destination_address=destination,
        amount=amount,
        chain_id=target_chain_id,
        tag=WITHDRAWAL_NOTE_TAG,
        note_inputs=inputs,
        nonce=nonce,
    )


class BridgeService:
    """
    User-facing bridge operations.

    Claims go through the same MintIssuer and ledger as the DepositRelayer,
    so a deposit claimed here is never minted again by the relayer and vice
    versa.
    """

    def __init__(
        self,
        ledger: ClaimLedger,
        scanner: DepositScanner,
        issuer: MintIssuer,
        wallet: SourceWallet,
        codec: Optional[CommitmentCodec] = None,
        target_chain_id: int = SOURCE_CHAIN_ID,
        cursor_chains: tuple = (SOURCE_CHAIN_NAME, ROLLUP_CHAIN_NAME),
    ):
        self.ledger = ledger
        self.scanner = scanner
        self.issuer = issuer
        self.wallet = wallet
        self.codec = codec or CommitmentCodec()
        self.target_chain_id = target_chain_id
        self.cursor_chains = cursor_chains

    # ── Deposits ────────────────────────────────────────────────────

    def deposit_hash(self, identity: str, secret: str) -> str:
        """Commitment a depositor must put in the memo."""
        return self.codec.deposit_commitment(identity, secret)

    async def claim_deposit(self, identity: str, secret: str) -> ClaimResult:
        """
        Mint a full note for a deposit the claimant can open.

        Malformed inputs and transient failures come back as an unsuccessful
        ClaimResult; nothing is recorded unless the mint succeeded.
        """
        try:
            commitment = self.codec.deposit_commitment(identity, secret)
        except MalformedInputError as e:
            return ClaimResult(success=False, commitment="", message=str(e))

        existing = await self.ledger.get_deposit_claim(commitment)
        if existing is not None:
            return ClaimResult(
                success=True,
                commitment=commitment,
                message="Deposit already claimed",
                note_id=existing.note_id,
                transaction_id=existing.rollup_tx_id,
                already_claimed=True,
            )

        try:
            found = await self.scanner.find_deposit(commitment)
            if found is None:
                return ClaimResult(
                    success=False,
                    commitment=commitment,
                    message="No deposit found for this commitment",
                )
            txid, amount = found

            recipient = DepositRecipient(account_id=identity, secret=secret)
            result = await self.issuer.mint(commitment, amount, recipient=recipient)
            inserted = await self.ledger.record_deposit_claim(
                commitment, txid, amount,
                note_id=result.note_id,
                rollup_tx_id=result.tx_id or None,
            )
        except TransientError as e:
            logger.warning(f"Claim for {commitment} failed: {e}")
            return ClaimResult(success=False, commitment=commitment, message=str(e))

        return ClaimResult(
            success=True,
            commitment=commitment,
            message="Deposit claimed" if inserted else "Deposit already claimed",
            note_id=result.note_id,
            transaction_id=result.tx_id or None,
            already_claimed=not inserted or result.reconciled,
        )

    async def deposit_status(self, commitment: str) -> Optional[DepositClaim]:
        return await self.ledger.get_deposit_claim(commitment)

    # ── Withdrawals ─────────────────────────────────────────────────

    def create_withdrawal(
        self,
        destination: str,
        amount: int,
        nonce: Optional[str] = None,
    ) -> WithdrawalRequest:
        """
        Prepare the tag and inputs of a burn note paying ``amount`` to ``destination``.

        Nothing is recorded: the withdrawal enters the ledger when the
        ExitRelayer sees the consumed note on the rollup.

        Raises:
            UndecodableAddress: if the destination cannot be packed
            ValueError: if the amount is out of range
        """
        return prepare_withdrawal(self.codec, destination, amount, self.target_chain_id, nonce)

    async def withdrawal_status(self, commitment: str) -> Optional[WithdrawalRecord]:
        return await self.ledger.get_withdrawal(commitment)

    async def withdrawal_status_by_note(self, note_id: str) -> Optional[WithdrawalRecord]:
        return await self.ledger.get_withdrawal_by_note_id(note_id)

    # ── Diagnostics ─────────────────────────────────────────────────

    async def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(await self.ledger.stats())
        cursors = {}
        for chain in self.cursor_chains:
            cursor = await self.ledger.get_cursor(chain)
            cursors[chain] = cursor.last_scanned_height if cursor else None
        stats["cursors"] = cursors
        return stats

    async def pool_balance(self) -> WalletBalance:
        """Native balance held by the bridge wallet."""
        return await self.wallet.get_balance()


# ══════════════════════════════════════════════════════════════════════
#  WIRING
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Bridge:
    """Every long-lived component of a relayer process."""
    config: BridgeConfig
    ledger: ClaimLedger
    rollup: RollupClient
    wallet: SourceWallet
    service: BridgeService
    deposit_relayer: DepositRelayer
    exit_relayer: ExitRelayer

    async def close(self) -> None:
        if isinstance(self.rollup, RpcRollupClient):
            await self.rollup.close()
        await self.ledger.close()


def check_startup(config: BridgeConfig) -> None:
    """
    Checks that must pass before any loop starts.

    Raises:
        ConfigurationError: invalid config or missing keystore directory
    """
    config.validate()
    if not os.path.isdir(config.bridge.keystore_dir):
        raise ConfigurationError(f"Keystore directory not found: {config.bridge.keystore_dir}")


async def build_bridge(
    config: BridgeConfig,
    rollup: Optional[RollupClient] = None,
    wallet: Optional[SourceWallet] = None,
) -> Bridge:
    """
    Construct all components from configuration.

    Raises:
        ConfigurationError: if startup checks fail or the ledger cannot be opened
    """
    check_startup(config)

    ledger = await ClaimLedger.create(
        config.database.path,
        wal_mode=config.database.wal_mode,
        busy_timeout=config.database.busy_timeout,
    )

    rollup = rollup or RpcRollupClient(
        config.rollup.rpc_url,
        timeout=config.rollup.timeout,
        proving_timeout=config.rollup.proving_timeout,
    )
    wallet = wallet or DevtoolWallet(
        devtool_dir=config.wallet.devtool_dir,
        wallet_dir=config.wallet.wallet_dir,
        identity_file=config.wallet.identity_file,
        server=config.wallet.server,
        command=config.wallet.command,
        account_id=config.wallet.account_id or None,
        timeout=config.wallet.timeout,
    )

    codec = CommitmentCodec()
    origin = config.bridge.origin_network
    faucet_id = config.faucet.faucet_id or await ledger.get_faucet_id(origin)
    if faucet_id:
        faucet_id = await ledger.store_faucet_id(origin, faucet_id)

    scanner = DepositScanner(
        wallet, codec, filter_bridge_addresses=config.wallet.filter_bridge_addresses,
    )
    issuer = MintIssuer(
        rollup, ledger,
        symbol=config.faucet.symbol,
        decimals=config.faucet.decimals,
        max_supply=config.faucet.max_supply,
        origin_network=origin,
        note_type=NoteType.PRIVATE if config.rollup.note_type == "private" else NoteType.PUBLIC,
        faucet_id=faucet_id,
    )
    exit_scanner = ExitScanner(
        rollup, codec,
        target_chain_id=config.bridge.target_chain_id,
        faucet_id=faucet_id,
        note_state=NoteState(config.relayers.exit.note_state),
    )
    payout = PayoutExecutor(wallet, memo=config.wallet.payout_memo or None)

    deposit_relayer = DepositRelayer(
        scanner, issuer, ledger,
        interval=config.relayers.deposit.interval,
        chain=origin,
        rescan_window=config.relayers.deposit.rescan_window,
    )
    exit_relayer = ExitRelayer(
        exit_scanner, payout, ledger,
        interval=config.relayers.exit.interval,
        chain=config.bridge.rollup_network,
        batch_size=config.relayers.exit.batch_size,
        stale_after=config.relayers.exit.stale_after,
        faucet_network=origin,
    )
    service = BridgeService(
        ledger, scanner, issuer, wallet, codec,
        target_chain_id=config.bridge.target_chain_id,
        cursor_chains=(origin, config.bridge.rollup_network),
    )

    logger.info(
        f"Bridge ready: {origin} ↔ {config.bridge.rollup_network} "
        f"(target chain {config.bridge.target_chain_id}, faucet {faucet_id or 'pending'})"
    )
    return Bridge(
        config=config,
        ledger=ledger,
        rollup=rollup,
        wallet=wallet,
        service=service,
        deposit_relayer=deposit_relayer,
        exit_relayer=exit_relayer,
    )
