"""
zkbridge Source-Chain Wallet

Interface to the bridge's shielded wallet on the source chain, plus an
implementation that drives the wallet developer CLI as a subprocess and
parses its text output.

CLI output formats handled here (``list-tx``)::

    <txid_hex>
         Mined: <height> (<timestamp>)
        Amount: <amount> TAZ
      Output 0 (ORCHARD)
        Value: <amount> TAZ
        To: <address>
        Memo: Text("<memo>")
"""

import asyncio
import os
from abc import ABC, abstractmethod
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import List, Optional, Sequence

from ..bridge.types import TransactionInfo, WalletBalance
from ..constants import (
    EMPTY_MEMO_MARKERS,
    PAYOUT_TARGET_NOTE_COUNT,
    SOURCE_DECIMALS,
    SOURCE_UNIT,
    VALID_TXID_PATTERN,
)
from ..exceptions import WalletError
from ..logger import get_logger

logger = get_logger(__name__)

ADDRESS_PREFIXES = ("utest1", "ztest", "u1", "zs1")

_QUANTUM = Decimal(1).scaleb(-SOURCE_DECIMALS)


# ══════════════════════════════════════════════════════════════════════
#  UNIT CONVERSION
# ══════════════════════════════════════════════════════════════════════

def coins_to_base_units(value: str) -> int:
    """'0.19990000' -> 19990000. Raises ValueError on non-numeric input."""
    try:
        return int((Decimal(value) * SOURCE_UNIT).to_integral_value(rounding=ROUND_DOWN))
    except InvalidOperation as e:
        raise ValueError(f"not a coin amount: {value!r}") from e


def base_units_to_coins(amount: int) -> str:
    """19990000 -> '0.19990000'."""
    # Fixed-point; str() would give '1E-8' for one base unit
    return format((Decimal(amount) / SOURCE_UNIT).quantize(_QUANTUM), "f")


# ══════════════════════════════════════════════════════════════════════
#  OUTPUT PARSERS
# ══════════════════════════════════════════════════════════════════════

def _is_txid_line(line: str) -> bool:
    return len(line) == 64 and all(c in "0123456789abcdefABCDEF" for c in line)


def _extract_memo(memo_part: str) -> Optional[str]:
    if memo_part.startswith(("Text(", "Memo::Text(")):
        start, end = memo_part.find('"'), memo_part.rfind('"')
        if end > start:
            return memo_part[start + 1:end] or None
        return None
    if memo_part in EMPTY_MEMO_MARKERS:
        return None
    return memo_part


def parse_transactions(output: str) -> List[TransactionInfo]:
    """
    Parse ``list-tx`` output into transactions, in wallet order.

    Only the first memo-bearing output of each transaction is kept.
    """
    transactions: List[TransactionInfo] = []
    current: Optional[TransactionInfo] = None
    in_output = False

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line == "Transactions:":
            continue

        if _is_txid_line(line):
            if current is not None:
                transactions.append(current)
            current = TransactionInfo(txid=line.lower())
            in_output = False
            continue

        if current is None:
            continue

        if line.startswith("Mined:"):
            in_output = False
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                current.mined_height = int(parts[1])
        elif line.startswith(("Unmined", "Expired")):
            in_output = False
        elif line.startswith("Amount:"):
            parts = line.split()
            if len(parts) >= 2:
                try:
                    current.amount = coins_to_base_units(parts[1])
                except ValueError:
                    logger.debug(f"Unparseable amount in tx {current.txid}: {line}")
        elif line.startswith("Output"):
            in_output = True
        elif in_output and line.startswith("To:"):
            address = line[len("To:"):].strip()
            if address and current.to_address is None:
                current.to_address = address
        elif in_output and line.startswith("Memo:"):
            memo = _extract_memo(line[len("Memo:"):].strip())
            if memo is not None and current.memo is None:
                current.memo = memo

    if current is not None:
        transactions.append(current)
    return transactions


def parse_balance(output: str) -> WalletBalance:
    """Parse ``balance`` output; spendable is the Sapling + Orchard sum."""
    balance = WalletBalance()
    spendable = Decimal(0)
    saw_spendable = False

    for raw_line in output.splitlines():
        line = raw_line.strip()
        parts = line.split()
        if line.startswith("Balance:") and len(parts) >= 2:
            balance.total = parts[1]
        if "Spendable:" in parts and ("Sapling" in parts or "Orchard" in parts):
            pos = parts.index("Spendable:")
            if pos + 1 < len(parts):
                try:
                    spendable += Decimal(parts[pos + 1])
                    saw_spendable = True
                except InvalidOperation:
                    logger.debug(f"Unparseable spendable balance: {line}")
        if line.startswith("Pending:") and len(parts) >= 2:
            balance.pending = parts[1]

    if saw_spendable:
        balance.spendable = str(spendable.quantize(_QUANTUM))
    return balance


def parse_addresses(output: str) -> List[str]:
    addresses = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        for token in line.split():
            if token.startswith(ADDRESS_PREFIXES) and len(token) > 20:
                addresses.append(token)
    return addresses


def parse_txid(output: str) -> str:
    """
    First 64-hex transaction id in ``send`` output.

    Raises:
        WalletError: if the output carries no transaction id
    """
    match = VALID_TXID_PATTERN.search(output)
    if not match:
        raise WalletError("send produced no transaction id", definite=False)
    return match.group(1).lower()


# ══════════════════════════════════════════════════════════════════════
#  SOURCE WALLET  (Abstract)
# ══════════════════════════════════════════════════════════════════════

class SourceWallet(ABC):
    """
    Abstract source-chain wallet used by DepositScanner and PayoutExecutor.

    Every method may raise :class:`WalletError`; callers treat it as transient.
    """

    @abstractmethod
    async def sync(self) -> None:
        ...

    @abstractmethod
    async def enhance(self) -> None:
        """Fetch full transaction data so memos become visible."""
        ...

    @abstractmethod
    async def get_balance(self) -> WalletBalance:
        ...

    @abstractmethod
    async def list_addresses(self) -> List[str]:
        ...

    @abstractmethod
    async def list_transactions(self) -> List[TransactionInfo]:
        ...

    @abstractmethod
    async def send(self, address: str, amount: str, memo: Optional[str] = None) -> str:
        """
        Send ``amount`` (coin units, decimal string) to ``address``.

        Returns:
            Transaction id of the broadcast transaction
        """
        ...


# ══════════════════════════════════════════════════════════════════════
#  DEVTOOL CLI WALLET
# ══════════════════════════════════════════════════════════════════════

class DevtoolWallet(SourceWallet):
    """
    :class:`SourceWallet` backed by the wallet developer CLI.

    Each call spawns ``<command> wallet -w <wallet_dir> <subcommand> ...`` in
    ``devtool_dir``. A non-zero exit status or a timeout raises WalletError.
    """

    DEFAULT_COMMAND = ("cargo", "run", "--release", "--all-features", "--")

    def __init__(
        self,
        devtool_dir: str,
        wallet_dir: str,
        identity_file: str,
        server: str = "zecrocks",
        command: Sequence[str] = DEFAULT_COMMAND,
        account_id: Optional[str] = None,
        timeout: float = 600.0,
    ):
        self.devtool_dir = devtool_dir
        self.wallet_dir = wallet_dir
        self.identity_file = identity_file
        self.server = server
        self.command = tuple(command)
        self.account_id = account_id
        self.timeout = timeout

    async def _exec(self, *args: str) -> str:
        argv = [*self.command, "wallet", "-w", self.wallet_dir, *args]
        logger.debug(f"wallet: {' '.join(args[:1])}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.devtool_dir if os.path.isdir(self.devtool_dir) else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise WalletError(f"failed to start wallet command: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise WalletError(
                f"wallet {args[0]} timed out after {self.timeout}s", definite=False
            ) from e

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise WalletError(f"wallet {args[0]} failed ({proc.returncode}): {message}")
        return stdout.decode(errors="replace")

    def _account_args(self) -> List[str]:
        return ["--account-id", self.account_id] if self.account_id else []

    async def sync(self) -> None:
        await self._exec("sync", "-s", self.server)

    async def enhance(self) -> None:
        await self._exec("enhance", "-s", self.server)

    async def get_balance(self) -> WalletBalance:
        return parse_balance(await self._exec("balance"))

    async def list_addresses(self) -> List[str]:
        return parse_addresses(await self._exec("list-addresses", *self._account_args()))

    async def list_transactions(self) -> List[TransactionInfo]:
        return parse_transactions(await self._exec("list-tx", *self._account_args()))

    async def send(self, address: str, amount: str, memo: Optional[str] = None) -> str:
        args = [
            "send",
            "--identity", self.identity_file,
            "--address", address,
            "--value", amount,
            "--target-note-count", str(PAYOUT_TARGET_NOTE_COUNT),
            "-s", self.server,
        ]
        args += self._account_args()
        if memo:
            args += ["--memo", memo]
        return parse_txid(await self._exec(*args))
