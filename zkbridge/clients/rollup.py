"""
zkbridge Rollup Client

Interface to the rollup's client daemon (state sync, note queries, transaction
execution and proving) plus a JSON-RPC implementation over ``httpx``.

The bridge never proves anything itself; proving, consensus and note-script
compilation all live behind this interface.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..bridge.types import (
    NoteState,
    OutputNote,
    ProvenTransaction,
    RollupNote,
    TransactionResult,
)
from ..exceptions import RollupError
from ..logger import get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  ROLLUP CLIENT  (Abstract)
# ══════════════════════════════════════════════════════════════════════

class RollupClient(ABC):
    """
    Abstract rollup client used by MintIssuer and ExitScanner.

    Every method may raise :class:`RollupError`; callers treat it as transient.
    """

    @abstractmethod
    async def sync_state(self) -> int:
        """Sync the local client with the chain tip. Returns the synced height."""
        ...

    @abstractmethod
    async def get_sync_height(self) -> int:
        ...

    @abstractmethod
    async def add_note_tag(self, tag: int) -> None:
        """Track notes carrying ``tag`` on subsequent syncs."""
        ...

    @abstractmethod
    async def list_notes(self, state: NoteState, tag: Optional[int] = None) -> List[RollupNote]:
        """List input notes in ``state``, optionally restricted to one tag."""
        ...

    @abstractmethod
    async def find_notes_by_recipient(self, recipient_digest: str) -> List[RollupNote]:
        """Notes already created for a recipient digest (used for reconciliation)."""
        ...

    @abstractmethod
    async def execute_transaction(
        self,
        account_id: str,
        output_notes: List[OutputNote],
    ) -> TransactionResult:
        ...

    @abstractmethod
    async def prove_transaction(self, tx: TransactionResult) -> ProvenTransaction:
        ...

    @abstractmethod
    async def submit_proven_transaction(self, proven: ProvenTransaction) -> int:
        """Submit a proven transaction. Returns the block height it was accepted at."""
        ...

    @abstractmethod
    async def apply_transaction(self, tx: TransactionResult, submission_height: int) -> None:
        """Apply a submitted transaction to the local client store."""
        ...

    @abstractmethod
    async def create_faucet(self, symbol: str, decimals: int, max_supply: int) -> str:
        """Deploy a fungible faucet account. Returns its account id."""
        ...


# ══════════════════════════════════════════════════════════════════════
#  JSON-RPC CLIENT
# ══════════════════════════════════════════════════════════════════════

class RpcRollupClient(RollupClient):
    """
    :class:`RollupClient` speaking JSON-RPC 2.0 to a rollup client daemon.

    Network errors, HTTP errors and JSON-RPC error objects all surface as
    :class:`RollupError`.
    """

    _rpc_id_counter = 0

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        proving_timeout: float = 300.0,
    ):
        self.url = url.rstrip('/')
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.proving_timeout = proving_timeout

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # -----------------------------------------------------------------
    #  Low-level JSON-RPC transport
    # -----------------------------------------------------------------

    @classmethod
    def _next_id(cls) -> int:
        cls._rpc_id_counter += 1
        return cls._rpc_id_counter

    async def _rpc_call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send one JSON-RPC request and return its ``result``.

        Raises:
            RollupError: on transport failure, non-2xx status, malformed
                response or a JSON-RPC error object
        """
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": method,
            "id": self._next_id(),
        }
        if params is not None:
            payload["params"] = params

        kwargs: Dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout

        start_time = time.time()
        try:
            response = await self.client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                **kwargs,
            )
            elapsed = time.time() - start_time
            logger.debug(f"RPC {method} → {self.url} [{response.status_code}] ({elapsed:.3f}s)")
            response.raise_for_status()
            body = response.json()
        except httpx.RequestError as exc:
            elapsed = time.time() - start_time
            logger.warning(f"RPC {method} → {self.url} NETWORK_ERROR ({elapsed:.3f}s)")
            raise RollupError(f"{method}: rollup client unreachable: {exc}") from exc
        except (json.JSONDecodeError, httpx.HTTPStatusError) as exc:
            elapsed = time.time() - start_time
            logger.warning(f"RPC {method} → {self.url} ERROR ({elapsed:.3f}s): {exc}")
            raise RollupError(f"{method}: {exc}") from exc

        if not isinstance(body, dict):
            raise RollupError(f"{method}: malformed JSON-RPC response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise RollupError(f"{method}: {message}")
        return body.get("result")

    # -----------------------------------------------------------------
    #  RollupClient
    # -----------------------------------------------------------------

    async def sync_state(self) -> int:
        result = await self._rpc_call("sync_state")
        return int(result["block_num"]) if isinstance(result, dict) else int(result or 0)

    async def get_sync_height(self) -> int:
        return int(await self._rpc_call("get_sync_height") or 0)

    async def add_note_tag(self, tag: int) -> None:
        await self._rpc_call("add_note_tag", {"tag": tag})

    async def list_notes(self, state: NoteState, tag: Optional[int] = None) -> List[RollupNote]:
        params: Dict[str, Any] = {"filter": NoteState(state).value}
        if tag is not None:
            params["tag"] = tag
        result = await self._rpc_call("get_input_notes", params) or []
        return self._parse_notes(result, "get_input_notes")

    async def find_notes_by_recipient(self, recipient_digest: str) -> List[RollupNote]:
        result = await self._rpc_call(
            "get_output_notes", {"recipient_digest": recipient_digest}
        ) or []
        return self._parse_notes(result, "get_output_notes")

    async def execute_transaction(
        self,
        account_id: str,
        output_notes: List[OutputNote],
    ) -> TransactionResult:
        result = await self._rpc_call(
            "execute_transaction",
            {
                "account_id": account_id,
                "own_output_notes": [n.to_dict() for n in output_notes],
            },
        )
        try:
            return TransactionResult(
                tx_id=result["tx_id"],
                created_note_ids=list(result.get("created_note_ids", [])),
                payload=result,
            )
        except (KeyError, TypeError) as e:
            raise RollupError(f"execute_transaction: unexpected result: {e}") from e

    async def prove_transaction(self, tx: TransactionResult) -> ProvenTransaction:
        result = await self._rpc_call(
            "prove_transaction",
            {"tx_id": tx.tx_id},
            timeout=self.proving_timeout,
        )
        try:
            return ProvenTransaction(tx_id=result.get("tx_id", tx.tx_id), proof=result["proof"])
        except (KeyError, AttributeError) as e:
            raise RollupError(f"prove_transaction: unexpected result: {e}") from e

    async def submit_proven_transaction(self, proven: ProvenTransaction) -> int:
        result = await self._rpc_call(
            "submit_proven_transaction",
            {"tx_id": proven.tx_id, "proof": proven.proof},
        )
        if isinstance(result, dict):
            return int(result.get("block_num", 0))
        return int(result or 0)

    async def apply_transaction(self, tx: TransactionResult, submission_height: int) -> None:
        await self._rpc_call(
            "apply_transaction",
            {"tx_id": tx.tx_id, "submission_height": submission_height},
        )

    async def create_faucet(self, symbol: str, decimals: int, max_supply: int) -> str:
        result = await self._rpc_call(
            "new_faucet",
            {
                "symbol": symbol,
                "decimals": decimals,
                "max_supply": str(max_supply),
                "storage_mode": "public",
            },
        )
        faucet_id = result.get("account_id") if isinstance(result, dict) else result
        if not faucet_id:
            raise RollupError("new_faucet: no account id returned")
        return str(faucet_id)

    @staticmethod
    def _parse_notes(result: Any, method: str) -> List[RollupNote]:
        try:
            return [RollupNote.from_dict(n) for n in result]
        except (KeyError, TypeError, ValueError) as e:
            raise RollupError(f"{method}: unexpected note record: {e}") from e
