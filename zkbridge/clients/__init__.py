"""
zkbridge Chain Clients

Provides:
  - rollup: RollupClient interface, RpcRollupClient (JSON-RPC over httpx)
  - wallet: SourceWallet interface, DevtoolWallet (wallet CLI subprocess) and
    its output parsers
"""

from .rollup import RollupClient, RpcRollupClient
from .wallet import (
    DevtoolWallet,
    SourceWallet,
    base_units_to_coins,
    coins_to_base_units,
    parse_addresses,
    parse_balance,
    parse_transactions,
    parse_txid,
)

__all__ = [
    "RollupClient",
    "RpcRollupClient",
    "SourceWallet",
    "DevtoolWallet",
    "base_units_to_coins",
    "coins_to_base_units",
    "parse_addresses",
    "parse_balance",
    "parse_transactions",
    "parse_txid",
]
