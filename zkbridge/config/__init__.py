"""
zkbridge Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    BridgeConfig,
    BridgeSectionConfig,
    RollupConfig,
    WalletConfig,
    DatabaseConfig,
    RelayersConfig,
    DepositRelayerConfig,
    ExitRelayerConfig,
    FaucetConfig,
    load_config,
)

__all__ = [
    "BridgeConfig",
    "BridgeSectionConfig",
    "RollupConfig",
    "WalletConfig",
    "DatabaseConfig",
    "RelayersConfig",
    "DepositRelayerConfig",
    "ExitRelayerConfig",
    "FaucetConfig",
    "load_config",
]
