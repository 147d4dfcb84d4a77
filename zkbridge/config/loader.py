"""
zkbridge TOML Configuration Loader

Loads all sections of config.toml at startup with environment variable overrides.
Each section is a dataclass with ``from_dict`` and, where operators need to
override it per deployment, ``apply_env``.

Environment variable mapping:
    [bridge] target_chain_id      → ZKBRIDGE_TARGET_CHAIN_ID
    [bridge] keystore_dir         → ZKBRIDGE_KEYSTORE_DIR
    [bridge] log_level            → ZKBRIDGE_LOG_LEVEL
    [bridge] log_file             → ZKBRIDGE_LOG_FILE
    [rollup] rpc_url              → ZKBRIDGE_ROLLUP_RPC_URL
    [wallet] wallet_dir           → ZKBRIDGE_WALLET_DIR
    [database] path               → ZKBRIDGE_DB_PATH
    [relayers.deposit] interval   → ZKBRIDGE_DEPOSIT_INTERVAL_SECS
    [relayers.exit] interval      → ZKBRIDGE_EXIT_INTERVAL_SECS
    ...

Variables may also come from a .env file (python-dotenv); the process
environment always wins over it.

The wallet identity file path may be configured; its contents never are.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from dotenv import find_dotenv, load_dotenv

from ..constants import (
    ROLLUP_CHAIN_NAME,
    SOURCE_CHAIN_ID,
    SOURCE_CHAIN_NAME,
    SOURCE_DECIMALS,
    SOURCE_TICKER,
)
from ..exceptions import ConfigurationError
from ..logger import get_logger

logger = get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
NOTE_TYPES = ("public", "private")
NOTE_STATES = ("committed", "consumed")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Section dataclasses, mirroring every [section] of config.example.toml
# ---------------------------------------------------------------------------


@dataclass
class BridgeSectionConfig:
    """[bridge] section."""
    target_chain_id: int = SOURCE_CHAIN_ID
    origin_network: str = SOURCE_CHAIN_NAME
    rollup_network: str = ROLLUP_CHAIN_NAME
    keystore_dir: str = "./keystore"
    log_level: str = "INFO"
    log_file: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeSectionConfig":
        return cls(
            target_chain_id=data.get("target_chain_id", SOURCE_CHAIN_ID),
            origin_network=data.get("origin_network", SOURCE_CHAIN_NAME),
            rollup_network=data.get("rollup_network", ROLLUP_CHAIN_NAME),
            keystore_dir=data.get("keystore_dir", "./keystore"),
            log_level=data.get("log_level", "INFO"),
            log_file=data.get("log_file", ""),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("ZKBRIDGE_TARGET_CHAIN_ID"):
            self.target_chain_id = int(v)
        if v := os.environ.get("ZKBRIDGE_KEYSTORE_DIR"):
            self.keystore_dir = v
        if v := os.environ.get("ZKBRIDGE_LOG_LEVEL"):
            self.log_level = v
        if v := os.environ.get("ZKBRIDGE_LOG_FILE"):
            self.log_file = v


@dataclass
class RollupConfig:
    """[rollup] section."""
    rpc_url: str = "http://127.0.0.1:57291"
    timeout: float = 30.0
    proving_timeout: float = 300.0
    note_type: str = "public"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollupConfig":
        return cls(
            rpc_url=data.get("rpc_url", "http://127.0.0.1:57291"),
            timeout=float(data.get("timeout", 30.0)),
            proving_timeout=float(data.get("proving_timeout", 300.0)),
            note_type=data.get("note_type", "public"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_ROLLUP_RPC_URL"):
            self.rpc_url = v


@dataclass
class WalletConfig:
    """[wallet] section."""
    devtool_dir: str = "./wallet/zcash-devtool"
    wallet_dir: str = "./wallet/bridge_wallet"
    identity_file: str = "./wallet/bridge_wallet/key.txt"
    server: str = "zecrocks"
    account_id: str = ""
    command: List[str] = field(default_factory=lambda: [
        "cargo", "run", "--release", "--all-features", "--",
    ])
    timeout: float = 600.0
    filter_bridge_addresses: bool = True
    payout_memo: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletConfig":
        return cls(
            devtool_dir=data.get("devtool_dir", "./wallet/zcash-devtool"),
            wallet_dir=data.get("wallet_dir", "./wallet/bridge_wallet"),
            identity_file=data.get("identity_file", "./wallet/bridge_wallet/key.txt"),
            server=data.get("server", "zecrocks"),
            account_id=data.get("account_id", ""),
            command=data.get("command", cls.__dataclass_fields__["command"].default_factory()),
            timeout=float(data.get("timeout", 600.0)),
            filter_bridge_addresses=data.get("filter_bridge_addresses", True),
            payout_memo=data.get("payout_memo", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_WALLET_DEVTOOL_DIR"):
            self.devtool_dir = v
        if v := os.environ.get("ZKBRIDGE_WALLET_DIR"):
            self.wallet_dir = v
        if v := os.environ.get("ZKBRIDGE_WALLET_IDENTITY_FILE"):
            self.identity_file = v
        if v := os.environ.get("ZKBRIDGE_WALLET_SERVER"):
            self.server = v


@dataclass
class DatabaseConfig:
    """[database] section."""
    path: str = "./data/bridge.db"
    wal_mode: bool = True
    busy_timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        return cls(
            path=data.get("path", "./data/bridge.db"),
            wal_mode=data.get("wal_mode", True),
            busy_timeout=float(data.get("busy_timeout", 10.0)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_DB_PATH"):
            self.path = v


# -- Relayers ------------------------------------------------------------

@dataclass
class DepositRelayerConfig:
    """[relayers.deposit]."""
    enabled: bool = True
    interval: float = 5.0
    rescan_window: int = 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DepositRelayerConfig":
        return cls(
            enabled=data.get("enabled", True),
            interval=float(data.get("interval", 5.0)),
            rescan_window=data.get("rescan_window", 100),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_DEPOSIT_INTERVAL_SECS"):
            self.interval = float(v)
        if v := os.environ.get("ZKBRIDGE_DEPOSIT_ENABLED"):
            self.enabled = _env_bool(v)


@dataclass
class ExitRelayerConfig:
    """[relayers.exit]."""
    enabled: bool = True
    interval: float = 10.0
    batch_size: int = 100
    stale_after: int = 3600
    note_state: str = "consumed"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExitRelayerConfig":
        return cls(
            enabled=data.get("enabled", True),
            interval=float(data.get("interval", 10.0)),
            batch_size=data.get("batch_size", 100),
            stale_after=data.get("stale_after", 3600),
            note_state=data.get("note_state", "consumed"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_EXIT_INTERVAL_SECS"):
            self.interval = float(v)
        if v := os.environ.get("ZKBRIDGE_EXIT_ENABLED"):
            self.enabled = _env_bool(v)


@dataclass
class RelayersConfig:
    """[relayers] section."""
    deposit: DepositRelayerConfig = field(default_factory=DepositRelayerConfig)
    exit: ExitRelayerConfig = field(default_factory=ExitRelayerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayersConfig":
        return cls(
            deposit=DepositRelayerConfig.from_dict(data.get("deposit", {})),
            exit=ExitRelayerConfig.from_dict(data.get("exit", {})),
        )

    def apply_env(self) -> None:
        self.deposit.apply_env()
        self.exit.apply_env()


@dataclass
class FaucetConfig:
    """[faucet] section."""
    symbol: str = SOURCE_TICKER
    decimals: int = SOURCE_DECIMALS
    max_supply: int = 10**18
    faucet_id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaucetConfig":
        return cls(
            symbol=data.get("symbol", SOURCE_TICKER),
            decimals=data.get("decimals", SOURCE_DECIMALS),
            max_supply=int(data.get("max_supply", 10**18)),
            faucet_id=data.get("faucet_id", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ZKBRIDGE_FAUCET_ID"):
            self.faucet_id = v


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass
class BridgeConfig:
    """Complete relayer configuration (all sections of config.toml)."""
    bridge: BridgeSectionConfig = field(default_factory=BridgeSectionConfig)
    rollup: RollupConfig = field(default_factory=RollupConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    relayers: RelayersConfig = field(default_factory=RelayersConfig)
    faucet: FaucetConfig = field(default_factory=FaucetConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        return cls(
            bridge=BridgeSectionConfig.from_dict(data.get("bridge", {})),
            rollup=RollupConfig.from_dict(data.get("rollup", {})),
            wallet=WalletConfig.from_dict(data.get("wallet", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            relayers=RelayersConfig.from_dict(data.get("relayers", {})),
            faucet=FaucetConfig.from_dict(data.get("faucet", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "BridgeConfig":
        """
        Load configuration from a TOML file.

        A missing file yields defaults (with env overrides); an unparseable
        one raises ConfigurationError.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.bridge.apply_env()
        self.rollup.apply_env()
        self.wallet.apply_env()
        self.database.apply_env()
        self.relayers.apply_env()
        self.faucet.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if self.bridge.target_chain_id < 0:
            raise ConfigurationError("target_chain_id must be >= 0")
        if self.bridge.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log_level: {self.bridge.log_level}")
        if not self.rollup.rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"rollup.rpc_url must be an http(s) URL: {self.rollup.rpc_url}")
        if self.rollup.note_type not in NOTE_TYPES:
            raise ConfigurationError(f"rollup.note_type must be one of {NOTE_TYPES}")
        if not self.wallet.command:
            raise ConfigurationError("wallet.command cannot be empty")
        if not self.database.path:
            raise ConfigurationError("database.path cannot be empty")
        for name, relayer in (("deposit", self.relayers.deposit), ("exit", self.relayers.exit)):
            if relayer.interval <= 0:
                raise ConfigurationError(f"relayers.{name}.interval must be > 0")
        if self.relayers.deposit.rescan_window < 0:
            raise ConfigurationError("relayers.deposit.rescan_window must be >= 0")
        if self.relayers.exit.batch_size < 1:
            raise ConfigurationError("relayers.exit.batch_size must be >= 1")
        if self.relayers.exit.note_state not in NOTE_STATES:
            raise ConfigurationError(f"relayers.exit.note_state must be one of {NOTE_STATES}")
        if not 0 <= self.faucet.decimals <= 12:
            raise ConfigurationError("faucet.decimals must be between 0 and 12")
        if self.faucet.max_supply <= 0:
            raise ConfigurationError("faucet.max_supply must be > 0")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "bridge": {
                "target_chain_id": self.bridge.target_chain_id,
                "origin_network": self.bridge.origin_network,
                "rollup_network": self.bridge.rollup_network,
                "keystore_dir": self.bridge.keystore_dir,
                "log_level": self.bridge.log_level,
                "log_file": self.bridge.log_file,
            },
            "rollup": {
                "rpc_url": self.rollup.rpc_url,
                "note_type": self.rollup.note_type,
            },
            "wallet": {
                "wallet_dir": self.wallet.wallet_dir,
                "server": self.wallet.server,
            },
            "database": {
                "path": self.database.path,
                "wal_mode": self.database.wal_mode,
            },
            "relayers": {
                "deposit": {
                    "enabled": self.relayers.deposit.enabled,
                    "interval": self.relayers.deposit.interval,
                },
                "exit": {
                    "enabled": self.relayers.exit.enabled,
                    "interval": self.relayers.exit.interval,
                },
            },
            "faucet": {
                "symbol": self.faucet.symbol,
                "decimals": self.faucet.decimals,
                "faucet_id": self.faucet.faucet_id,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None, env_file: Optional[str] = None) -> BridgeConfig:
    """
    Load relayer configuration.

    Resolution order:
        1. Explicit *path* argument
        2. ZKBRIDGE_CONFIG (process environment or .env)
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    # A .env beside the deployment fills in ZKBRIDGE_* variables the
    # process environment leaves unset
    load_dotenv(dotenv_path=env_file or find_dotenv(usecwd=True), override=False)

    if path is None:
        path = os.environ.get("ZKBRIDGE_CONFIG", "config.toml")

    return BridgeConfig.from_file(path)
