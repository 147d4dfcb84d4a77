#!/usr/bin/env python3
"""
zkbridge Relayer CLI

Usage:
    zkbridge run [--config FILE] [--only deposit|exit] [--once]
    zkbridge status [--config FILE]
    zkbridge deposit-hash <identity> <secret>
    zkbridge claim <identity> <secret> [--config FILE]
    zkbridge withdraw <destination> <amount> [--nonce NONCE] [--config FILE]
"""

import asyncio
import json
import signal
from typing import Optional

import click

from . import __version__
from .bridge.codec import CommitmentCodec
from .bridge.service import build_bridge, prepare_withdrawal
from .config import BridgeConfig, load_config
from .exceptions import ConfigurationError, MalformedInputError
from .logger import configure_logging, get_logger

logger = get_logger(__name__)


def _load(config_path: Optional[str]) -> BridgeConfig:
    """Load config.toml and apply its [bridge] logging settings."""
    try:
        config = load_config(config_path)
        configure_logging(config.bridge.log_level, config.bridge.log_file or None)
    except (ConfigurationError, ValueError, OSError) as e:
        raise click.ClickException(str(e))
    return config


def _banner(title: str) -> None:
    click.echo()
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo(click.style(f"  {title}", fg="cyan", bold=True))
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo()


@click.group()
@click.version_option(version=__version__, prog_name="zkbridge")
def cli():
    """Shielded chain ↔ rollup bridge relayers."""
    pass


# ── run ─────────────────────────────────────────────────────────────

async def _run(config: BridgeConfig, only: Optional[str], once: bool) -> None:
    bridge = await build_bridge(config)
    relayers = []
    if only in (None, "deposit") and config.relayers.deposit.enabled:
        relayers.append(bridge.deposit_relayer)
    if only in (None, "exit") and config.relayers.exit.enabled:
        relayers.append(bridge.exit_relayer)

    try:
        if not relayers:
            logger.warning("No relayer enabled, nothing to do")
            return

        if once:
            for relayer in relayers:
                report = await relayer.run_once()
                click.echo(f"{relayer.name}: {report}")
            return

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        for relayer in relayers:
            await relayer.start()
        await stop_event.wait()
        logger.info("Shutdown requested, letting running cycles finish")
        for relayer in relayers:
            await relayer.stop()
    finally:
        await bridge.close()


@cli.command("run")
@click.option("--config", "-c", "config_path", type=click.Path(), default=None, help="Path to config.toml")
@click.option("--only", type=click.Choice(["deposit", "exit"]), default=None, help="Run a single relayer")
@click.option("--once", is_flag=True, help="Run one cycle and exit")
def run_cmd(config_path: Optional[str], only: Optional[str], once: bool):
    """Run the deposit and exit relayers."""
    config = _load(config_path)
    try:
        asyncio.run(_run(config, only, once))
    except ConfigurationError as e:
        logger.critical(f"Refusing to start: {e}")
        raise click.ClickException(str(e))


# ── status ──────────────────────────────────────────────────────────

async def _status(config: BridgeConfig) -> dict:
    bridge = await build_bridge(config)
    try:
        return await bridge.service.stats()
    finally:
        await bridge.close()


@cli.command("status")
@click.option("--config", "-c", "config_path", type=click.Path(), default=None, help="Path to config.toml")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def status_cmd(config_path: Optional[str], as_json: bool):
    """Show claim ledger statistics."""
    config = _load(config_path)
    try:
        stats = asyncio.run(_status(config))
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps(stats, indent=2))
        return

    _banner("zkbridge Ledger Status")
    click.echo(f"Deposits claimed:     {stats['deposits']} ({stats['deposited']} base units)")
    click.echo(f"Withdrawals seen:     {stats['withdrawals']}")
    click.echo(f"Withdrawals paid:     {stats['paid']} ({stats['paid_out']} base units)")
    click.echo(f"Withdrawals unpaid:   {stats['unpaid']}")
    for chain, height in stats["cursors"].items():
        click.echo(f"Cursor {chain}: {height if height is not None else '-'}")
    click.echo()


# ── user helpers ────────────────────────────────────────────────────

@cli.command("deposit-hash")
@click.argument("identity")
@click.argument("secret")
def deposit_hash_cmd(identity: str, secret: str):
    """Print the commitment to put in a deposit memo."""
    try:
        click.echo(CommitmentCodec().deposit_commitment(identity, secret))
    except MalformedInputError as e:
        raise click.ClickException(str(e))


async def _claim(config: BridgeConfig, identity: str, secret: str) -> dict:
    bridge = await build_bridge(config)
    try:
        result = await bridge.service.claim_deposit(identity, secret)
        return result.to_dict()
    finally:
        await bridge.close()


@cli.command("claim")
@click.argument("identity")
@click.argument("secret")
@click.option("--config", "-c", "config_path", type=click.Path(), default=None, help="Path to config.toml")
def claim_cmd(identity: str, secret: str, config_path: Optional[str]):
    """Claim a deposit as a full note for IDENTITY."""
    config = _load(config_path)
    try:
        result = asyncio.run(_claim(config, identity, secret))
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result, indent=2))
    if not result["success"]:
        raise SystemExit(1)


@cli.command("withdraw")
@click.argument("destination")
@click.argument("amount", type=int)
@click.option("--nonce", default=None, help="Withdrawal nonce (random if omitted)")
@click.option("--chain-id", type=int, default=None, help="Destination chain id (default: bridge.target_chain_id)")
@click.option("--config", "-c", "config_path", type=click.Path(), default=None, help="Path to config.toml")
def withdraw_cmd(
    destination: str, amount: int, nonce: Optional[str], chain_id: Optional[int], config_path: Optional[str],
):
    """Print the note tag and inputs for burning AMOUNT base units to DESTINATION."""
    config = _load(config_path)
    target = chain_id if chain_id is not None else config.bridge.target_chain_id
    try:
        request = prepare_withdrawal(CommitmentCodec(), destination, amount, target, nonce)
    except (MalformedInputError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(request.to_dict(), indent=2))


def main():
    cli()


if __name__ == "__main__":
    main()
