"""CLI for eventgate: run the daemon and operate on its state."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path

import click

from eventgate.config import ConfigError, EventGateConfig, load_config
from eventgate.credentials import CredentialError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(".")

_config_option = click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_DIR,
    show_default=True,
    help="Directory containing eventgate.toml",
)


def _load_or_exit(config_dir: Path) -> EventGateConfig:
    try:
        return load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """eventgate: human-approved calendar writes for an untrusted agent."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")


@cli.command()
@_config_option
def run(config_dir: Path) -> None:
    """Start the eventgate daemon."""
    _load_or_exit(config_dir)
    click.echo(f"Starting eventgate from {config_dir}")
    asyncio.run(_run_daemon(config_dir))


async def _run_daemon(config_dir: Path) -> None:
    from eventgate.daemon import EventGateDaemon

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    daemon = EventGateDaemon(config_dir)
    try:
        await daemon.start()
        assert daemon.config is not None
        click.echo(f"eventgate {daemon.config.name} listening on port {daemon.config.api.port}")
        await shutdown_event.wait()
    finally:
        await daemon.shutdown()


@cli.command()
@_config_option
def migrate(config_dir: Path) -> None:
    """Apply database migrations."""
    config = _load_or_exit(config_dir)
    asyncio.run(_migrate(config))
    click.echo("Migrations applied.")


async def _migrate(config: EventGateConfig) -> None:
    from eventgate.daemon import open_database

    db = await open_database(config)
    await db.close()


@cli.command()
@_config_option
def sweep(config_dir: Path) -> None:
    """Expire stale pending proposals once and print their ids."""
    config = _load_or_exit(config_dir)
    expired = asyncio.run(_sweep(config))
    if not expired:
        click.echo("No stale proposals.")
        return
    for proposal_id in expired:
        click.echo(str(proposal_id))
    click.echo(f"Expired {len(expired)} proposal(s).")


async def _sweep(config: EventGateConfig) -> list:
    from eventgate.daemon import open_database
    from eventgate.proposals.store import ProposalStore
    from eventgate.proposals.sweeper import ExpirySweeper

    db = await open_database(config)
    try:
        sweeper = ExpirySweeper(
            ProposalStore(db),
            expiry_window=timedelta(hours=config.proposals.expiry_hours),
        )
        return await sweeper.sweep_once()
    finally:
        await db.close()


@cli.command("token-status")
@_config_option
@click.option("--refresh", is_flag=True, help="Force a token refresh before reporting.")
def token_status(config_dir: Path, refresh: bool) -> None:
    """Show the Google credential status without revealing secrets."""
    config = _load_or_exit(config_dir)
    try:
        status = asyncio.run(_token_status(config, refresh))
    except CredentialError as exc:
        click.echo(f"Credential error: {exc}", err=True)
        sys.exit(1)
    click.echo(json.dumps(status, indent=2))


async def _token_status(config: EventGateConfig, refresh: bool) -> dict:
    from eventgate.daemon import build_credential_manager

    manager = build_credential_manager(config)
    try:
        if refresh:
            await manager.get_access_token(force_refresh=True)
        status = await manager.status()
    finally:
        await manager.aclose()
    return status.to_dict()


def main() -> None:
    cli()
