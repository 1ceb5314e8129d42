"""
Sync commands: sync, descriptors, config-init.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import httpx
import typer
from cscore.cli_common import (
    ResolvedBackendSettings,
    log_resolved_settings,
    resolve_backend_settings,
    setup_cli,
    setup_logging,
)
from cscore.models import NetworkType
from cscore.settings import CoinswapSettings, ensure_config_file
from cscore.version import get_version
from loguru import logger
from pydantic import SecretStr, ValidationError

from cswallet.backends.rpc import RPCConfig, connect
from cswallet.cli import app
from cswallet.errors import WalletError
from cswallet.wallet.store import WalletStore, load_store, save_store
from cswallet.wallet.sync import SyncResult, WalletSynchronizer

WalletFileOption = Annotated[
    Path, typer.Option("--wallet-file", "-w", help="Path to the wallet store (JSON)")
]
NetworkOption = Annotated[
    str | None, typer.Option("--network", "-n", help="Expected Bitcoin network")
]
RpcUrlOption = Annotated[str | None, typer.Option("--rpc-url", envvar="BITCOIN_RPC_URL")]
RpcUserOption = Annotated[str | None, typer.Option("--rpc-user", envvar="BITCOIN_RPC_USER")]
RpcPasswordOption = Annotated[
    str | None, typer.Option("--rpc-password", envvar="BITCOIN_RPC_PASSWORD")
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")]


def _load_store_or_exit(wallet_file: Path) -> WalletStore:
    try:
        return load_store(wallet_file)
    except FileNotFoundError:
        logger.error(f"Wallet file not found: {wallet_file}")
        raise typer.Exit(1)
    except (ValueError, ValidationError) as e:
        logger.error(f"Invalid wallet file {wallet_file}: {e}")
        raise typer.Exit(1)


def _rpc_config(
    backend: ResolvedBackendSettings, settings: CoinswapSettings, store: WalletStore
) -> RPCConfig:
    try:
        network = NetworkType(backend.network)
    except ValueError:
        valid = ", ".join(n.value for n in NetworkType)
        logger.error(f"Unknown network '{backend.network}' (expected one of: {valid})")
        raise typer.Exit(1)

    return RPCConfig(
        url=backend.rpc_url,
        rpc_user=backend.rpc_user,
        rpc_password=SecretStr(backend.rpc_password),
        network=network,
        wallet_name=store.file_name,
        timeout=settings.wallet.rpc_timeout,
        long_timeout=settings.wallet.rescan_timeout,
    )


async def _run_sync(
    store: WalletStore, config: RPCConfig, settings: CoinswapSettings
) -> SyncResult:
    rpc = await connect(config)
    try:
        synchronizer = WalletSynchronizer(
            rpc,
            store,
            retry_interval=settings.wallet.rescan_retry_interval,
            max_rescan_retries=settings.wallet.max_rescan_retries,
        )
        return await synchronizer.sync()
    finally:
        await rpc.close()


async def _pending_descriptors(store: WalletStore, config: RPCConfig) -> list[str]:
    rpc = await connect(config)
    try:
        synchronizer = WalletSynchronizer(rpc, store)
        await synchronizer.ensure_wallet()
        plan = await synchronizer.build_import_plan()
        return plan.to_import
    finally:
        await rpc.close()


@app.command()
def sync(
    wallet_file: WalletFileOption,
    network: NetworkOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sync a watch-only wallet with Bitcoin Core and save the updated store.

    Creates or loads the wallet on the node, imports any missing descriptors,
    rescans the blocks not covered yet and advances the external index.

    Examples:
        cs-wallet sync -w ~/.coinswap-ng/wallets/maker.json
        cs-wallet sync -w maker.json --network signet --rpc-url http://127.0.0.1:38332
    """
    settings = setup_cli(log_level)
    logger.info(f"Coinswap NG wallet sync v{get_version()}")
    store = _load_store_or_exit(wallet_file)

    backend = resolve_backend_settings(
        settings,
        network=network or store.network,
        rpc_url=rpc_url,
        rpc_user=rpc_user,
        rpc_password=rpc_password,
    )
    log_resolved_settings(backend, wallet_name=store.file_name)

    try:
        result = asyncio.run(_run_sync(store, _rpc_config(backend, settings, store), settings))
    except (WalletError, httpx.HTTPError) as e:
        logger.error(f"Sync failed: {e}")
        raise typer.Exit(1)

    save_store(store, wallet_file)

    if result.up_to_date:
        typer.echo("Wallet already up to date")
    else:
        typer.echo(f"Imported descriptors: {result.imported}")
    typer.echo(f"Last synced height: {store.last_synced_height}")
    typer.echo(f"Next external index: {result.external_index}")


@app.command()
def descriptors(
    wallet_file: WalletFileOption,
    network: NetworkOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """List descriptors the next sync would import, without importing them.

    The wallet is loaded (or created) on the node so import status can be checked.
    """
    settings = setup_cli(log_level)
    store = _load_store_or_exit(wallet_file)

    backend = resolve_backend_settings(
        settings,
        network=network or store.network,
        rpc_url=rpc_url,
        rpc_user=rpc_user,
        rpc_password=rpc_password,
    )

    try:
        pending = asyncio.run(_pending_descriptors(store, _rpc_config(backend, settings, store)))
    except (WalletError, httpx.HTTPError) as e:
        logger.error(f"Could not compute descriptors: {e}")
        raise typer.Exit(1)

    if not pending:
        typer.echo("No descriptors to import")
        return
    for desc in pending:
        typer.echo(desc)


@app.command("config-init")
def config_init() -> None:
    """Write a commented config.toml template if none exists.

    The file goes where settings are read from: $COINSWAP_CONFIG_FILE, else
    config.toml in $COINSWAP_DATA_DIR (default ~/.coinswap-ng).
    """
    setup_logging()
    config_path = ensure_config_file()
    typer.echo(f"Config file: {config_path}")
