"""
Helpers shared by Coinswap NG command line tools.

Commands declare their own typer options; this module only turns those
option values plus the loaded settings into concrete values, so cscore does
not depend on typer. An option left as ``None`` falls back to settings
(environment or config file), and from there to the built-in default.

    settings = setup_cli(log_level)
    backend = resolve_backend_settings(settings, network=network, rpc_url=rpc_url)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from cscore.models import NetworkType
from cscore.settings import CoinswapSettings, get_settings, reset_settings

T = TypeVar("T")

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


@dataclass
class ResolvedBackendSettings:
    """Node connection values after applying CLI options over settings."""

    network: str
    rpc_url: str
    rpc_user: str
    rpc_password: str


def setup_logging(level: str = "INFO") -> None:
    """Replace all loguru sinks with a single colourised stderr sink at *level*."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper(), colorize=True)


def setup_cli(log_level: str | None = None) -> CoinswapSettings:
    """
    Load fresh settings and configure logging for a CLI invocation.

    Args:
        log_level: ``--log-level`` value; None uses ``settings.logging.level``

    Returns:
        The loaded CoinswapSettings
    """
    reset_settings()
    settings = get_settings()
    setup_logging(log_level or settings.logging.level)
    return settings


def _first(option: T | None, configured: T) -> T:
    return configured if option is None else option


def resolve_backend_settings(
    settings: CoinswapSettings,
    *,
    network: NetworkType | str | None = None,
    rpc_url: str | None = None,
    rpc_user: str | None = None,
    rpc_password: str | None = None,
) -> ResolvedBackendSettings:
    """Combine CLI options with settings; any option left as None uses the settings value."""
    bitcoin = settings.bitcoin
    chosen_network = _first(network, bitcoin.network)
    if isinstance(chosen_network, NetworkType):
        chosen_network = chosen_network.value

    return ResolvedBackendSettings(
        network=chosen_network,
        rpc_url=_first(rpc_url, bitcoin.rpc_url),
        rpc_user=_first(rpc_user, bitcoin.rpc_user),
        rpc_password=_first(rpc_password, bitcoin.rpc_password.get_secret_value()),
    )


def log_resolved_settings(backend: ResolvedBackendSettings, wallet_name: str | None = None) -> None:
    """Log where the command is about to connect. The password is never logged."""
    logger.info(f"Network: {backend.network}, RPC: {backend.rpc_url}")
    if backend.rpc_user:
        logger.debug(f"RPC user: {backend.rpc_user}")
    if wallet_name:
        logger.info(f"Wallet: {wallet_name}")
