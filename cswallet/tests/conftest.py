"""
Pytest configuration and fixtures for cswallet tests.
"""

import pytest

from cscore.settings import reset_settings


@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays instead of waiting."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Point data dir and config file at a temp directory and reset cached settings."""
    monkeypatch.setenv("COINSWAP_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("COINSWAP_CONFIG_FILE", raising=False)
    for var in (
        "BITCOIN__RPC_URL",
        "BITCOIN__NETWORK",
        "WALLET__RESCAN_RETRY_INTERVAL",
        "WALLET__MAX_RESCAN_RETRIES",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield tmp_path
    reset_settings()
