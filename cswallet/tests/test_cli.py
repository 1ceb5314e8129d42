"""
Tests for the cs-wallet CLI commands.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

from _cswallet_test_helpers import (
    TEST_WALLET_NAME,
    address_for,
    checksum_echo,
    make_bond_entry,
    make_mock_rpc,
    make_rpc,
    make_store,
)
from cscore.settings import get_settings, reset_settings
from typer.testing import CliRunner

from cswallet.cli import app
from cswallet.errors import NetworkMismatchError
from cswallet.wallet.descriptors import raw_descriptor
from cswallet.wallet.store import load_store, save_store

runner = CliRunner()


def _node_rpc(imported: set[str], height: int = 100):
    def _getaddressinfo(params, use_wallet):
        return {"iswatchonly": params[0].removeprefix("addr:") in imported, "ismine": False}

    def _importdescriptors(params, use_wallet):
        imported.update(r["desc"] for r in params[0])
        return [{"success": True} for _ in params[0]]

    rpc = make_rpc()
    rpc._rpc_call = make_mock_rpc(
        {
            "listwallets": [TEST_WALLET_NAME],
            "getdescriptorinfo": checksum_echo,
            "deriveaddresses": address_for,
            "getaddressinfo": _getaddressinfo,
            "importdescriptors": _importdescriptors,
            "getblockcount": height,
            "rescanblockchain": {"start_height": 0, "stop_height": height},
            "listunspent": [],
        }
    )
    return rpc


def _write_store(path, **kwargs: Any):
    store = make_store(**kwargs)
    save_store(store, path)
    return store


class TestSyncCommand:
    def test_sync_imports_and_saves(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        _write_store(wallet_file, fidelity_bond={0: make_bond_entry(0)})
        imported: set[str] = set()

        with patch(
            "cswallet.cli.sync_cmd.connect", AsyncMock(return_value=_node_rpc(imported))
        ) as connect:
            result = runner.invoke(app, ["sync", "--wallet-file", str(wallet_file)])

        assert result.exit_code == 0, result.output
        assert "Imported descriptors: 1" in result.output
        assert "Last synced height: 100" in result.output

        config = connect.call_args.args[0]
        assert config.wallet_name == TEST_WALLET_NAME
        assert config.network.value == "regtest"

        saved = load_store(wallet_file)
        assert saved.last_synced_height == 100
        assert imported == {f"{raw_descriptor(saved.fidelity_bond[0].script_pubkey)}#cksum"}

    def test_sync_up_to_date(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        _write_store(wallet_file, last_synced_height=42)

        with patch("cswallet.cli.sync_cmd.connect", AsyncMock(return_value=_node_rpc(set()))):
            result = runner.invoke(app, ["sync", "-w", str(wallet_file)])

        assert result.exit_code == 0, result.output
        assert "Wallet already up to date" in result.output
        assert "Last synced height: 42" in result.output

    def test_sync_cli_options_override_settings(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        _write_store(wallet_file)

        with patch(
            "cswallet.cli.sync_cmd.connect", AsyncMock(return_value=_node_rpc(set()))
        ) as connect:
            result = runner.invoke(
                app,
                [
                    "sync",
                    "-w",
                    str(wallet_file),
                    "--network",
                    "signet",
                    "--rpc-url",
                    "http://node:38332",
                    "--rpc-user",
                    "alice",
                    "--rpc-password",
                    "secret",
                ],
            )

        assert result.exit_code == 0, result.output
        config = connect.call_args.args[0]
        assert config.url == "http://node:38332"
        assert config.rpc_user == "alice"
        assert config.rpc_password.get_secret_value() == "secret"
        assert config.network.value == "signet"

    def test_sync_missing_wallet_file(self, isolated_settings):
        result = runner.invoke(app, ["sync", "-w", str(isolated_settings / "nope.json")])
        assert result.exit_code == 1

    def test_sync_network_mismatch_exits(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        _write_store(wallet_file)

        with patch(
            "cswallet.cli.sync_cmd.connect",
            AsyncMock(side_effect=NetworkMismatchError("regtest", "mainnet")),
        ):
            result = runner.invoke(app, ["sync", "-w", str(wallet_file)])

        assert result.exit_code == 1
        assert load_store(wallet_file).last_synced_height is None


class TestDescriptorsCommand:
    def test_lists_pending_descriptors(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        store = _write_store(wallet_file, fidelity_bond={0: make_bond_entry(0)})
        imported: set[str] = set()

        with patch("cswallet.cli.sync_cmd.connect", AsyncMock(return_value=_node_rpc(imported))):
            result = runner.invoke(app, ["descriptors", "-w", str(wallet_file)])

        assert result.exit_code == 0, result.output
        assert raw_descriptor(store.fidelity_bond[0].script_pubkey) in result.output
        assert imported == set()

    def test_nothing_pending(self, isolated_settings):
        wallet_file = isolated_settings / "w.json"
        _write_store(wallet_file)

        with patch("cswallet.cli.sync_cmd.connect", AsyncMock(return_value=_node_rpc(set()))):
            result = runner.invoke(app, ["descriptors", "-w", str(wallet_file)])

        assert result.exit_code == 0, result.output
        assert "No descriptors to import" in result.output


class TestConfigInitCommand:
    def test_creates_template(self, isolated_settings):
        result = runner.invoke(app, ["config-init"])

        assert result.exit_code == 0, result.output
        config_path = isolated_settings / "config.toml"
        assert config_path.exists()
        assert "[wallet]" in config_path.read_text()

    def test_written_config_is_used_by_settings(self, isolated_settings):
        result = runner.invoke(app, ["config-init"])
        assert result.exit_code == 0, result.output

        config_path = isolated_settings / "config.toml"
        config_path.write_text(
            config_path.read_text().replace(
                "# rescan_retry_interval = 3.0", "rescan_retry_interval = 9.0"
            )
        )
        reset_settings()

        assert get_settings().wallet.rescan_retry_interval == 9.0
