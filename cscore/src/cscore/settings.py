"""
Configuration for Coinswap NG, built on pydantic-settings.

Values come from four layers; a higher layer wins field by field:

1. keyword overrides (what the CLI resolved from its options)
2. environment variables, nested with ``__`` (``WALLET__MAX_RESCAN_RETRIES=5``)
3. ``config.toml`` (``$COINSWAP_CONFIG_FILE``, else ``<data dir>/config.toml``)
4. field defaults

TOML tables map to the nested models: ``[bitcoin]`` -> ``BitcoinSettings``,
``[wallet]`` -> ``WalletSettings``, ``[logging]`` -> ``LoggingSettings``.

    from cscore.settings import get_settings

    settings = get_settings()
    settings.wallet.rescan_retry_interval  # 3.0
"""

from __future__ import annotations

import os
import sys
import tomllib
from collections.abc import Iterator
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cscore.models import NetworkType
from cscore.paths import get_default_data_dir

CONFIG_FILE_NAME = "config.toml"


class BitcoinSettings(BaseModel):
    """Connection to the Bitcoin Core node."""

    rpc_url: str = Field(
        default="http://127.0.0.1:18443",
        description="Node RPC endpoint, without any /wallet/<name> suffix",
    )
    rpc_user: str = Field(default="regtestrpcuser", description="RPC basic-auth user")
    rpc_password: SecretStr = Field(
        default=SecretStr("regtestrpcpass"),
        description="RPC basic-auth password",
    )
    network: NetworkType = Field(
        default=NetworkType.REGTEST,
        description="Chain the node must be on (mainnet, testnet, signet, regtest)",
    )


class WalletSettings(BaseModel):
    """Watch-only wallet sync behaviour."""

    rescan_retry_interval: float = Field(
        default=3.0,
        gt=0.0,
        description="Seconds between rescan attempts while the node is busy scanning",
    )
    max_rescan_retries: int | None = Field(
        default=None,
        ge=0,
        description="Give up after this many busy retries (unset: keep retrying)",
    )
    rpc_timeout: float = Field(default=30.0, gt=0.0, description="Regular RPC timeout (s)")
    rescan_timeout: float = Field(
        default=7200.0,
        gt=0.0,
        description="Timeout for importdescriptors and rescanblockchain (s)",
    )


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="TRACE, DEBUG, INFO, WARNING or ERROR")


def get_config_path() -> Path:
    """Location of config.toml; COINSWAP_CONFIG_FILE takes precedence over the data dir."""
    explicit = os.environ.get("COINSWAP_CONFIG_FILE")
    if explicit:
        return Path(explicit)
    return get_default_data_dir() / CONFIG_FILE_NAME


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Cannot parse {path}: {e}")
        logger.error("Check that table headers such as [wallet] are not commented out")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        sys.exit(1)

    logger.info(f"Using config file {path}")
    return data


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """pydantic-settings source backed by config.toml."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._data = _read_toml(get_config_path())

        unknown = set(self._data) - set(settings_cls.model_fields)
        for key in sorted(unknown):
            logger.warning(f"Ignoring unknown config key '{key}'")

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._data.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return {k: v for k, v in self._data.items() if k in self.settings_cls.model_fields}


class CoinswapSettings(BaseSettings):
    """Top-level settings object; see the module docstring for source priority."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    bitcoin: BitcoinSettings = Field(default_factory=BitcoinSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources win; dotenv and secret files are not used
        return (init_settings, env_settings, TomlConfigSettingsSource(settings_cls))


def _toml_literal(value: Any) -> str | None:
    """TOML text for a field default, or None when the field has no default value."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, SecretStr):
        return '""'
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def _template_section(table: str, title: str, model_cls: type[BaseModel]) -> Iterator[str]:
    yield f"# --- {title} " + "-" * max(0, 60 - len(title))
    yield f"[{table}]"
    yield ""
    for name, info in model_cls.model_fields.items():
        if info.description:
            yield f"# {info.description}"
        literal = _toml_literal(info.default)
        yield f"# {name} = {literal}" if literal is not None else f"# {name} = "
        yield ""


def generate_config_template() -> str:
    """
    Render a config.toml in which every setting is present but commented out.

    The password default is never written to the file.
    """
    header = [
        "# Coinswap NG Configuration",
        "#",
        "# Uncomment a line to override its built-in default.",
        "#",
        "# Priority (highest to lowest):",
        "#   CLI options > environment variables > this file > defaults",
        "#",
        "# Environment variables nest with a double underscore, e.g.",
        "#   BITCOIN__RPC_URL=http://127.0.0.1:38332",
        "#   WALLET__MAX_RESCAN_RETRIES=10",
        "",
    ]
    lines = list(header)
    lines.extend(_template_section("bitcoin", "Bitcoin Core RPC", BitcoinSettings))
    lines.extend(_template_section("wallet", "Wallet sync", WalletSettings))
    lines.extend(_template_section("logging", "Logging", LoggingSettings))
    return "\n".join(lines)


def ensure_config_file(config_path: Path | None = None) -> Path:
    """
    Write the config template unless the file already exists.

    Defaults to get_config_path(), the same file the settings loader reads.
    """
    if config_path is None:
        config_path = get_config_path()

    if config_path.exists():
        logger.debug(f"Keeping existing config file {config_path}")
        return config_path

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(generate_config_template())
    logger.info(f"Wrote config template to {config_path}")
    return config_path


_settings: CoinswapSettings | None = None


def get_settings(**overrides: Any) -> CoinswapSettings:
    """
    Return the process-wide settings, loading them on first use.

    Passing overrides always rebuilds the instance with those values on top.
    """
    global _settings
    if overrides or _settings is None:
        _settings = CoinswapSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() reloads every source."""
    global _settings
    _settings = None


__all__ = [
    "BitcoinSettings",
    "CoinswapSettings",
    "LoggingSettings",
    "WalletSettings",
    "ensure_config_file",
    "generate_config_template",
    "get_config_path",
    "get_settings",
    "reset_settings",
]
