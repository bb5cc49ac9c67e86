from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
import sys
import tomllib
from typing import Any, ClassVar, TypeVar

import keyring
from keyring.errors import KeyringError
from loguru import logger

from cryptodatafeed.models import DatafeedConfiguration, Exchange, SymbolType

# --- Constants ---
APP_NAME = "cryptodatafeed"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

# --- Keyring Service Name ---
KEYRING_SERVICE_NAME = f"{APP_NAME.lower()}-api-keys"
KEYRING_API_KEY_NAME = "cryptocompare_key"

# --- Dataclass Models for Settings ---
T = TypeVar("T")


def _default_exchanges() -> list[dict[str, str]]:
    return [
        {"value": "Bitfinex", "name": "Bitfinex", "desc": "Bitfinex"},
        {"value": "Kraken", "name": "Kraken", "desc": "Kraken bitcoin exchange"},
    ]


def _default_symbols_types() -> list[dict[str, str]]:
    return [{"name": "crypto", "value": "crypto"}]


@dataclass
class GeneralSettings:
    """General application settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")


@dataclass
class APISettings:
    """Settings for the CryptoCompare REST API."""

    # Note: The API key is stored in the system keyring, not here.
    base_url: str = "https://min-api.cryptocompare.com"
    timeout_sec: float = 20.0
    history_limit: int = 2000
    rate_limit: int = 20
    rate_period_sec: float = 1.0


@dataclass
class DatafeedSettings:
    """What the datafeed advertises to the widget in `on_ready`."""

    supported_resolutions: list[str] = field(
        default_factory=lambda: ["1D", "1W", "1M"]
    )
    exchanges: list[dict[str, str]] = field(default_factory=_default_exchanges)
    symbols_types: list[dict[str, str]] = field(
        default_factory=_default_symbols_types
    )

    def to_configuration(self) -> DatafeedConfiguration:
        return DatafeedConfiguration(
            supported_resolutions=list(self.supported_resolutions),
            exchanges=[
                Exchange(value=e["value"], name=e["name"], desc=e.get("desc", e["name"]))
                for e in self.exchanges
            ],
            symbols_types=[
                SymbolType(name=t["name"], value=t["value"]) for t in self.symbols_types
            ],
        )


@dataclass
class StreamingSettings:
    """Settings for real-time bar updates."""

    mode: str = "poll"  # "poll" or "websocket"
    poll_interval_sec: float = 10.0
    websocket_url: str = "wss://streamer.cryptocompare.com/v2"


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    api: APISettings = field(default_factory=APISettings)
    datafeed: DatafeedSettings = field(default_factory=DatafeedSettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)

    _instance: ClassVar["Settings | None"] = None

    @classmethod
    def get_instance(cls) -> "Settings":
        """Returns the singleton instance, loading it on first use."""
        if cls._instance is None:
            cls._instance = load_config()
        return cls._instance


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary."""
    for f in field_names(dc_instance):
        if f in data:
            field_value = getattr(dc_instance, f)
            if is_dataclass(field_value):
                _update_dataclass(field_value, data[f])
            else:
                setattr(dc_instance, f, data[f])
    return dc_instance


def field_names(dc_instance: Any) -> list[str]:
    """Helper to get field names from a dataclass instance."""
    return [f.name for f in dc_instance.__dataclass_fields__.values()]


def load_config(path: Path = CONFIG_FILE) -> Settings:
    """Loads settings from a TOML file, merging them with defaults.

    If the config file does not exist, it creates one holding only a comment
    header and returns the defaults.

    Args:
        path: The path to the configuration file.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.info(f"Loading configuration from '{path}'...")

    if not path.exists():
        logger.warning(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                f.write("# CryptoDatafeed Configuration File\n")
                f.write("# Sections: [general], [api], [datafeed], [streaming]\n")
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.success("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()
    except OSError as e:
        logger.error(f"Could not read config file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")

    return settings_obj


# --- Keyring Management ---


def get_api_key() -> str | None:
    """Retrieves the CryptoCompare API key from the system keyring.

    Returns:
        The key, or None if none is stored or the keyring is unavailable.
    """
    try:
        api_key = keyring.get_password(KEYRING_SERVICE_NAME, KEYRING_API_KEY_NAME)
        if api_key:
            logger.debug("Retrieved CryptoCompare API key from keyring.")
        return api_key
    except KeyringError as e:
        logger.error(f"Could not retrieve API key from keyring: {e}")
        return None


def set_api_key(api_key: str) -> None:
    """Stores the CryptoCompare API key in the system keyring."""
    try:
        keyring.set_password(KEYRING_SERVICE_NAME, KEYRING_API_KEY_NAME, api_key)
        logger.info("Successfully stored CryptoCompare API key in keyring.")
    except KeyringError as e:
        logger.error(f"Could not store API key in keyring: {e}")
