from pathlib import Path

from keyring.errors import KeyringError
from pytest_mock import MockerFixture

from cryptodatafeed.config import (
    KEYRING_API_KEY_NAME,
    KEYRING_SERVICE_NAME,
    Settings,
    get_api_key,
    load_config,
    set_api_key,
)
from cryptodatafeed.models import Exchange


def test_defaults_match_the_widget_configuration() -> None:
    configuration = Settings().datafeed.to_configuration()
    assert configuration.supported_resolutions == ["1D", "1W", "1M"]
    assert configuration.exchanges == [
        Exchange("Bitfinex", "Bitfinex", "Bitfinex"),
        Exchange("Kraken", "Kraken", "Kraken bitcoin exchange"),
    ]
    assert configuration.to_dict()["symbols_types"] == [
        {"name": "crypto", "value": "crypto"}
    ]


def test_missing_file_is_created_and_defaults_are_used(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"
    settings = load_config(path)
    assert path.exists()
    assert path.read_text(encoding="utf-8").startswith("# CryptoDatafeed")
    assert settings == Settings()


def test_user_values_override_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        """
[general]
log_level_console = "DEBUG"

[api]
history_limit = 500

[streaming]
mode = "websocket"

[[datafeed.exchanges]]
value = "Coinbase"
name = "Coinbase"
desc = "Coinbase Exchange"
""",
        encoding="utf-8",
    )
    settings = load_config(path)

    assert settings.general.log_level_console == "DEBUG"
    assert settings.general.log_level_file == "DEBUG"
    assert settings.api.history_limit == 500
    assert settings.api.base_url == "https://min-api.cryptocompare.com"
    assert settings.streaming.mode == "websocket"
    assert settings.datafeed.supported_resolutions == ["1D", "1W", "1M"]
    assert [e.value for e in settings.datafeed.to_configuration().exchanges] == [
        "Coinbase"
    ]


def test_malformed_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[api\nhistory_limit = ", encoding="utf-8")
    assert load_config(path) == Settings()


def test_get_api_key_reads_keyring(mocker: MockerFixture) -> None:
    get_password = mocker.patch(
        "cryptodatafeed.config.keyring.get_password", return_value="secret-key"
    )
    assert get_api_key() == "secret-key"
    get_password.assert_called_once_with(KEYRING_SERVICE_NAME, KEYRING_API_KEY_NAME)


def test_get_api_key_survives_keyring_failure(mocker: MockerFixture) -> None:
    mocker.patch(
        "cryptodatafeed.config.keyring.get_password",
        side_effect=KeyringError("no backend"),
    )
    assert get_api_key() is None


def test_set_api_key_writes_keyring(mocker: MockerFixture) -> None:
    set_password = mocker.patch("cryptodatafeed.config.keyring.set_password")
    set_api_key("abc")
    set_password.assert_called_once_with(KEYRING_SERVICE_NAME, KEYRING_API_KEY_NAME, "abc")
