import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from pytest_mock import MockerFixture

from cryptodatafeed.errors import ApiRequestError
from cryptodatafeed.models import Tick
from cryptodatafeed.streaming import PollingTickSource, TickSource, WebSocketTickSource
from cryptodatafeed.streaming import base as streaming_base

CHANNEL = "0~Bitfinex~BTC~USD"


# --- PollingTickSource ---


def test_polling_rejects_non_positive_interval(mocker: MockerFixture) -> None:
    with pytest.raises(ValueError, match="Poll interval must be a positive number."):
        PollingTickSource(mocker.Mock(), asyncio.Queue(), poll_interval_sec=0)


@pytest.mark.asyncio
async def test_poll_once_requests_each_channel(mocker: MockerFixture) -> None:
    client = mocker.Mock()
    client.get_price = mocker.AsyncMock(return_value={"USD": 43125.5})
    source = PollingTickSource(client, asyncio.Queue())
    await source.add_channel(CHANNEL)

    messages = await source.poll_once()

    client.get_price.assert_awaited_once_with("Bitfinex", "BTC", ["USD"])
    assert len(messages) == 1
    tick = source._normalize_message(messages[0])
    assert tick == Tick("Bitfinex", "BTC", "USD", 43125.5, messages[0]["time"])


@pytest.mark.asyncio
async def test_poll_once_skips_failed_channels(mocker: MockerFixture) -> None:
    client = mocker.Mock()
    client.get_price = mocker.AsyncMock(
        side_effect=[ApiRequestError("data/price", "HTTP 500", 500), {"EUR": 1.5}]
    )
    source = PollingTickSource(client, asyncio.Queue())
    await source.add_channel("0~Bitfinex~BTC~USD")
    await source.add_channel("0~Kraken~XRP~EUR")

    messages = await source.poll_once()

    assert [m["channel"] for m in messages] == ["0~Kraken~XRP~EUR"]


@pytest.mark.parametrize(
    "data",
    [
        {"Response": "Error", "Message": "There is no data for the symbol BTC ."},
        {"EUR": 1.0},
        {"USD": "not-a-number"},
    ],
)
def test_polling_normalize_rejects_unusable_bodies(
    mocker: MockerFixture, data: dict[str, Any]
) -> None:
    source = PollingTickSource(mocker.Mock(), asyncio.Queue())
    assert source._normalize_message({"channel": CHANNEL, "data": data, "time": 1}) is None


@pytest.mark.asyncio
async def test_polling_run_loop_emits_ticks(mocker: MockerFixture) -> None:
    client = mocker.Mock()
    client.get_price = mocker.AsyncMock(return_value={"USD": 100.0})
    queue: asyncio.Queue[Tick | None] = asyncio.Queue()
    source = PollingTickSource(client, queue, poll_interval_sec=0.01)
    await source.add_channel(CHANNEL)

    source.start()
    try:
        tick = await asyncio.wait_for(queue.get(), timeout=1)
    finally:
        await source.stop()

    assert tick is not None
    assert tick.price == 100.0
    assert not source.is_running


# --- Reconnect loop ---


class FlakyTickSource(TickSource):
    """Fails on the first connection, then yields one message and waits."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.connections = 0

    @property
    def source_name(self) -> str:
        return "flaky"

    async def _stream_messages(self) -> AsyncGenerator[dict[str, Any], None]:
        self.connections += 1
        if self.connections == 1:
            err_msg = "connection reset"
            raise ConnectionResetError(err_msg)
        yield {"price": 1.0}
        await asyncio.Event().wait()

    def _normalize_message(self, message: dict[str, Any]) -> Tick | None:
        return Tick("Bitfinex", "BTC", "USD", message["price"], 0)


@pytest.mark.asyncio
async def test_reconnects_after_failure_and_fires_hook(mocker: MockerFixture) -> None:
    mocker.patch.object(streaming_base, "INITIAL_RECONNECT_DELAY_S", 0.01)
    on_reconnect = mocker.Mock()
    queue: asyncio.Queue[Tick | None] = asyncio.Queue()
    source = FlakyTickSource(queue, on_reconnect=on_reconnect)

    source.start()
    try:
        tick = await asyncio.wait_for(queue.get(), timeout=1)
    finally:
        await source.stop()

    assert tick is not None
    assert source.connections == 2
    on_reconnect.assert_called_once_with()


# --- WebSocketTickSource ---


def test_websocket_normalizes_trade_messages() -> None:
    source = WebSocketTickSource(asyncio.Queue())
    message = {
        "TYPE": "0",
        "M": "Bitfinex",
        "FSYM": "BTC",
        "TSYM": "USD",
        "F": "1",
        "ID": "123",
        "TS": 1_700_000_000,
        "Q": 0.5,
        "P": 36500.1,
    }
    assert source._normalize_message(message) == Tick(
        "Bitfinex", "BTC", "USD", 36500.1, 1_700_000_000_000
    )


def test_websocket_normalize_rejects_incomplete_trades() -> None:
    source = WebSocketTickSource(asyncio.Queue())
    assert source._normalize_message({"TYPE": "0", "M": "Bitfinex"}) is None


def test_websocket_url_carries_api_key() -> None:
    source = WebSocketTickSource(asyncio.Queue(), url="wss://example.test/v2", api_key="k")
    assert source._connect_url() == "wss://example.test/v2?api_key=k"
    assert WebSocketTickSource(asyncio.Queue(), url="wss://example.test/v2")._connect_url() == (
        "wss://example.test/v2"
    )


@pytest.mark.asyncio
async def test_websocket_channel_changes_are_sent_when_connected(
    mocker: MockerFixture,
) -> None:
    source = WebSocketTickSource(asyncio.Queue())
    await source.add_channel(CHANNEL)  # not connected: remembered only

    websocket = mocker.Mock()
    websocket.send = mocker.AsyncMock()
    source._websocket = websocket

    await source.add_channel(CHANNEL)  # already watched: nothing sent
    await source.add_channel("0~Kraken~BTC~USD")
    await source.remove_channel(CHANNEL)
    await source.remove_channel(CHANNEL)  # already removed: nothing sent

    sent = [json.loads(call.args[0]) for call in websocket.send.await_args_list]
    assert sent == [
        {"action": "SubAdd", "subs": ["0~Kraken~BTC~USD"]},
        {"action": "SubRemove", "subs": [CHANNEL]},
    ]
    assert source.channels == frozenset({"0~Kraken~BTC~USD"})
