import asyncio
import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import websockets
from loguru import logger

from cryptodatafeed.models import Tick
from cryptodatafeed.streaming.base import TickSource
from cryptodatafeed.utils.time import seconds_to_ms

# Message TYPE values sent by the CryptoCompare streamer.
TYPE_TRADE = "0"
TYPE_WELCOME = "20"
TYPE_SUBSCRIBE_COMPLETE = "16"
TYPE_UNSUBSCRIBE_COMPLETE = "17"
TYPE_HEARTBEAT = "999"
TYPE_ERROR = "500"
TYPE_UNAUTHORIZED = "401"

STATUS_TYPES = frozenset({TYPE_WELCOME, TYPE_SUBSCRIBE_COMPLETE, TYPE_UNSUBSCRIBE_COMPLETE})


class WebSocketTickSource(TickSource):
    """Produces ticks from the CryptoCompare streamer's trade channels."""

    def __init__(
        self,
        output_queue: "asyncio.Queue[Tick | None]",
        url: str = "wss://streamer.cryptocompare.com/v2",
        api_key: str | None = None,
        on_reconnect: Callable[[], None] | None = None,
    ) -> None:
        super().__init__(output_queue, on_reconnect)
        self._url = url
        self._api_key = api_key
        self._websocket: Any = None

    @property
    def source_name(self) -> str:
        return "websocket"

    def _connect_url(self) -> str:
        if not self._api_key:
            return self._url
        sep = "&" if "?" in self._url else "?"
        return f"{self._url}{sep}api_key={self._api_key}"

    async def _send_action(self, action: str, channels: list[str]) -> None:
        if self._websocket is None or not channels:
            return
        await self._websocket.send(json.dumps({"action": action, "subs": channels}))
        logger.debug(f"[{self.source_name}] Sent {action} for {channels}")

    async def add_channel(self, channel: str) -> None:
        is_new = channel not in self._channels
        await super().add_channel(channel)
        if is_new:
            await self._send_action("SubAdd", [channel])

    async def remove_channel(self, channel: str) -> None:
        was_watched = channel in self._channels
        await super().remove_channel(channel)
        if was_watched:
            await self._send_action("SubRemove", [channel])

    async def _stream_messages(self) -> AsyncGenerator[dict[str, Any], None]:
        """Connects, subscribes to every watched channel and yields trades."""
        async with websockets.connect(self._connect_url()) as websocket:
            self._websocket = websocket
            try:
                await self._send_action("SubAdd", sorted(self._channels))
                while True:
                    message_raw = await websocket.recv()
                    message = json.loads(message_raw)
                    msg_type = str(message.get("TYPE"))

                    if msg_type == TYPE_TRADE:
                        yield message
                    elif msg_type == TYPE_HEARTBEAT:
                        pass
                    elif msg_type in STATUS_TYPES:
                        logger.debug(f"[{self.source_name}] Status: {message}")
                    elif msg_type in (TYPE_ERROR, TYPE_UNAUTHORIZED):
                        logger.error(
                            f"[{self.source_name}] Received error: "
                            f"{message.get('MESSAGE')} {message.get('INFO', '')}"
                        )
                    else:
                        logger.debug(f"[{self.source_name}] Other message: {message}")
            finally:
                self._websocket = None

    def _normalize_message(self, message: dict[str, Any]) -> Tick | None:
        try:
            return Tick(
                exchange=message["M"],
                from_symbol=message["FSYM"],
                to_symbol=message["TSYM"],
                price=float(message["P"]),
                time=seconds_to_ms(int(message["TS"])),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(
                f"[{self.source_name}] Could not parse trade message: {message}. "
                f"Error: {e}"
            )
            return None
