import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

from loguru import logger

from cryptodatafeed.api_client import CryptoCompareClient
from cryptodatafeed.errors import ApiRequestError
from cryptodatafeed.models import Tick
from cryptodatafeed.streaming.base import TickSource
from cryptodatafeed.symbols import parse_channel
from cryptodatafeed.utils.time import get_current_ms


class PollingTickSource(TickSource):
    """Produces ticks by polling the REST price endpoint.

    Every `poll_interval_sec` seconds it requests the latest price of each
    watched channel and emits it stamped with the local receive time. A
    failed request for one channel is logged and skipped; the others are
    still polled.
    """

    def __init__(
        self,
        client: CryptoCompareClient,
        output_queue: "asyncio.Queue[Tick | None]",
        poll_interval_sec: float = 10.0,
        on_reconnect: Callable[[], None] | None = None,
    ) -> None:
        super().__init__(output_queue, on_reconnect)
        if poll_interval_sec <= 0:
            err_msg = "Poll interval must be a positive number."
            raise ValueError(err_msg)
        self.client = client
        self.poll_interval_sec = poll_interval_sec

    @property
    def source_name(self) -> str:
        return "poll"

    async def poll_once(self) -> list[dict[str, Any]]:
        """Requests the price of every watched channel once."""
        messages = []
        for channel in sorted(self._channels):
            parsed = parse_channel(channel)
            try:
                data = await self.client.get_price(
                    parsed.exchange, parsed.from_symbol, [parsed.to_symbol]
                )
            except ApiRequestError as e:
                logger.warning(f"[{self.source_name}] Price poll for {channel} failed: {e}")
                continue
            messages.append({"channel": channel, "data": data, "time": get_current_ms()})
        return messages

    async def _stream_messages(self) -> AsyncGenerator[dict[str, Any], None]:
        while True:
            for message in await self.poll_once():
                yield message
            await asyncio.sleep(self.poll_interval_sec)

    def _normalize_message(self, message: dict[str, Any]) -> Tick | None:
        parsed = parse_channel(message["channel"])
        data = message["data"]
        if not isinstance(data, dict) or data.get("Response") == "Error":
            logger.warning(
                f"[{self.source_name}] No price for {message['channel']}: "
                f"{data.get('Message') if isinstance(data, dict) else data}"
            )
            return None
        try:
            price = float(data[parsed.to_symbol])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(
                f"[{self.source_name}] Could not parse price message: {data}. Error: {e}"
            )
            return None
        return Tick(
            exchange=parsed.exchange,
            from_symbol=parsed.from_symbol,
            to_symbol=parsed.to_symbol,
            price=price,
            time=message["time"],
        )
