import asyncio
import types
from typing import Any, Self

from loguru import logger

from cryptodatafeed.api_client import DAILY_HISTORY_PATH, CryptoCompareClient
from cryptodatafeed.cache import LastBarsCache
from cryptodatafeed.config import Settings, get_api_key
from cryptodatafeed.errors import ApiRequestError, SymbolResolveError
from cryptodatafeed.models import (
    Bar,
    DatafeedConfiguration,
    HistoryResult,
    PeriodParams,
    Symbol,
    SymbolInfo,
)
from cryptodatafeed.streaming import PollingTickSource, Streamer, WebSocketTickSource
from cryptodatafeed.streaming.base import TickSource
from cryptodatafeed.streaming.streamer import RealtimeCallback, ResetCallback
from cryptodatafeed.symbols import parse_full_symbol
from cryptodatafeed.utils.time import seconds_to_ms


class Datafeed:
    """The charting widget's datafeed, backed by CryptoCompare.

    Implements the six operations of the widget contract as coroutines.
    Instead of success/error callbacks each operation returns its result or
    raises a `DatafeedError`; history requests that find nothing return a
    `HistoryResult` with `no_data` set.

    Use it as an async context manager (or call `start`/`stop`) so the
    real-time streamer runs while subscriptions exist.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: CryptoCompareClient | None = None,
        streamer: Streamer | None = None,
        cache: LastBarsCache | None = None,
    ) -> None:
        """Initializes the datafeed.

        Args:
            settings: Application settings. Defaults to the loaded singleton.
            client: The REST client. Built from `settings.api` if omitted,
                with the API key read from the keyring.
            streamer: The real-time streamer. Built from `settings.streaming`
                if omitted.
            cache: The last-bar cache. A fresh one is created if omitted.
                An explicit streamer must share this same cache.
        """
        self.settings = settings or Settings.get_instance()
        self.configuration: DatafeedConfiguration = (
            self.settings.datafeed.to_configuration()
        )
        self._owns_client = client is None
        self.client = client or CryptoCompareClient.from_settings(
            self.settings.api, api_key=get_api_key()
        )
        self.cache = cache if cache is not None else LastBarsCache()
        self.streamer = streamer or Streamer(self._build_tick_source(), self.cache)

    def _build_tick_source(self) -> TickSource:
        stream_settings = self.settings.streaming
        queue: asyncio.Queue[Any] = asyncio.Queue()
        if stream_settings.mode == "websocket":
            return WebSocketTickSource(
                queue, url=stream_settings.websocket_url, api_key=get_api_key()
            )
        if stream_settings.mode != "poll":
            logger.warning(
                f"Unknown streaming mode '{stream_settings.mode}', falling back to polling."
            )
        return PollingTickSource(
            self.client, queue, poll_interval_sec=stream_settings.poll_interval_sec
        )

    # --- Lifecycle ---

    def start(self) -> None:
        self.streamer.start()

    async def stop(self) -> None:
        await self.streamer.stop()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.stop()

    # --- Catalog ---

    async def get_all_symbols(self) -> list[Symbol]:
        """Fetches the pair catalog and lists the configured exchanges' symbols.

        Configured exchanges absent from the catalog are skipped.
        """
        data = await self.client.get_all_exchanges()
        catalog = data.get("Data") or {}
        all_symbols: list[Symbol] = []
        for exchange in self.configuration.exchanges:
            exchange_data = catalog.get(exchange.value)
            if exchange_data is None:
                logger.warning(f"Exchange '{exchange.value}' not found in the catalog.")
                continue
            pairs: dict[str, list[str]] = exchange_data.get("pairs", {})
            for from_symbol, to_symbols in pairs.items():
                all_symbols.extend(
                    Symbol.from_parts(exchange.value, from_symbol, to_symbol)
                    for to_symbol in to_symbols
                )
        return all_symbols

    # --- Widget contract ---

    async def on_ready(self) -> DatafeedConfiguration:
        """Returns the datafeed configuration.

        The widget requires this answer to arrive asynchronously, so control
        is yielded to the loop once before returning.
        """
        logger.info("[on_ready]: Method call")
        await asyncio.sleep(0)
        return self.configuration

    async def search_symbols(
        self, user_input: str, exchange: str = "", symbol_type: str = ""
    ) -> list[Symbol]:
        """Searches the catalog.

        Args:
            user_input: Case-insensitive substring of the full symbol name.
            exchange: Exact exchange name; empty matches any exchange.
            symbol_type: Exact symbol type; empty matches any type.

        Returns:
            The matching symbols, in catalog order.
        """
        logger.info(f"[search_symbols]: Method call '{user_input}' exchange='{exchange}'")
        needle = user_input.lower()
        symbols = await self.get_all_symbols()
        return [
            symbol
            for symbol in symbols
            if (not exchange or symbol.exchange == exchange)
            and (not symbol_type or symbol.type == symbol_type)
            and needle in symbol.full.lower()
        ]

    async def resolve_symbol(self, symbol_name: str) -> SymbolInfo:
        """Resolves a full symbol name to the widget's symbol descriptor.

        Raises:
            SymbolResolveError: If no catalog symbol has this full name.
            ApiRequestError: If the catalog request fails.
        """
        logger.info(f"[resolve_symbol]: Method call {symbol_name}")
        symbols = await self.get_all_symbols()
        symbol_item = next((s for s in symbols if s.full == symbol_name), None)
        if symbol_item is None:
            logger.warning(f"[resolve_symbol]: Cannot resolve symbol {symbol_name}")
            raise SymbolResolveError(symbol_name)

        symbol_info = SymbolInfo.from_symbol(
            symbol_item, self.configuration.supported_resolutions
        )
        logger.info(f"[resolve_symbol]: Symbol resolved {symbol_name}")
        return symbol_info

    async def get_bars(
        self, symbol_info: SymbolInfo, resolution: str, period: PeriodParams
    ) -> HistoryResult:
        """Fetches the daily bars of `symbol_info` within the requested period.

        Only bars with `period.from_ts <= time < period.to_ts` are returned,
        with their times converted to milliseconds. On the first request for
        a chart the last returned bar is stored in the last-bar cache.

        Returns:
            The bars, or an empty result with `no_data` set when the API has
            nothing for the symbol.

        Raises:
            ApiRequestError: If the history request fails or returns malformed bars.
            ValueError: If the symbol's full name is malformed.
        """
        logger.info(
            f"[get_bars]: Method call {symbol_info.full_name} {resolution} "
            f"from={period.from_ts} to={period.to_ts}"
        )
        parsed = parse_full_symbol(symbol_info.full_name)
        try:
            data = await self.client.get_daily_history(
                parsed.exchange,
                parsed.from_symbol,
                parsed.to_symbol,
                to_ts=period.to_ts,
                limit=self.settings.api.history_limit,
            )
        except ApiRequestError as e:
            logger.error(f"[get_bars]: Get error {e}")
            raise

        if not isinstance(data, dict) or data.get("Response") == "Error":
            logger.warning(f"[get_bars]: API error: {data}")
            return HistoryResult(bars=[], no_data=True)
        raw_bars = data.get("Data")
        if not raw_bars:
            return HistoryResult(bars=[], no_data=True)

        try:
            bars = [
                Bar(
                    time=seconds_to_ms(raw["time"]),
                    open=raw["open"],
                    high=raw["high"],
                    low=raw["low"],
                    close=raw["close"],
                )
                for raw in raw_bars
                if period.from_ts <= raw["time"] < period.to_ts
            ]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[get_bars]: Malformed history data: {e!r}")
            raise ApiRequestError(DAILY_HISTORY_PATH, f"malformed history data: {e!r}") from e

        if period.first_data_request and bars:
            self.cache.set(symbol_info.full_name, bars[-1])

        logger.info(f"[get_bars]: returned {len(bars)} bar(s)")
        return HistoryResult(bars=bars, no_data=False)

    async def subscribe_bars(
        self,
        symbol_info: SymbolInfo,
        resolution: str,
        on_realtime: RealtimeCallback,
        subscriber_uid: str,
        on_reset_cache_needed: ResetCallback | None = None,
    ) -> None:
        """Subscribes to real-time bars, continuing from the cached last bar."""
        logger.info(f"[subscribe_bars]: Method call with subscriber_uid: {subscriber_uid}")
        await self.streamer.subscribe(
            symbol_info,
            resolution,
            on_realtime,
            subscriber_uid,
            on_reset_cache_needed,
            self.cache.get(symbol_info.full_name),
        )

    async def unsubscribe_bars(self, subscriber_uid: str) -> None:
        logger.info(f"[unsubscribe_bars]: Method call with subscriber_uid: {subscriber_uid}")
        await self.streamer.unsubscribe(subscriber_uid)
