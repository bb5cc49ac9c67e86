import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from cryptodatafeed.cache import LastBarsCache
from cryptodatafeed.models import Bar, SymbolInfo, Tick
from cryptodatafeed.streaming.base import TickSource
from cryptodatafeed.symbols import ParsedSymbol, channel_for, parse_full_symbol
from cryptodatafeed.utils.time import bar_period_start, next_bar_time, normalize_resolution

RealtimeCallback = Callable[[Bar], None]
ResetCallback = Callable[[], None]


# History is served as daily bars whatever the chart resolution, so the
# stream rolls daily bars too and the widget builds weekly and monthly ones.
BAR_RESOLUTION = "1D"


def roll_bar(last_bar: Bar | None, price: float, time_ms: int) -> Bar:
    """Folds a trade into the daily bar series and returns the resulting last bar.

    A trade at or past the next bar's open time starts a new bar; anything
    earlier updates high, low and close of `last_bar`. Without a previous
    bar the trade opens the bar of its own day.
    """
    if last_bar is None:
        return Bar.opening(bar_period_start(time_ms, BAR_RESOLUTION), price)
    next_time = next_bar_time(last_bar.time, BAR_RESOLUTION)
    if time_ms >= next_time:
        # After a gap of several days the new bar belongs to the trade's own day.
        return Bar.opening(max(next_time, bar_period_start(time_ms, BAR_RESOLUTION)), price)
    return last_bar.with_trade(price)


@dataclass
class Handler:
    """One widget subscriber."""

    uid: str
    callback: RealtimeCallback
    on_reset: ResetCallback | None = None


@dataclass
class Subscription:
    """Subscribers sharing an exchange pair and resolution, and their bar."""

    full_name: str
    channel: str
    resolution: str
    last_bar: Bar | None
    handlers: dict[str, Handler] = field(default_factory=dict)


class Streamer:
    """Fans real-time ticks out to widget subscribers as rolling bars.

    Subscribers are grouped by (channel, resolution). The tick source is
    asked to watch a channel when its first subscriber arrives and to stop
    when the last one leaves. Every tick on a watched channel updates each
    group's last bar, writes it to the shared `LastBarsCache` and pushes it
    to the group's callbacks.
    """

    def __init__(self, source: TickSource, cache: LastBarsCache) -> None:
        """Initializes the streamer.

        Args:
            source: The tick source; its output queue becomes our input.
            cache: The datafeed's last-bar cache, read to seed new
                subscriptions and written with every rolled bar.
        """
        self.source = source
        self.source.on_reconnect = self.reset_subscribers
        self.input_queue = source.output_queue
        self.cache = cache
        self._subscriptions: dict[str, dict[str, Subscription]] = {}
        self._uid_to_key: dict[str, tuple[str, str]] = {}
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = asyncio.Event()

    @property
    def subscriber_count(self) -> int:
        return len(self._uid_to_key)

    def get_subscription(self, channel: str, resolution: str) -> Subscription | None:
        return self._subscriptions.get(channel, {}).get(normalize_resolution(resolution))

    def start(self) -> None:
        """Starts the tick source and the fan-out loop."""
        if self._task is None or self._task.done():
            self._running.set()
            self.source.start()
            self._task = asyncio.create_task(self._run())
            logger.info("Streamer started.")
        else:
            logger.warning("Streamer is already running.")

    async def stop(self) -> None:
        """Stops the fan-out loop and the tick source."""
        if not self._running.is_set():
            logger.warning("Streamer is not running.")
            return

        logger.info("Stopping Streamer...")
        self._running.clear()
        await self.source.stop()
        if self._task:
            try:
                self.input_queue.put_nowait(None)
                self._task.cancel()
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None
        logger.info("Streamer stopped.")

    async def subscribe(
        self,
        symbol_info: SymbolInfo,
        resolution: str,
        on_realtime: RealtimeCallback,
        subscriber_uid: str,
        on_reset_cache_needed: ResetCallback | None = None,
        last_bar: Bar | None = None,
    ) -> None:
        """Registers a subscriber for real-time bars of a symbol.

        Args:
            symbol_info: The resolved symbol; its full name picks the channel.
            resolution: The bar resolution ('1D', '1W' or '1M').
            on_realtime: Called with every updated bar.
            subscriber_uid: The widget's id for this subscription.
            on_reset_cache_needed: Called when the stream was interrupted.
            last_bar: The bar to continue from, usually the last history bar.

        Raises:
            ValueError: If the full name or resolution cannot be parsed.
        """
        parsed = parse_full_symbol(symbol_info.full_name)
        channel = channel_for(parsed)
        canonical = normalize_resolution(resolution)
        handler = Handler(subscriber_uid, on_realtime, on_reset_cache_needed)

        async with self._lock:
            if subscriber_uid in self._uid_to_key:
                logger.warning(f"Subscriber {subscriber_uid} already registered; replacing.")
                old_channel = self._remove_locked(subscriber_uid)
                if (
                    old_channel is not None
                    and old_channel != channel
                    and old_channel not in self._subscriptions
                ):
                    await self.source.remove_channel(old_channel)

            by_resolution = self._subscriptions.setdefault(channel, {})
            is_new_channel = not by_resolution
            subscription = by_resolution.get(canonical)
            if subscription is None:
                subscription = Subscription(
                    full_name=symbol_info.full_name,
                    channel=channel,
                    resolution=canonical,
                    last_bar=last_bar,
                )
                by_resolution[canonical] = subscription
            subscription.handlers[subscriber_uid] = handler
            self._uid_to_key[subscriber_uid] = (channel, canonical)
            logger.info(f"New subscription (UID: {subscriber_uid}) for {channel} {canonical}.")

            if is_new_channel:
                await self.source.add_channel(channel)

    async def unsubscribe(self, subscriber_uid: str) -> None:
        """Removes a subscriber. Unknown ids are logged and ignored."""
        async with self._lock:
            channel = self._remove_locked(subscriber_uid)
            if channel is not None and channel not in self._subscriptions:
                await self.source.remove_channel(channel)

    def _remove_locked(self, subscriber_uid: str) -> str | None:
        """Drops a handler; returns its channel, or None if the uid is unknown."""
        key = self._uid_to_key.pop(subscriber_uid, None)
        if key is None:
            logger.warning(f"Attempted to unsubscribe with unknown UID: {subscriber_uid}")
            return None

        channel, resolution = key
        by_resolution = self._subscriptions[channel]
        subscription = by_resolution[resolution]
        del subscription.handlers[subscriber_uid]
        logger.info(f"Unsubscribed UID {subscriber_uid} from {channel} {resolution}.")
        if not subscription.handlers:
            del by_resolution[resolution]
        if not by_resolution:
            del self._subscriptions[channel]
            logger.debug(f"Removed empty channel: {channel}.")
        return channel

    def handle_tick(self, tick: Tick) -> int:
        """Rolls a tick into every subscription of its channel.

        Returns:
            The number of callbacks invoked.
        """
        channel = channel_for(ParsedSymbol(tick.exchange, tick.from_symbol, tick.to_symbol))
        by_resolution = self._subscriptions.get(channel)
        if not by_resolution:
            return 0

        delivered = 0
        for subscription in list(by_resolution.values()):
            bar = roll_bar(subscription.last_bar, tick.price, tick.time)
            subscription.last_bar = bar
            self.cache.set(subscription.full_name, bar)
            for handler in list(subscription.handlers.values()):
                try:
                    handler.callback(bar)
                    delivered += 1
                except Exception:
                    logger.exception(f"Realtime callback for {handler.uid} raised.")
        return delivered

    def reset_subscribers(self) -> None:
        """Asks every subscriber to reload its history after a stream gap."""
        for by_resolution in list(self._subscriptions.values()):
            for subscription in list(by_resolution.values()):
                for handler in list(subscription.handlers.values()):
                    if handler.on_reset is None:
                        continue
                    try:
                        handler.on_reset()
                    except Exception:
                        logger.exception(f"Reset callback for {handler.uid} raised.")
        logger.info("Subscribers asked to reset their bar caches.")

    async def _run(self) -> None:
        """The fan-out loop."""
        while self._running.is_set():
            try:
                tick = await self.input_queue.get()
                try:
                    if tick is not None:  # None is the shutdown sentinel
                        self.handle_tick(tick)
                finally:
                    self.input_queue.task_done()
            except asyncio.CancelledError:
                logger.info("Streamer run loop cancelled.")
                break
            except Exception:
                logger.exception("Unexpected error in Streamer run loop.")
                await asyncio.sleep(1)
        logger.info("Streamer run loop terminated.")
