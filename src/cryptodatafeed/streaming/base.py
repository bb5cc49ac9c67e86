import abc
import asyncio
import random
from collections.abc import AsyncGenerator, Callable
from typing import Any

import websockets.exceptions
from loguru import logger

from cryptodatafeed.models import Tick

# --- Constants for Reconnection Logic ---
INITIAL_RECONNECT_DELAY_S = 1.0
MAX_RECONNECT_DELAY_S = 60.0
RECONNECT_BACKOFF_FACTOR = 2.0
JITTER_FACTOR = 0.2  # 20% jitter


class TickSource(abc.ABC):
    """An abstract base class for real-time price sources.

    A source watches a set of trade channels ('0~Bitfinex~BTC~USD') and puts
    a `Tick` on its output queue for every price it observes. The run loop
    restarts the stream after failures with exponential backoff and jitter,
    and fires `on_reconnect` before each retry so subscribers can discard
    bars that may now have gaps.

    Subclasses implement the transport: how raw messages are obtained and
    how they are turned into ticks.
    """

    def __init__(
        self,
        output_queue: "asyncio.Queue[Tick | None]",
        on_reconnect: Callable[[], None] | None = None,
    ) -> None:
        """Initializes the source.

        Args:
            output_queue: The queue normalized ticks are pushed into.
            on_reconnect: Called before reconnecting after a failure.
        """
        self.output_queue = output_queue
        self.on_reconnect = on_reconnect
        self._channels: set[str] = set()
        self._running = asyncio.Event()
        self._main_task: asyncio.Task[None] | None = None

    @property
    @abc.abstractmethod
    def source_name(self) -> str:
        """A short lowercase identifier used in log lines (e.g., 'poll')."""
        raise NotImplementedError

    @property
    def channels(self) -> frozenset[str]:
        return frozenset(self._channels)

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    async def add_channel(self, channel: str) -> None:
        """Starts watching a trade channel."""
        self._channels.add(channel)
        logger.debug(f"[{self.source_name}] Watching channel {channel}.")

    async def remove_channel(self, channel: str) -> None:
        """Stops watching a trade channel. Unknown channels are ignored."""
        self._channels.discard(channel)
        logger.debug(f"[{self.source_name}] Stopped watching channel {channel}.")

    def start(self) -> None:
        """Starts the source's run loop in a background task."""
        if self._main_task is None or self._main_task.done():
            self._running.set()
            self._main_task = asyncio.create_task(self._run_with_reconnect())
            logger.info(f"[{self.source_name}] Tick source started.")
        else:
            logger.warning(f"[{self.source_name}] Tick source is already running.")

    async def stop(self) -> None:
        """Stops the run loop and waits for it to finish."""
        if not self._running.is_set():
            logger.warning(f"[{self.source_name}] Tick source is not running.")
            return

        logger.info(f"[{self.source_name}] Stopping tick source...")
        self._running.clear()
        if self._main_task:
            try:
                self._main_task.cancel()
                await self._main_task
            except asyncio.CancelledError:
                pass
            finally:
                self._main_task = None
        logger.info(f"[{self.source_name}] Tick source stopped.")

    async def _run_with_reconnect(self) -> None:
        """The main run loop that handles connections and reconnections."""
        delay = INITIAL_RECONNECT_DELAY_S
        failed = False
        while self._running.is_set():
            if failed and self.on_reconnect is not None:
                try:
                    self.on_reconnect()
                except Exception:
                    logger.exception(f"[{self.source_name}] on_reconnect hook failed.")
            failed = False

            try:
                logger.info(f"[{self.source_name}] Connecting...")
                async for message in self._stream_messages():
                    if not self._running.is_set():
                        break
                    tick = self._normalize_message(message)
                    if tick is not None:
                        await self.output_queue.put(tick)

                if not self._running.is_set():
                    break
                delay = INITIAL_RECONNECT_DELAY_S  # Reset delay on clean disconnect.
                logger.info(f"[{self.source_name}] Stream ended. Reconnecting...")

            except asyncio.CancelledError:
                break
            except (
                websockets.exceptions.WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                failed = True
                logger.warning(
                    f"[{self.source_name}] Connection lost: {type(e).__name__}. "
                    "Reconnecting..."
                )
            except Exception:
                failed = True
                logger.exception(
                    f"[{self.source_name}] Unexpected error in run loop. Reconnecting..."
                )

            if self._running.is_set():
                jitter = delay * JITTER_FACTOR * (random.random() * 2 - 1)  # noqa: S311
                sleep_duration = min(MAX_RECONNECT_DELAY_S, abs(delay + jitter))
                logger.info(
                    f"[{self.source_name}] Reconnecting in {sleep_duration:.2f} seconds."
                )
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break
                if failed:
                    delay = min(MAX_RECONNECT_DELAY_S, delay * RECONNECT_BACKOFF_FACTOR)

        logger.info(f"[{self.source_name}] Run loop has terminated.")

    @abc.abstractmethod
    async def _stream_messages(self) -> AsyncGenerator[dict[str, Any], None]:
        """Yields raw messages for the watched channels until the stream ends.

        Returning or raising hands control back to `_run_with_reconnect`.
        """
        if False:  # pragma: no cover
            yield {}

    @abc.abstractmethod
    def _normalize_message(self, message: dict[str, Any]) -> Tick | None:
        """Turns a raw message into a Tick, or None if it carries no price."""
        raise NotImplementedError
