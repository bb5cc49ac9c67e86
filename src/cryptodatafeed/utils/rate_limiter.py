import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator, Callable

from loguru import logger


class AsyncRateLimiter:
    """An asynchronous token bucket limiting requests to the REST API.

    Tokens are refilled lazily from the elapsed time whenever a caller asks
    for one, so the limiter needs no background task and can be shared by
    every coroutine on the loop.

    Usage:
        limiter = AsyncRateLimiter(20, 1.0)  # 20 requests per second
        async with limiter.acquire():
            await make_api_call()
    """

    def __init__(
        self,
        rate_limit: int,
        period_sec: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initializes the rate limiter with a full bucket.

        Args:
            rate_limit: The maximum number of requests allowed in a period.
            period_sec: The time period in seconds.
            clock: Monotonic time source, replaceable in tests.
        """
        if not isinstance(rate_limit, int) or rate_limit <= 0:
            err_msg = "Rate limit must be a positive integer."
            raise ValueError(err_msg)
        if not isinstance(period_sec, int | float) or period_sec <= 0:
            err_msg = "Period must be a positive number."
            raise ValueError(err_msg)

        self.rate_limit = rate_limit
        self.period_sec = period_sec
        self._clock = clock
        self._tokens = float(rate_limit)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        """Tokens currently available, after refilling for elapsed time."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(
                float(self.rate_limit),
                self._tokens + elapsed * self.rate_limit / self.period_sec,
            )
            self._last_refill = now

    async def _take(self) -> None:
        # The lock keeps waiters in FIFO order.
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait_sec = (1 - self._tokens) * self.period_sec / self.rate_limit
                logger.debug(f"Rate limit reached, waiting {wait_sec:.3f}s.")
                await asyncio.sleep(wait_sec)

    @contextlib.asynccontextmanager
    async def acquire(self) -> AsyncGenerator[None, None]:
        """Waits for a token, then runs the enclosed block.

        The token is consumed, not returned, when the block exits.
        """
        await self._take()
        yield
