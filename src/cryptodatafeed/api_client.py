import types
from typing import Any, Self

import httpx
from loguru import logger

from cryptodatafeed.config import APISettings
from cryptodatafeed.errors import ApiRequestError
from cryptodatafeed.utils.rate_limiter import AsyncRateLimiter

ALL_EXCHANGES_PATH = "data/v3/all/exchanges"
DAILY_HISTORY_PATH = "data/histoday"
PRICE_PATH = "data/price"

DEFAULT_HISTORY_LIMIT = 2000


class CryptoCompareClient:
    """A thin async client for the CryptoCompare public REST API.

    Every request goes through a shared rate limiter and returns the decoded
    JSON body. Failures of any kind surface as `ApiRequestError`; whether a
    successfully decoded body carries an API-level error is left to the
    caller, since the endpoints report it differently.
    """

    def __init__(
        self,
        base_url: str = "https://min-api.cryptocompare.com",
        api_key: str | None = None,
        timeout_sec: float = 20.0,
        rate_limiter: AsyncRateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initializes the client.

        Args:
            base_url: The API root; endpoint paths are appended to it.
            api_key: Optional CryptoCompare key, sent as an Authorization header.
            timeout_sec: Timeout applied when the client creates its own
                httpx.AsyncClient.
            rate_limiter: Limiter shared by all requests. Defaults to 20/s.
            http_client: An existing client to use. It is not closed by `aclose`.
        """
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._rate_limiter = rate_limiter or AsyncRateLimiter(20, 1.0)
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout_sec, follow_redirects=True
        )

    @classmethod
    def from_settings(
        cls,
        settings: APISettings,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "CryptoCompareClient":
        return cls(
            base_url=settings.base_url,
            api_key=api_key,
            timeout_sec=settings.timeout_sec,
            rate_limiter=AsyncRateLimiter(
                settings.rate_limit, settings.rate_period_sec
            ),
            http_client=http_client,
        )

    def _headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Apikey {self._api_key}"}
        return {}

    async def request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Issues a GET to `base_url/path` and returns the decoded JSON.

        Raises:
            ApiRequestError: On transport errors, non-2xx statuses or a body
                that is not valid JSON.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug(f"GET {url} params={params}")
        async with self._rate_limiter.acquire():
            try:
                response = await self._http_client.get(
                    url, params=params, headers=self._headers()
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ApiRequestError(
                    path, f"HTTP {e.response.status_code}", e.response.status_code
                ) from e
            except httpx.HTTPError as e:
                raise ApiRequestError(path, f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ApiRequestError(path, "response is not valid JSON") from e

    async def get_all_exchanges(self) -> dict[str, Any]:
        """Fetches the catalog of every exchange and its traded pairs."""
        return await self.request(ALL_EXCHANGES_PATH)

    async def get_daily_history(
        self,
        exchange: str,
        from_symbol: str,
        to_symbol: str,
        to_ts: int,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> dict[str, Any]:
        """Fetches up to `limit` daily bars ending at `to_ts` (Unix seconds)."""
        params = {
            "e": exchange,
            "fsym": from_symbol,
            "tsym": to_symbol,
            "toTs": to_ts,
            "limit": limit,
        }
        return await self.request(DAILY_HISTORY_PATH, params)

    async def get_price(
        self, exchange: str, from_symbol: str, to_symbols: list[str]
    ) -> dict[str, Any]:
        """Fetches the latest price of `from_symbol` in each of `to_symbols`.

        Returns a mapping such as {"USD": 43125.5}, or an error body.
        """
        params = {"e": exchange, "fsym": from_symbol, "tsyms": ",".join(to_symbols)}
        return await self.request(PRICE_PATH, params)

    async def aclose(self) -> None:
        """Closes the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()
