from collections.abc import Callable
from typing import Any

import httpx
import pytest

from cryptodatafeed.api_client import CryptoCompareClient
from cryptodatafeed.config import Settings

BASE_URL = "https://min-api.test"
DAY_S = 86_400
# 2022-01-08T00:00:00Z, a UTC day boundary.
BASE_DAY_S = 19_000 * DAY_S

CATALOG: dict[str, Any] = {
    "Response": "Success",
    "Data": {
        "Bitfinex": {"pairs": {"BTC": ["USD", "EUR"], "ETH": ["USD", "BTC"]}},
        "Kraken": {"pairs": {"BTC": ["USD"], "XRP": ["EUR"]}},
        "Binance": {"pairs": {"BNB": ["USDT"]}},
    },
}


def history_payload(days: int = 5) -> dict[str, Any]:
    """A histoday body with `days` consecutive daily bars from BASE_DAY_S."""
    return {
        "Response": "Success",
        "Data": [
            {
                "time": BASE_DAY_S + i * DAY_S,
                "open": 100.0 + i,
                "high": 110.0 + i,
                "low": 90.0 + i,
                "close": 105.0 + i,
                "volumefrom": 12.5,
                "volumeto": 1300.0,
            }
            for i in range(days)
        ],
    }


Handler = Callable[[httpx.Request], httpx.Response]


def routing_handler(
    routes: dict[str, Any], requests: list[httpx.Request] | None = None
) -> Handler:
    """Serves JSON bodies by URL path; unknown paths get a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"Response": "Error"})
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    return handler


def make_client(handler: Handler, api_key: str | None = None) -> CryptoCompareClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CryptoCompareClient(base_url=BASE_URL, api_key=api_key, http_client=http_client)


@pytest.fixture
def settings() -> Settings:
    """Default settings, never read from or written to disk."""
    return Settings()


@pytest.fixture
def requests_log() -> list[httpx.Request]:
    return []
