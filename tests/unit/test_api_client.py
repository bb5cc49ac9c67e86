import httpx
import pytest
from conftest import BASE_URL, CATALOG, make_client, routing_handler

from cryptodatafeed.api_client import CryptoCompareClient
from cryptodatafeed.errors import ApiRequestError


@pytest.mark.asyncio
async def test_request_returns_decoded_json(requests_log: list[httpx.Request]) -> None:
    client = make_client(
        routing_handler({"/data/v3/all/exchanges": CATALOG}, requests_log)
    )
    data = await client.get_all_exchanges()

    assert data == CATALOG
    assert str(requests_log[0].url) == f"{BASE_URL}/data/v3/all/exchanges"
    assert "Authorization" not in requests_log[0].headers


@pytest.mark.asyncio
async def test_api_key_is_sent_as_authorization_header(
    requests_log: list[httpx.Request],
) -> None:
    client = make_client(
        routing_handler({"/data/v3/all/exchanges": CATALOG}, requests_log),
        api_key="my-key",
    )
    await client.get_all_exchanges()
    assert requests_log[0].headers["Authorization"] == "Apikey my-key"


@pytest.mark.asyncio
async def test_daily_history_query_parameters(requests_log: list[httpx.Request]) -> None:
    client = make_client(
        routing_handler({"/data/histoday": {"Data": []}}, requests_log)
    )
    await client.get_daily_history("Bitfinex", "BTC", "USD", to_ts=1_700_000_000)

    params = requests_log[0].url.params
    assert params["e"] == "Bitfinex"
    assert params["fsym"] == "BTC"
    assert params["tsym"] == "USD"
    assert params["toTs"] == "1700000000"
    assert params["limit"] == "2000"


@pytest.mark.asyncio
async def test_price_query_parameters(requests_log: list[httpx.Request]) -> None:
    client = make_client(
        routing_handler({"/data/price": {"USD": 1.0, "EUR": 0.9}}, requests_log)
    )
    data = await client.get_price("Kraken", "BTC", ["USD", "EUR"])

    assert data == {"USD": 1.0, "EUR": 0.9}
    assert requests_log[0].url.params["tsyms"] == "USD,EUR"


@pytest.mark.asyncio
async def test_http_error_status_raises() -> None:
    client = make_client(lambda request: httpx.Response(503))
    with pytest.raises(ApiRequestError) as exc_info:
        await client.get_all_exchanges()
    assert exc_info.value.status_code == 503
    assert exc_info.value.path == "data/v3/all/exchanges"


@pytest.mark.asyncio
async def test_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(ApiRequestError, match="ConnectError"):
        await client.get_all_exchanges()


@pytest.mark.asyncio
async def test_invalid_json_raises() -> None:
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(ApiRequestError, match="not valid JSON"):
        await client.get_all_exchanges()


@pytest.mark.asyncio
async def test_aclose_leaves_a_borrowed_client_open() -> None:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    )
    async with CryptoCompareClient(base_url=BASE_URL, http_client=http_client):
        pass
    assert not http_client.is_closed
    await http_client.aclose()


@pytest.mark.asyncio
async def test_aclose_closes_an_owned_client() -> None:
    client = CryptoCompareClient(base_url=BASE_URL)
    await client.aclose()
    assert client._http_client.is_closed
