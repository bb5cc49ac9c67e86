# src/cryptodatafeed/__init__.py
"""CryptoDatafeed: a charting-widget datafeed backed by the CryptoCompare API.

This package adapts the six-method datafeed contract expected by
TradingView-style charting widgets to CryptoCompare's public market-data
REST API.

Key modules:
- `datafeed`: The `Datafeed` class implementing the widget contract.
- `api_client`: A thin async client for the CryptoCompare REST endpoints.
- `streaming`: Subscriber fan-out and the real-time tick sources.
- `symbols`: Conversion between `EXCHANGE:FROM/TO` strings and their parts.
- `utils`: Shared helpers such as the rate limiter and time conversions.
"""

# The version is managed in pyproject.toml and is dynamically
# retrieved here using importlib.metadata.
import importlib.metadata

try:
    __version__: str = importlib.metadata.version("cryptodatafeed")
except importlib.metadata.PackageNotFoundError:
    # Not installed, e.g. running straight from a source checkout.
    __version__ = "0.0.0-dev"
