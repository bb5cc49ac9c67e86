class DatafeedError(Exception):
    """Base class for failures reported by the datafeed to its caller."""


class SymbolResolveError(DatafeedError):
    """Raised when a symbol name matches nothing in the exchange catalog."""

    def __init__(self, symbol_name: str) -> None:
        super().__init__("cannot resolve symbol")
        self.symbol_name = symbol_name


class ApiRequestError(DatafeedError):
    """Raised when a request to the market-data API fails.

    Covers transport errors, non-2xx statuses and bodies that are not JSON.
    """

    def __init__(self, path: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Request to '{path}' failed: {message}")
        self.path = path
        self.status_code = status_code
