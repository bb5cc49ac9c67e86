"""Data models exchanged between the datafeed and the charting widget.

The `to_dict` methods produce the exact field names the widget expects, so
the models can be handed across a JSON or JS bridge unchanged.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from cryptodatafeed.symbols import generate_symbol

DEFAULT_SYMBOL_TYPE = "crypto"


@dataclass(frozen=True)
class Exchange:
    """An exchange entry in the widget's search filter."""

    value: str
    name: str
    desc: str

    def to_dict(self) -> dict[str, str]:
        return {"value": self.value, "name": self.name, "desc": self.desc}


@dataclass(frozen=True)
class SymbolType:
    """A symbol type entry in the widget's search filter."""

    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class DatafeedConfiguration:
    """The static configuration handed to the widget by `on_ready`."""

    supported_resolutions: list[str]
    exchanges: list[Exchange]
    symbols_types: list[SymbolType]

    def to_dict(self) -> dict[str, Any]:
        return {
            "supported_resolutions": list(self.supported_resolutions),
            "exchanges": [e.to_dict() for e in self.exchanges],
            "symbols_types": [t.to_dict() for t in self.symbols_types],
        }


@dataclass(frozen=True)
class Symbol:
    """A tradable pair from the exchange catalog.

    The full form ('Bitfinex:BTC/USD') is the unique key.
    """

    short: str
    full: str
    exchange: str
    description: str
    type: str = DEFAULT_SYMBOL_TYPE

    @classmethod
    def from_parts(
        cls,
        exchange: str,
        from_symbol: str,
        to_symbol: str,
        symbol_type: str = DEFAULT_SYMBOL_TYPE,
    ) -> "Symbol":
        name = generate_symbol(exchange, from_symbol, to_symbol)
        return cls(
            short=name.short,
            full=name.full,
            exchange=exchange,
            description=name.short,
            type=symbol_type,
        )

    def to_dict(self) -> dict[str, str]:
        """Returns the widget's search-result shape."""
        return {
            "symbol": self.short,
            "full_name": self.full,
            "description": self.description,
            "exchange": self.exchange,
            "type": self.type,
        }


@dataclass(frozen=True)
class SymbolInfo:
    """The descriptor returned by `resolve_symbol`.

    Only `full_name`, `name`, `description`, `type`, `exchange` and
    `supported_resolutions` vary per symbol; the rest is fixed for a
    24x7 crypto market priced in UTC.
    """

    full_name: str
    name: str
    description: str
    type: str
    exchange: str
    supported_resolutions: list[str]
    session: str = "24x7"
    timezone: str = "Etc/UTC"
    minmov: int = 1
    pricescale: int = 100
    has_intraday: bool = False
    has_no_volume: bool = True
    has_weekly_and_monthly: bool = False
    volume_precision: int = 2
    data_status: str = "streaming"

    @property
    def ticker(self) -> str:
        return self.full_name

    @classmethod
    def from_symbol(cls, symbol: Symbol, supported_resolutions: list[str]) -> "SymbolInfo":
        return cls(
            full_name=symbol.full,
            name=symbol.short,
            description=symbol.description,
            type=symbol.type,
            exchange=symbol.exchange,
            supported_resolutions=list(supported_resolutions),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker,
            "name": self.name,
            "full_name": self.full_name,
            "description": self.description,
            "type": self.type,
            "session": self.session,
            "timezone": self.timezone,
            "exchange": self.exchange,
            "minmov": self.minmov,
            "pricescale": self.pricescale,
            "has_intraday": self.has_intraday,
            "has_no_volume": self.has_no_volume,
            "has_weekly_and_monthly": self.has_weekly_and_monthly,
            "supported_resolutions": list(self.supported_resolutions),
            "volume_precision": self.volume_precision,
            "data_status": self.data_status,
        }


@dataclass(frozen=True)
class Bar:
    """One OHLC(V) data point. `time` is milliseconds since the Unix epoch."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None

    def with_trade(self, price: float) -> "Bar":
        """Returns a copy of this bar with a trade at `price` rolled in."""
        return replace(
            self,
            high=max(self.high, price),
            low=min(self.low, price),
            close=price,
        )

    @classmethod
    def opening(cls, time_ms: int, price: float) -> "Bar":
        """A fresh bar whose OHLC are all the first trade price."""
        return cls(time=time_ms, open=price, high=price, low=price, close=price)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }
        if self.volume is not None:
            data["volume"] = self.volume
        return data


@dataclass(frozen=True)
class PeriodParams:
    """The range requested by `get_bars`.

    `from_ts` is inclusive and `to_ts` exclusive, both in Unix seconds.
    """

    from_ts: int
    to_ts: int
    first_data_request: bool = False
    count_back: int | None = None


@dataclass
class HistoryResult:
    """The outcome of a history request that did not fail."""

    bars: list[Bar] = field(default_factory=list)
    no_data: bool = False

    def meta(self) -> dict[str, bool]:
        return {"noData": self.no_data}


@dataclass(frozen=True)
class Tick:
    """A single real-time price observation for one exchange pair."""

    exchange: str
    from_symbol: str
    to_symbol: str
    price: float
    time: int  # milliseconds
