from typing import NamedTuple

EXCHANGE_DELIMITER = ":"
PAIR_DELIMITER = "/"
CHANNEL_DELIMITER = "~"

# CryptoCompare streamer sub-type for trade updates.
TRADE_SUBSCRIPTION_TYPE = "0"


class SymbolName(NamedTuple):
    """The two string forms of a trading pair."""

    short: str  # "BTC/USD"
    full: str  # "Bitfinex:BTC/USD"


class ParsedSymbol(NamedTuple):
    """A full symbol split into the parts the REST API expects."""

    exchange: str
    from_symbol: str
    to_symbol: str


def generate_symbol(exchange: str, from_symbol: str, to_symbol: str) -> SymbolName:
    """Builds the short and full symbol names for an exchange pair.

    Args:
        exchange: The exchange name (e.g., 'Bitfinex').
        from_symbol: The base asset (e.g., 'BTC').
        to_symbol: The quote asset (e.g., 'USD').

    Returns:
        A SymbolName with `short` = 'BTC/USD' and `full` = 'Bitfinex:BTC/USD'.
    """
    short = f"{from_symbol}{PAIR_DELIMITER}{to_symbol}"
    return SymbolName(short=short, full=f"{exchange}{EXCHANGE_DELIMITER}{short}")


def parse_full_symbol(full_symbol: str) -> ParsedSymbol:
    """Splits a full symbol such as 'Bitfinex:BTC/USD' into its parts.

    Only the delimiters are checked, not the parts themselves.

    Raises:
        ValueError: If either delimiter is missing.
    """
    exchange, sep, pair = full_symbol.partition(EXCHANGE_DELIMITER)
    from_symbol, pair_sep, to_symbol = pair.partition(PAIR_DELIMITER)
    if not sep or not pair_sep:
        err_msg = f"Malformed full symbol: '{full_symbol}'"
        raise ValueError(err_msg)
    return ParsedSymbol(exchange, from_symbol, to_symbol)


def channel_for(parsed: ParsedSymbol) -> str:
    """Returns the streamer trade channel key, e.g. '0~Bitfinex~BTC~USD'."""
    return CHANNEL_DELIMITER.join(
        (TRADE_SUBSCRIPTION_TYPE, parsed.exchange, parsed.from_symbol, parsed.to_symbol)
    )


def parse_channel(channel: str) -> ParsedSymbol:
    """Inverse of `channel_for`.

    Raises:
        ValueError: If the key does not have exactly four parts.
    """
    parts = channel.split(CHANNEL_DELIMITER)
    if len(parts) != 4:
        err_msg = f"Malformed channel key: '{channel}'"
        raise ValueError(err_msg)
    return ParsedSymbol(parts[1], parts[2], parts[3])
