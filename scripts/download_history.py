#!/usr/bin/env python
r"""A command-line utility to download daily bars through the datafeed.

It resolves the symbol exactly as the charting widget would, fetches the
history for the requested range and writes it to stdout as CSV.

Usage:
    python scripts/download_history.py <FULL_SYMBOL> <START_DATE> [END_DATE]

Example:
    python scripts/download_history.py Bitfinex:BTC/USD 2023-01-01 2023-06-30
"""

import asyncio
import csv
import sys
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from cryptodatafeed.config import Settings
from cryptodatafeed.datafeed import Datafeed
from cryptodatafeed.errors import DatafeedError
from cryptodatafeed.logging_config import setup_logging
from cryptodatafeed.models import PeriodParams
from cryptodatafeed.utils.time import ms_to_rfc3339

CSV_HEADER: list[str] = ["time", "open", "high", "low", "close"]


def _parse_date(value: str) -> int:
    dt_obj = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(dt_obj.timestamp())


async def download(full_symbol: str, from_ts: int, to_ts: int) -> int:
    """Fetches and prints the bars. Returns a process exit code."""
    settings = Settings.get_instance()
    datafeed = Datafeed(settings)
    try:
        symbol_info = await datafeed.resolve_symbol(full_symbol)
        result = await datafeed.get_bars(
            symbol_info,
            "1D",
            PeriodParams(from_ts=from_ts, to_ts=to_ts, first_data_request=True),
        )
    except DatafeedError as e:
        logger.error(f"Download failed: {e}")
        return 1
    finally:
        await datafeed.client.aclose()

    if result.no_data:
        logger.warning(f"No data for {full_symbol} in the requested range.")
        return 0

    writer = csv.writer(sys.stdout)
    writer.writerow(CSV_HEADER)
    for bar in result.bars:
        writer.writerow([ms_to_rfc3339(bar.time), bar.open, bar.high, bar.low, bar.close])
    logger.success(f"Wrote {len(result.bars)} bar(s) for {full_symbol}.")
    return 0


def main(argv: list[str]) -> int:
    if len(argv) not in (3, 4):
        print(__doc__)
        return 2

    full_symbol = argv[1]
    try:
        from_ts = _parse_date(argv[2])
        to_ts = (
            _parse_date(argv[3])
            if len(argv) == 4
            else int(datetime.now(timezone.utc).timestamp())
        )
    except ValueError as e:
        print(f"Error: invalid date: {e}")
        return 2

    general = Settings.get_instance().general
    setup_logging(
        console_level=general.log_level_console,
        file_level=general.log_level_file,
        log_dir=Path(general.log_directory),
    )
    return asyncio.run(download(full_symbol, from_ts, to_ts))


if __name__ == "__main__":
    sys.exit(main(sys.argv))
