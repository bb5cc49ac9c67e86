import time
from datetime import datetime, timedelta, timezone

MS_PER_SECOND = 1000

# Widget resolution strings and their canonical form. Only daily and
# coarser resolutions are served.
_RESOLUTION_ALIASES: dict[str, str] = {
    "D": "1D",
    "1D": "1D",
    "W": "1W",
    "1W": "1W",
    "M": "1M",
    "1M": "1M",
}


def seconds_to_ms(seconds: int | float) -> int:
    """Converts Unix seconds to Unix milliseconds."""
    return int(seconds * MS_PER_SECOND)


def ms_to_seconds(ms: int) -> int:
    """Converts Unix milliseconds to whole Unix seconds."""
    return ms // MS_PER_SECOND


def get_current_ms() -> int:
    """Returns the current time as milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def ms_to_rfc3339(ms: int) -> str:
    """Formats Unix milliseconds as an RFC3339 UTC string, e.g. '2023-10-27T00:00:00.000Z'."""
    dt_obj = datetime.fromtimestamp(ms / MS_PER_SECOND, tz=timezone.utc)
    return dt_obj.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_resolution(resolution: str) -> str:
    """Maps a widget resolution string to '1D', '1W' or '1M'.

    Raises:
        ValueError: For intraday or otherwise unsupported resolutions.
    """
    try:
        return _RESOLUTION_ALIASES[resolution.upper()]
    except KeyError:
        err_msg = f"Unsupported resolution: {resolution}"
        raise ValueError(err_msg) from None


def _add_month(dt_obj: datetime) -> datetime:
    # Month index is zero based here; dt_obj.month is one based.
    year, month_index = divmod(dt_obj.year * 12 + dt_obj.month, 12)
    return dt_obj.replace(year=year, month=month_index + 1, day=1)


def next_bar_time(bar_time_ms: int, resolution: str) -> int:
    """Returns the open time (ms) of the bar following the one at `bar_time_ms`.

    Daily and weekly bars advance by a fixed number of days. Monthly bars
    advance to the first day of the next calendar month.
    """
    canonical = normalize_resolution(resolution)
    dt_obj = datetime.fromtimestamp(bar_time_ms / MS_PER_SECOND, tz=timezone.utc)
    if canonical == "1D":
        nxt = dt_obj + timedelta(days=1)
    elif canonical == "1W":
        nxt = dt_obj + timedelta(weeks=1)
    else:
        nxt = _add_month(dt_obj)
    return seconds_to_ms(nxt.timestamp())


def bar_period_start(time_ms: int, resolution: str) -> int:
    """Returns the open time (ms) of the bar containing `time_ms`.

    Days start at 00:00 UTC, weeks on Monday, months on the 1st.
    """
    canonical = normalize_resolution(resolution)
    dt_obj = datetime.fromtimestamp(time_ms / MS_PER_SECOND, tz=timezone.utc)
    start = dt_obj.replace(hour=0, minute=0, second=0, microsecond=0)
    if canonical == "1W":
        start -= timedelta(days=start.weekday())
    elif canonical == "1M":
        start = start.replace(day=1)
    return seconds_to_ms(start.timestamp())
