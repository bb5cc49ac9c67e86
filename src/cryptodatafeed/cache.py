from loguru import logger

from cryptodatafeed.models import Bar


class LastBarsCache:
    """The most recent bar seen per full symbol name.

    History requests seed it and the streamer keeps it current, so a new
    subscription can continue the bar the chart is already showing. Entries
    are overwritten by key (last writer wins) and never evicted.
    """

    def __init__(self) -> None:
        self._bars: dict[str, Bar] = {}

    def get(self, full_name: str) -> Bar | None:
        return self._bars.get(full_name)

    def set(self, full_name: str, bar: Bar) -> None:
        logger.debug(f"Last bar for {full_name} set to time={bar.time}.")
        self._bars[full_name] = bar

    def __contains__(self, full_name: object) -> bool:
        return full_name in self._bars

    def __len__(self) -> int:
        return len(self._bars)
