"""Real-time bar updates for widget subscribers.

A `TickSource` (polling the REST price endpoint, or the CryptoCompare
WebSocket streamer) feeds ticks into a `Streamer`, which rolls them into the
current bar of each subscription and calls the subscribers back.
"""

from cryptodatafeed.streaming.base import TickSource
from cryptodatafeed.streaming.polling import PollingTickSource
from cryptodatafeed.streaming.streamer import Streamer, roll_bar
from cryptodatafeed.streaming.websocket import WebSocketTickSource

__all__ = [
    "PollingTickSource",
    "Streamer",
    "TickSource",
    "WebSocketTickSource",
    "roll_bar",
]
