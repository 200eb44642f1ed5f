"""Key space: reads, writes and watches under ``/v2/keys``."""

from .kv_api import KeyValueApi
from .watcher import Watcher, WatchState

__all__ = [
    "KeyValueApi",
    "WatchState",
    "Watcher",
]
