"""Change Feed: fan-out of row-change notifications on quotes and quote items.

Delivery is at-least-once and unordered. Events only say *what* changed;
subscribers re-read canonical state instead of applying payload deltas.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict

from quotedesk.observability import observe_change_event


CHANGE_TABLES = ("quotes", "quote_items")
CHANGE_EVENT_TYPES = ("insert", "update", "delete")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    affected_id: str
    quote_id: str | None = None

    def __post_init__(self) -> None:
        if self.table not in CHANGE_TABLES:
            raise ValueError(f"unsupported change table '{self.table}'")
        if self.event_type not in CHANGE_EVENT_TYPES:
            raise ValueError(f"unsupported change event type '{self.event_type}'")
        if self.table == "quotes" and not self.quote_id:
            object.__setattr__(self, "quote_id", self.affected_id)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", token: int) -> None:
        self._feed = feed
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self._feed._remove(self._token)
        self.active = False


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = RLock()
        self._subscribers: Dict[int, ChangeCallback] = {}
        self._next_token = 0
        self._logger = logging.getLogger("quotedesk")

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._subscribers[token] = callback
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        observe_change_event(event.table, event.event_type)
        with self._lock:
            callbacks = list(self._subscribers.values())
        for callback in callbacks:
            try:
                callback(event)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "change_feed_subscriber_failed",
                    extra={
                        "table": event.table,
                        "event_type": event.event_type,
                        "quote_id": event.quote_id,
                    },
                )

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()
