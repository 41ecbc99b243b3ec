from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from quotedesk.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))


@dataclass(frozen=True, kw_only=True)
class QuoteRequested(DomainEvent):
    quote_id: str
    quote_number: str
    client_id: str
    vendor_id: str
    items_created: int = 0
    total_amount: str = "0.00"


@dataclass(frozen=True, kw_only=True)
class QuoteTransitioned(DomainEvent):
    quote_id: str
    quote_number: str
    from_status: str
    to_status: str
    actor_id: str
    actor_role: str


@dataclass(frozen=True, kw_only=True)
class QuoteSent(QuoteTransitioned):
    pass


@dataclass(frozen=True, kw_only=True)
class QuoteRevised(QuoteTransitioned):
    changed_items: int = 0
    notes_changed: bool = False
    total_amount: str = "0.00"


@dataclass(frozen=True, kw_only=True)
class QuoteAccepted(QuoteTransitioned):
    pass


@dataclass(frozen=True, kw_only=True)
class QuoteRejected(QuoteTransitioned):
    pass


@dataclass(frozen=True, kw_only=True)
class QuoteCancelled(QuoteTransitioned):
    pass


TRANSITION_EVENTS: Dict[str, Type[QuoteTransitioned]] = {
    "send": QuoteSent,
    "revise": QuoteRevised,
    "accept": QuoteAccepted,
    "reject": QuoteRejected,
    "cancel": QuoteCancelled,
}


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("quotedesk")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
