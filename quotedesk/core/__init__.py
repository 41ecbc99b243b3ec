from quotedesk.core.event_bus import (
    DomainEvent,
    EventBus,
    QuoteAccepted,
    QuoteCancelled,
    QuoteRejected,
    QuoteRequested,
    QuoteRevised,
    QuoteSent,
    QuoteTransitioned,
    TRANSITION_EVENTS,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteRequested",
    "QuoteTransitioned",
    "QuoteSent",
    "QuoteRevised",
    "QuoteAccepted",
    "QuoteRejected",
    "QuoteCancelled",
    "TRANSITION_EVENTS",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
