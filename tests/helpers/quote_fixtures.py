from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from quotedesk.domain.contracts import ActorIdentity, QuoteLineInput
from quotedesk.infrastructure.quote_store import QuoteStore


CUSTOMER = ActorIdentity(actor_id="cust-1", actor_role="customer")
OTHER_CUSTOMER = ActorIdentity(actor_id="cust-2", actor_role="customer")
VENDOR = ActorIdentity(actor_id="vend-1", actor_role="vendor")
OTHER_VENDOR = ActorIdentity(actor_id="vend-2", actor_role="vendor")
ADMIN = ActorIdentity(actor_id="admin-1", actor_role="admin")
SUPER_ADMIN = ActorIdentity(actor_id="root-1", actor_role="super_admin")


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._current = self._current + timedelta(seconds=1)
        return self._current


def line(product_name: str, quantity: int, price: str) -> QuoteLineInput:
    return QuoteLineInput(product_name=product_name, quantity=quantity, price=Decimal(price))


def seed_quote(
    store: QuoteStore,
    *,
    client_id: str = CUSTOMER.actor_id,
    vendor_id: str = VENDOR.actor_id,
    items=None,
    notes: str | None = None,
    status: str = "pending",
):
    lines = items or [line("Disc bearing 6204", 2, "10.00"), line("V-belt B-68", 1, "5.50")]
    quote = store.create_quote(client_id=client_id, vendor_id=vendor_id, items=lines, notes=notes)
    if status != "pending":
        quote = store.update_status(quote.id, status)
    return quote


def seed_profiles(store: QuoteStore) -> None:
    store.upsert_profile(user_id=CUSTOMER.actor_id, full_name="Fazenda Boa Vista", role="customer")
    store.upsert_profile(user_id=VENDOR.actor_id, full_name="AgroPecas", role="vendor")
