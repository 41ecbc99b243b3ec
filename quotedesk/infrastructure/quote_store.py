"""Quote Store Adapter.

The only component that talks to the database. Driver errors surface as
``StorageFailure`` and row changes are announced on the change feed once
the surrounding transaction has committed.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

import psycopg2

from quotedesk.errors import NotFound, StorageFailure, ValidationFailed
from quotedesk.infrastructure.repositories import (
    QuoteItemRepository,
    QuoteRepository,
    StatusEventRepository,
    UserProfileRepository,
)
from quotedesk.negotiation.change_feed import ChangeEvent, ChangeFeed
from quotedesk.negotiation.models import Quote, QuoteFilter, QuoteItem, _parse_timestamp
from quotedesk.negotiation.totals import compute_total
from quotedesk.observability import observe_storage_failure


DRIVER_ERRORS = (sqlite3.Error, psycopg2.Error)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed width with microseconds so text ordering matches time ordering.
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class QuoteStore:
    def __init__(
        self,
        db,
        *,
        change_feed: ChangeFeed | None = None,
        clock: Clock | None = None,
        quote_number_prefix: str = "QT",
    ) -> None:
        self.db = db
        self.change_feed = change_feed
        self._clock = clock or _utc_now
        self._quote_number_prefix = str(quote_number_prefix or "QT").strip() or "QT"
        self._quotes = QuoteRepository()
        self._items = QuoteItemRepository()
        self._profiles = UserProfileRepository()
        self._status_events = StatusEventRepository()
        self._pending_events: List[ChangeEvent] = []
        self._logger = logging.getLogger("quotedesk")

    # -- plumbing -------------------------------------------------------

    @contextlib.contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except DRIVER_ERRORS as exc:
            observe_storage_failure()
            self._logger.warning(
                "quote_store_failure",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise StorageFailure(details=f"{operation} failed: {type(exc).__name__}") from exc

    @contextlib.contextmanager
    def transaction(self):
        """Group writes into one all-or-nothing unit.

        Change events raised inside are published after the outermost commit
        and discarded on rollback.
        """
        outermost = not self.db.in_transaction
        if outermost:
            self._pending_events = []
        try:
            with self._guard("transaction"):
                with self.db.transaction():
                    yield self
        except BaseException:
            if outermost:
                self._pending_events = []
            raise
        if outermost:
            events, self._pending_events = self._pending_events, []
            self._publish(events)

    def _emit(self, table: str, event_type: str, affected_id: str, quote_id: str) -> None:
        self._pending_events.append(
            ChangeEvent(table=table, event_type=event_type, affected_id=affected_id, quote_id=quote_id)
        )

    def _publish(self, events: Iterable[ChangeEvent]) -> None:
        if self.change_feed is None:
            return
        for event in events:
            self.change_feed.publish(event)

    def now(self) -> str:
        return format_timestamp(self._clock())

    # -- reads ----------------------------------------------------------

    def get(self, quote_id: str) -> Quote | None:
        with self._guard("get"):
            row = self._quotes.get_by_id(self.db, str(quote_id))
        return Quote.from_row(row) if row else None

    def list(self, quote_filter: QuoteFilter) -> List[Quote]:
        with self._guard("list"):
            rows = self._quotes.list_scoped(
                self.db,
                client_id=quote_filter.client_id,
                vendor_id=quote_filter.vendor_id,
                statuses=tuple(quote_filter.statuses),
                limit=quote_filter.limit,
            )
        return [Quote.from_row(row) for row in rows]

    def get_items(self, quote_id: str) -> Tuple[QuoteItem, ...]:
        with self._guard("get_items"):
            rows = self._items.list_for_quote(self.db, str(quote_id))
        return tuple(QuoteItem.from_row(row) for row in rows)

    def get_items_for(self, quote_ids: Sequence[str]) -> Dict[str, Tuple[QuoteItem, ...]]:
        with self._guard("get_items_for"):
            rows = self._items.list_for_quotes(self.db, list(quote_ids))
        grouped: Dict[str, List[QuoteItem]] = {str(quote_id): [] for quote_id in quote_ids}
        for row in rows:
            item = QuoteItem.from_row(row)
            grouped.setdefault(item.quote_id, []).append(item)
        return {quote_id: tuple(items) for quote_id, items in grouped.items()}

    def resolve_display_names(self, user_ids: Sequence[str]) -> Dict[str, str]:
        with self._guard("resolve_display_names"):
            return self._profiles.display_names(self.db, list(user_ids))

    def get_profile(self, user_id: str) -> dict | None:
        with self._guard("get_profile"):
            return self._profiles.get_by_id(self.db, str(user_id))

    def list_status_events(self, quote_id: str, limit: int = 120) -> List[Dict[str, Any]]:
        with self._guard("list_status_events"):
            rows = self._status_events.list_for_entity(
                self.db, entity="quote", entity_id=str(quote_id), limit=limit
            )
        for row in rows:
            occurred_at = _parse_timestamp(row.get("occurred_at"))
            row["occurred_at"] = occurred_at.isoformat().replace("+00:00", "Z") if occurred_at else None
        return rows

    # -- writes ---------------------------------------------------------

    def update_status(self, quote_id: str, status: str) -> Quote:
        with self.transaction():
            updated = self._quotes.update_status(self.db, str(quote_id), status, now=self.now())
            if not updated:
                raise NotFound(quote_id)
            self._emit("quotes", "update", str(quote_id), str(quote_id))
            quote = self.get(quote_id)
        return quote  # type: ignore[return-value]

    def update_header(
        self,
        quote_id: str,
        *,
        notes: str | None,
        total_amount: Decimal,
        status: str,
    ) -> Quote:
        with self.transaction():
            updated = self._quotes.update_header(
                self.db,
                str(quote_id),
                notes=notes,
                total_amount=total_amount,
                status=status,
                now=self.now(),
            )
            if not updated:
                raise NotFound(quote_id)
            self._emit("quotes", "update", str(quote_id), str(quote_id))
            quote = self.get(quote_id)
        return quote  # type: ignore[return-value]

    def upsert_items(self, quote_id: str, items: Iterable[Any]) -> int:
        """Write item quantity/price. Unknown ids are inserted and need a product name."""
        quote_id = str(quote_id)
        written = 0
        with self.transaction():
            now = self.now()
            existing = {item.id: item for item in self.get_items(quote_id)}
            next_position = len(existing)
            for item in items:
                item_id = str(getattr(item, "item_id", None) or getattr(item, "id", "") or "")
                quantity = int(item.quantity)
                price = Decimal(item.price)
                if item_id and item_id in existing:
                    self._items.update_line(
                        self.db, item_id=item_id, quote_id=quote_id, quantity=quantity, price=price, now=now
                    )
                    self._emit("quote_items", "update", item_id, quote_id)
                else:
                    product_name = str(getattr(item, "product_name", "") or "").strip()
                    if not product_name:
                        raise ValidationFailed("product_name_required", field="product_name")
                    item_id = item_id or uuid.uuid4().hex
                    self._items.insert(
                        self.db,
                        item_id=item_id,
                        quote_id=quote_id,
                        product_name=product_name,
                        quantity=quantity,
                        price=price,
                        position=next_position,
                        now=now,
                    )
                    next_position += 1
                    self._emit("quote_items", "insert", item_id, quote_id)
                written += 1
        return written

    def create_quote(
        self,
        *,
        client_id: str,
        vendor_id: str,
        items: Sequence[Any],
        notes: str | None = None,
        valid_until: datetime | None = None,
    ) -> Quote:
        quote_id = uuid.uuid4().hex
        with self.transaction():
            created = self._clock()
            quote_number = self._next_quote_number(created)
            self._quotes.insert(
                self.db,
                quote_id=quote_id,
                quote_number=quote_number,
                client_id=str(client_id),
                vendor_id=str(vendor_id),
                notes=notes,
                total_amount=compute_total(items),
                valid_until=format_timestamp(valid_until) if valid_until else None,
                now=format_timestamp(created),
            )
            self._emit("quotes", "insert", quote_id, quote_id)
            self.upsert_items(quote_id, items)
            quote = self.get(quote_id)
        return quote  # type: ignore[return-value]

    def _next_quote_number(self, created: datetime) -> str:
        day = created.astimezone(timezone.utc).strftime("%Y%m%d")
        for _ in range(8):
            candidate = f"{self._quote_number_prefix}-{day}-{uuid.uuid4().hex[:6].upper()}"
            if not self._quotes.quote_number_exists(self.db, candidate):
                return candidate
        raise StorageFailure(details="could not allocate a unique quote number")

    def add_status_event(
        self,
        quote_id: str,
        *,
        from_status: str | None,
        to_status: str,
        reason: str | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> None:
        with self.transaction():
            self._status_events.add(
                self.db,
                entity="quote",
                entity_id=str(quote_id),
                from_status=from_status,
                to_status=to_status,
                reason=reason,
                actor_id=actor_id,
                actor_role=actor_role,
                occurred_at=self.now(),
            )

    def upsert_profile(self, *, user_id: str, full_name: str | None, role: str) -> None:
        with self.transaction():
            self._profiles.upsert(self.db, user_id=user_id, full_name=full_name, role=role)
