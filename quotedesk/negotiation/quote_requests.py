from __future__ import annotations

import logging
from typing import Any, Dict, List

from quotedesk.core.event_bus import EventBus, QuoteRequested, get_event_bus
from quotedesk.domain.contracts import ActorIdentity, QuoteLineInput, QuoteRequestInput, ServiceOutput
from quotedesk.errors import PermissionDenied, ValidationFailed
from quotedesk.negotiation.draft import parse_notes, parse_price, parse_quantity
from quotedesk.negotiation.models import _parse_timestamp
from quotedesk.negotiation.transition_policy import allowed_actions


MAX_LINES_PER_REQUEST = 100


def parse_quote_request(payload: Dict[str, Any] | None) -> QuoteRequestInput:
    body = dict(payload or {})

    vendor_id = str(body.get("vendor_id") or "").strip()
    if not vendor_id:
        raise ValidationFailed("vendor_required", field="vendor_id")

    raw_items = body.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationFailed("items_required", field="items")
    if len(raw_items) > MAX_LINES_PER_REQUEST:
        raise ValidationFailed("validation_error", field="items")

    lines: List[QuoteLineInput] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationFailed("validation_error", field="items")
        product_name = str(raw.get("product_name") or "").strip()
        if not product_name:
            raise ValidationFailed("product_name_required", field="product_name")
        lines.append(
            QuoteLineInput(
                product_name=product_name,
                quantity=parse_quantity(raw.get("quantity", 1)),
                price=parse_price(raw.get("price", "0")),
            )
        )

    valid_until = body.get("valid_until")
    if valid_until not in (None, ""):
        try:
            _parse_timestamp(valid_until)
        except ValueError:
            raise ValidationFailed("field_invalid", field="valid_until") from None
    else:
        valid_until = None

    return QuoteRequestInput(
        vendor_id=vendor_id,
        items=lines,
        notes=parse_notes(body.get("notes")),
        valid_until=valid_until,
    )


class QuoteRequestService:
    """Customer-side creation of a pending quote with its first item lines."""

    def __init__(self, store, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.event_bus = event_bus or get_event_bus()
        self._logger = logging.getLogger("quotedesk")

    def create_quote_request(self, identity: ActorIdentity, request_input: QuoteRequestInput) -> ServiceOutput:
        if identity.actor_role != "customer":
            raise PermissionDenied(payload={"role": identity.actor_role})
        if request_input.vendor_id == identity.actor_id:
            raise ValidationFailed("vendor_required", field="vendor_id")

        vendor = self.store.get_profile(request_input.vendor_id)
        if vendor is not None and vendor.get("role") not in {"vendor", "admin"}:
            raise ValidationFailed("vendor_required", field="vendor_id")

        with self.store.transaction():
            quote = self.store.create_quote(
                client_id=identity.actor_id,
                vendor_id=request_input.vendor_id,
                items=request_input.items,
                notes=request_input.notes,
                valid_until=_parse_timestamp(request_input.valid_until),
            )
            self.store.add_status_event(
                quote.id,
                from_status=None,
                to_status=quote.status,
                reason="requested",
                actor_id=identity.actor_id,
                actor_role=identity.actor_role,
            )
            items = self.store.get_items(quote.id)

        self._logger.info(
            "quote_requested",
            extra={"quote_id": quote.id, "quote_number": quote.quote_number, "items": len(items)},
        )
        self.event_bus.publish(
            QuoteRequested(
                quote_id=quote.id,
                quote_number=quote.quote_number,
                client_id=quote.client_id,
                vendor_id=quote.vendor_id,
                items_created=len(items),
                total_amount=str(quote.total_amount),
            )
        )

        payload = quote.to_payload()
        payload["items"] = [item.to_payload() for item in items]
        payload["allowed_actions"] = allowed_actions(quote, identity.actor_role, identity.actor_id)
        return ServiceOutput(payload=payload, status_code=201)
