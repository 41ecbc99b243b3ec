"""Draft Buffer: an uncommitted working copy of a quote's editable fields.

Drafts are immutable values. Every edit returns a new draft with its live
total recomputed, so the committed quote is never touched until the
controller saves.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Mapping, Tuple

from quotedesk.errors import TransitionDenied, ValidationFailed
from quotedesk.negotiation.models import CENT, QuoteDetail, to_decimal
from quotedesk.negotiation.totals import compute_total
from quotedesk.negotiation.transition_policy import allowed_actions, authorize


EDITABLE_FIELDS = ("quantity", "price")


@dataclass(frozen=True)
class DraftItem:
    id: str
    product_name: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class Draft:
    quote_id: str
    notes: str | None
    items: Tuple[DraftItem, ...]
    total_amount: Decimal

    def item(self, item_id: str) -> DraftItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "quote_id": self.quote_id,
            "notes": self.notes,
            "items": [
                {
                    "id": item.id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "price": str(item.price.quantize(CENT)),
                }
                for item in self.items
            ],
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class ItemDelta:
    item_id: str
    quantity: int
    price: Decimal
    previous_quantity: int
    previous_price: Decimal


@dataclass(frozen=True)
class DraftDiff:
    changed_items: Tuple[ItemDelta, ...]
    notes_changed: bool

    @property
    def is_empty(self) -> bool:
        return not self.changed_items and not self.notes_changed


def parse_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationFailed("quantity_invalid", field="quantity")
    if isinstance(value, int):
        quantity = value
    else:
        try:
            parsed = to_decimal(value)
        except ValueError:
            raise ValidationFailed("quantity_invalid", field="quantity") from None
        if not parsed.is_finite() or parsed != parsed.to_integral_value():
            raise ValidationFailed("quantity_invalid", field="quantity")
        quantity = int(parsed)
    if quantity <= 0:
        raise ValidationFailed("quantity_invalid", field="quantity")
    return quantity


def parse_price(value: Any) -> Decimal:
    try:
        price = to_decimal(value)
    except ValueError:
        raise ValidationFailed("price_invalid", field="price") from None
    if not price.is_finite() or price < 0:
        raise ValidationFailed("price_invalid", field="price")
    if price != price.quantize(CENT):
        raise ValidationFailed("price_invalid", field="price")
    return price.quantize(CENT)


def parse_notes(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed("notes_invalid", field="notes")
    return value


def begin_edit(detail: QuoteDetail, identity) -> Draft:
    """Copy the committed quote into a new draft, if the actor may revise it."""
    quote = detail.quote
    decision = authorize(quote.status, identity.actor_role, identity.actor_id, quote, "revise")
    if not decision.allowed:
        raise TransitionDenied(
            action="revise",
            status=quote.status,
            actor_role=identity.actor_role,
            reason=decision.reason,
            allowed_actions=allowed_actions(quote, identity.actor_role, identity.actor_id),
        )
    items = tuple(
        DraftItem(id=item.id, product_name=item.product_name, quantity=item.quantity, price=item.price)
        for item in detail.items
    )
    return Draft(quote_id=quote.id, notes=quote.notes, items=items, total_amount=compute_total(items))


def set_item_field(draft: Draft, item_id: str, field: str, value: Any) -> Draft:
    if field not in EDITABLE_FIELDS:
        raise ValidationFailed("field_invalid", field=str(field))
    if draft.item(item_id) is None:
        raise ValidationFailed("quote_item_not_found", field="items", payload={"item_id": str(item_id)})

    parsed: Any = parse_quantity(value) if field == "quantity" else parse_price(value)
    items = tuple(replace(item, **{field: parsed}) if item.id == item_id else item for item in draft.items)
    return replace(draft, items=items, total_amount=compute_total(items))


def set_notes(draft: Draft, text: Any) -> Draft:
    return replace(draft, notes=parse_notes(text))


def validate_draft(draft: Draft) -> Draft:
    """Re-check a caller-built draft before it is committed.

    Drafts made with ``dataclasses.replace`` skip the field parsers, so
    every line and the notes go through them again here.
    """
    items = []
    for item in draft.items:
        if not isinstance(item.id, str) or not item.id:
            raise ValidationFailed("quote_item_not_found", field="items", payload={"item_id": str(item.id)})
        items.append(replace(item, quantity=parse_quantity(item.quantity), price=parse_price(item.price)))
    checked = tuple(items)
    return replace(draft, notes=parse_notes(draft.notes), items=checked, total_amount=compute_total(checked))


def diff(committed: QuoteDetail, draft: Draft) -> DraftDiff:
    committed_items = {item.id: item for item in committed.items}
    changed = []
    for item in draft.items:
        original = committed_items.get(item.id)
        if original is None:
            raise ValidationFailed("quote_item_not_found", field="items", payload={"item_id": item.id})
        if original.quantity != item.quantity or original.price != item.price:
            changed.append(
                ItemDelta(
                    item_id=item.id,
                    quantity=item.quantity,
                    price=item.price,
                    previous_quantity=original.quantity,
                    previous_price=original.price,
                )
            )
    notes_changed = (committed.quote.notes or "") != (draft.notes or "")
    return DraftDiff(changed_items=tuple(changed), notes_changed=notes_changed)


def draft_from_payload(detail: QuoteDetail, payload: Mapping[str, Any] | None) -> Draft:
    """Build a draft from a revise request body.

    Lines that are not mentioned keep their committed values, and so does
    ``notes`` when the key is absent.
    """
    body = dict(payload or {})
    items = {
        item.id: DraftItem(id=item.id, product_name=item.product_name, quantity=item.quantity, price=item.price)
        for item in detail.items
    }

    raw_items = body.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationFailed("validation_error", field="items")
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationFailed("validation_error", field="items")
        item_id = str(raw.get("id") or "").strip()
        current = items.get(item_id)
        if current is None:
            raise ValidationFailed("quote_item_not_found", field="items", payload={"item_id": item_id})
        if "quantity" in raw:
            current = replace(current, quantity=parse_quantity(raw.get("quantity")))
        if "price" in raw:
            current = replace(current, price=parse_price(raw.get("price")))
        items[item_id] = current

    notes = parse_notes(body["notes"]) if "notes" in body else detail.quote.notes
    ordered = tuple(items[item.id] for item in detail.items)
    return Draft(quote_id=detail.quote.id, notes=notes, items=ordered, total_amount=compute_total(ordered))
