from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from quotedesk.negotiation.models import CENT, to_decimal


ZERO = Decimal("0.00")


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        if name not in item:
            raise TypeError(f"quote item is missing '{name}'")
        return item[name]
    if not hasattr(item, name):
        raise TypeError(f"quote item is missing '{name}'")
    return getattr(item, name)


def line_subtotal(item: Any) -> Decimal:
    quantity = _field(item, "quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise TypeError(f"quantity must be an int, got {type(quantity).__name__}")
    price = to_decimal(_field(item, "price"))
    return price * quantity


def compute_total(items: Iterable[Any]) -> Decimal:
    """Sum of quantity x price over the items, in currency minor units.

    Accepts QuoteItem/DraftItem instances or plain dicts. An empty sequence
    totals to zero.
    """
    total = ZERO
    for item in items:
        total += line_subtotal(item)
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def totals_consistent(total_amount: Any, items: Iterable[Any]) -> bool:
    return to_decimal(total_amount).quantize(CENT) == compute_total(items)
