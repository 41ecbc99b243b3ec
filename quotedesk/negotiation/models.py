from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Tuple


QUOTE_STATUSES: Tuple[str, ...] = ("pending", "sent", "accepted", "rejected", "revised", "cancelled")
TERMINAL_STATUSES = frozenset({"accepted", "rejected", "cancelled"})

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a decimal amount: {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc


def format_amount(value: Decimal) -> str:
    return str(to_decimal(value).quantize(CENT))


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            parsed = datetime.strptime(raw, "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class QuoteItem:
    id: str
    quote_id: str
    product_name: str
    quantity: int
    price: Decimal

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuoteItem":
        return cls(
            id=str(row["id"]),
            quote_id=str(row["quote_id"]),
            product_name=str(row["product_name"] or ""),
            quantity=int(row["quantity"]),
            price=to_decimal(row["price"]).quantize(CENT),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": format_amount(self.price),
            "subtotal": format_amount(self.price * self.quantity),
        }


@dataclass(frozen=True)
class Quote:
    id: str
    quote_number: str
    status: str
    client_id: str
    vendor_id: str
    notes: str | None
    total_amount: Decimal
    valid_until: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Quote":
        return cls(
            id=str(row["id"]),
            quote_number=str(row["quote_number"]),
            status=str(row["status"]),
            client_id=str(row["client_id"]),
            vendor_id=str(row["vendor_id"]),
            notes=row["notes"],
            total_amount=to_decimal(row["total_amount"]).quantize(CENT),
            valid_until=_parse_timestamp(row["valid_until"]),
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        # Advisory only: nothing transitions a quote because of its validity date.
        if self.valid_until is None:
            return False
        return (now or datetime.now(timezone.utc)) > self.valid_until

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_number": self.quote_number,
            "status": self.status,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "notes": self.notes,
            "total_amount": format_amount(self.total_amount),
            "valid_until": _iso(self.valid_until),
            "is_expired": self.is_expired(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class QuoteDetail:
    quote: Quote
    items: Tuple[QuoteItem, ...] = ()
    client_name: str | None = None
    vendor_name: str | None = None
    allowed_actions: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.quote.id

    @property
    def status(self) -> str:
        return self.quote.status

    @property
    def total_amount(self) -> Decimal:
        return self.quote.total_amount

    def item(self, item_id: str) -> QuoteItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_payload(self, *, include_items: bool = True) -> Dict[str, Any]:
        payload = self.quote.to_payload()
        payload["client_name"] = self.client_name
        payload["vendor_name"] = self.vendor_name
        payload["allowed_actions"] = list(self.allowed_actions)
        if include_items:
            payload["items"] = [item.to_payload() for item in self.items]
        return payload


@dataclass(frozen=True)
class QuoteFilter:
    client_id: str | None = None
    vendor_id: str | None = None
    statuses: Tuple[str, ...] = field(default_factory=tuple)
    limit: int = 200
