from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class ActorIdentity:
    actor_id: str
    actor_role: str


@dataclass(frozen=True)
class NegotiationResult:
    """Outcome of a controller operation: either ``value`` or ``error`` is set."""

    ok: bool
    value: Any = None
    error: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "NegotiationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Any) -> "NegotiationResult":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class QuoteLineInput:
    product_name: str
    quantity: Any
    price: Any


@dataclass(frozen=True)
class QuoteRequestInput:
    vendor_id: str
    items: List[QuoteLineInput]
    notes: str | None = None
    valid_until: str | None = None
