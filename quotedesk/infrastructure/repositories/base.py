from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from quotedesk.negotiation.models import CENT


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def placeholders(count: int) -> str:
        return ", ".join("?" for _ in range(count))

    @staticmethod
    def money_param(db, value: Decimal) -> Any:
        amount = Decimal(value).quantize(CENT)
        if db.backend == "postgres":
            return amount
        # SQLite has no exact decimal type; amounts are kept as two-decimal strings.
        return str(amount)
