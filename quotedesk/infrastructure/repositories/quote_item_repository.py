from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from quotedesk.infrastructure.repositories.base import BaseRepository


class QuoteItemRepository(BaseRepository):
    def list_for_quote(self, db, quote_id: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quote_id, product_name, quantity, price, position
            FROM quote_items
            WHERE quote_id = ?
            ORDER BY position ASC, id ASC
            """,
            (quote_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_quotes(self, db, quote_ids: Sequence[str]) -> list[dict]:
        if not quote_ids:
            return []
        rows = db.execute(
            f"""
            SELECT id, quote_id, product_name, quantity, price, position
            FROM quote_items
            WHERE quote_id IN ({self.placeholders(len(quote_ids))})
            ORDER BY quote_id ASC, position ASC, id ASC
            """,
            list(quote_ids),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def insert(
        self,
        db,
        *,
        item_id: str,
        quote_id: str,
        product_name: str,
        quantity: int,
        price: Decimal,
        position: int,
        now: str,
    ) -> None:
        db.execute(
            """
            INSERT INTO quote_items (id, quote_id, product_name, quantity, price, position, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (item_id, quote_id, product_name, int(quantity), self.money_param(db, price), int(position), now, now),
        )

    def update_line(
        self,
        db,
        *,
        item_id: str,
        quote_id: str,
        quantity: int,
        price: Decimal,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            UPDATE quote_items
            SET quantity = ?, price = ?, updated_at = ?
            WHERE id = ? AND quote_id = ?
            """,
            (int(quantity), self.money_param(db, price), now, item_id, quote_id),
        )
        return int(cursor.rowcount or 0)
