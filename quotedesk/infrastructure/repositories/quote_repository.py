from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from quotedesk.infrastructure.repositories.base import BaseRepository


_QUOTE_COLUMNS = """
    id, quote_number, status, client_id, vendor_id, notes, total_amount,
    valid_until, created_at, updated_at
"""


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: str) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_QUOTE_COLUMNS}
            FROM quotes
            WHERE id = ?
            LIMIT 1
            """,
            (quote_id,),
        ).fetchone()
        return dict(row) if row else None

    def list_scoped(
        self,
        db,
        *,
        client_id: str | None = None,
        vendor_id: str | None = None,
        statuses: Sequence[str] = (),
        limit: int = 200,
    ) -> list[dict]:
        clauses = []
        params: list = []
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if vendor_id is not None:
            clauses.append("vendor_id = ?")
            params.append(vendor_id)
        if statuses:
            clauses.append(f"status IN ({self.placeholders(len(statuses))})")
            params.extend(statuses)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(1, int(limit)))
        rows = db.execute(
            f"""
            SELECT {_QUOTE_COLUMNS}
            FROM quotes
            {where}
            ORDER BY created_at DESC, quote_number DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def quote_number_exists(self, db, quote_number: str) -> bool:
        row = db.execute(
            "SELECT 1 AS found FROM quotes WHERE quote_number = ? LIMIT 1",
            (quote_number,),
        ).fetchone()
        return row is not None

    def insert(
        self,
        db,
        *,
        quote_id: str,
        quote_number: str,
        client_id: str,
        vendor_id: str,
        notes: str | None,
        total_amount: Decimal,
        valid_until: str | None,
        now: str,
    ) -> None:
        db.execute(
            """
            INSERT INTO quotes (
                id, quote_number, status, client_id, vendor_id, notes, total_amount,
                valid_until, created_at, updated_at
            )
            VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                quote_id,
                quote_number,
                client_id,
                vendor_id,
                notes,
                self.money_param(db, total_amount),
                valid_until,
                now,
                now,
            ),
        )

    def update_status(self, db, quote_id: str, status: str, *, now: str) -> int:
        cursor = db.execute(
            "UPDATE quotes SET status = ?, updated_at = ? WHERE id = ?",
            (status, now, quote_id),
        )
        return int(cursor.rowcount or 0)

    def update_header(
        self,
        db,
        quote_id: str,
        *,
        notes: str | None,
        total_amount: Decimal,
        status: str,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            UPDATE quotes
            SET notes = ?, total_amount = ?, status = ?, updated_at = ?
            WHERE id = ?
            """,
            (notes, self.money_param(db, total_amount), status, now, quote_id),
        )
        return int(cursor.rowcount or 0)
