from __future__ import annotations

from typing import Dict, Sequence

from quotedesk.infrastructure.repositories.base import BaseRepository


class UserProfileRepository(BaseRepository):
    def display_names(self, db, user_ids: Sequence[str]) -> Dict[str, str]:
        unique_ids = sorted({str(user_id) for user_id in user_ids if user_id})
        if not unique_ids:
            return {}
        rows = db.execute(
            f"""
            SELECT id, full_name
            FROM user_profiles
            WHERE id IN ({self.placeholders(len(unique_ids))})
            """,
            unique_ids,
        ).fetchall()
        return {str(row["id"]): str(row["full_name"]) for row in rows if row["full_name"]}

    def get_by_id(self, db, user_id: str) -> dict | None:
        row = db.execute(
            "SELECT id, full_name, role FROM user_profiles WHERE id = ? LIMIT 1",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None

    def upsert(self, db, *, user_id: str, full_name: str | None, role: str) -> None:
        db.execute(
            """
            INSERT INTO user_profiles (id, full_name, role)
            VALUES (?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET full_name = excluded.full_name, role = excluded.role
            """,
            (user_id, full_name, role),
        )
