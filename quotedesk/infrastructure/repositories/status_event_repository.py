from __future__ import annotations

from quotedesk.infrastructure.repositories.base import BaseRepository


class StatusEventRepository(BaseRepository):
    def add(
        self,
        db,
        *,
        entity: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        reason: str | None,
        actor_id: str | None,
        actor_role: str | None,
        occurred_at: str,
    ) -> None:
        db.execute(
            """
            INSERT INTO status_events (
                entity, entity_id, from_status, to_status, reason, actor_id, actor_role, occurred_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (entity, entity_id, from_status, to_status, reason, actor_id, actor_role, occurred_at),
        )

    def list_for_entity(self, db, *, entity: str, entity_id: str, limit: int = 120) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, entity, entity_id, from_status, to_status, reason, actor_id, actor_role, occurred_at
            FROM status_events
            WHERE entity = ? AND entity_id = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (entity, entity_id, max(1, int(limit))),
        ).fetchall()
        return self.rows_to_dicts(rows)
