from __future__ import annotations

import json
from typing import Any, Dict

from cotiz.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def add(
        self,
        db,
        *,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        action_url: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (client_id, user_id, title, message, type, action_url, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.client_id, user_id, title, message, kind, action_url, self.dump_json(metadata or {})),
        )
        return self.inserted_id(cursor)

    def list_for_user(self, db, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[dict]:
        query = """
            SELECT *
            FROM notifications
            WHERE client_id = ? AND user_id = ?
        """
        params: list[Any] = [self.client_id, user_id]
        if unread_only:
            query += " AND read_at IS NULL"
        query += " ORDER BY id DESC LIMIT ?"
        params.append(int(limit))
        rows = db.execute(query, params).fetchall()
        items = self.rows_to_dicts(rows)
        for item in items:
            try:
                item["metadata"] = json.loads(item.get("metadata") or "{}")
            except (TypeError, ValueError):
                item["metadata"] = {}
        return items
