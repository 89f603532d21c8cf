from __future__ import annotations

import json
from typing import Any, Dict

from cotiz.infrastructure.repositories.base import BaseRepository


class AuditLogRepository(BaseRepository):
    def add(
        self,
        db,
        *,
        action: str,
        entity_type: str,
        entity_id: int | None,
        actor_id: str | None,
        details: Dict[str, Any] | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO audit_logs (client_id, actor_id, action, entity_type, entity_id, details)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.client_id, actor_id, action, entity_type, entity_id, self.dump_json(details or {})),
        )
        return self.inserted_id(cursor)

    def list_for_entity(self, db, *, entity_type: str, entity_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM audit_logs
            WHERE entity_type = ? AND entity_id = ? AND client_id = ?
            ORDER BY id ASC
            """,
            (entity_type, entity_id, self.client_id),
        ).fetchall()
        entries = self.rows_to_dicts(rows)
        for entry in entries:
            try:
                entry["details"] = json.loads(entry.get("details") or "{}")
            except (TypeError, ValueError):
                entry["details"] = {}
        return entries
