from __future__ import annotations

from typing import Iterable

from cotiz.infrastructure.repositories.base import BaseRepository


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE id = ? AND client_id = ?
            LIMIT 1
            """,
            (quote_id, self.client_id),
        ).fetchone()
        return dict(row) if row else None

    def insert(self, db, *, title: str, total: str, status: str, created_by: str | None) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotes (client_id, title, total, status, created_by)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.client_id, title, total, status, created_by),
        )
        return self.inserted_id(cursor)

    def list_by_status(self, db, status: str, *, limit: int = 200) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE status = ? AND client_id = ?
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (status, self.client_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def update_details(
        self,
        db,
        quote_id: int,
        *,
        title: str,
        total: str,
        allowed_statuses: Iterable[str],
    ) -> int:
        statuses = tuple(allowed_statuses)
        placeholders = ",".join("?" for _ in statuses)
        cursor = db.execute(
            f"""
            UPDATE quotes
            SET title = ?, total = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND client_id = ? AND status IN ({placeholders})
            """,
            (title, total, quote_id, self.client_id, *statuses),
        )
        return int(cursor.rowcount or 0)

    def start_approval_cycle(
        self,
        db,
        quote_id: int,
        *,
        expected_status: str,
        expected_cycle: int,
        to_status: str,
        approval_level_id: int | None,
    ) -> int:
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = ?,
                approval_level_id = ?,
                approval_cycle = approval_cycle + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND client_id = ? AND status = ? AND approval_cycle = ?
            """,
            (to_status, approval_level_id, quote_id, self.client_id, expected_status, int(expected_cycle)),
        )
        return int(cursor.rowcount or 0)

    def update_approval_state(self, db, quote_id: int, *, to_status: str, expected_cycle: int) -> int:
        """Close a pending approval; zero rows means another decision already won."""
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND client_id = ? AND status = 'pending_approval' AND approval_cycle = ?
            """,
            (to_status, quote_id, self.client_id, int(expected_cycle)),
        )
        return int(cursor.rowcount or 0)

    def reopen(self, db, quote_id: int, *, expected_cycle: int) -> int:
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = 'draft', approval_level_id = NULL, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND client_id = ? AND status = 'rejected' AND approval_cycle = ?
            """,
            (quote_id, self.client_id, int(expected_cycle)),
        )
        return int(cursor.rowcount or 0)
