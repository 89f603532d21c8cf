from __future__ import annotations

from typing import Any, Dict, Iterable

from cotiz.infrastructure.repositories.base import BaseRepository


_UPDATABLE_COLUMNS = (
    "name",
    "order_level",
    "amount_threshold",
    "max_amount_threshold",
    "approvers",
    "active",
)


class ApprovalLevelRepository(BaseRepository):
    def list_active(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM approval_levels
            WHERE client_id = ? AND active = ?
            ORDER BY amount_threshold ASC, created_at ASC, id ASC
            """,
            (self.client_id, True),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_levels(self, db, *, include_inactive: bool = True) -> list[dict]:
        if include_inactive:
            rows = db.execute(
                """
                SELECT *
                FROM approval_levels
                WHERE client_id = ?
                ORDER BY order_level ASC, amount_threshold ASC, id ASC
                """,
                (self.client_id,),
            ).fetchall()
        else:
            rows = db.execute(
                """
                SELECT *
                FROM approval_levels
                WHERE client_id = ? AND active = ?
                ORDER BY order_level ASC, amount_threshold ASC, id ASC
                """,
                (self.client_id, True),
            ).fetchall()
        return self.rows_to_dicts(rows)

    def get_by_id(self, db, level_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM approval_levels
            WHERE id = ? AND client_id = ?
            LIMIT 1
            """,
            (level_id, self.client_id),
        ).fetchone()
        return dict(row) if row else None

    def insert(
        self,
        db,
        *,
        name: str,
        order_level: int,
        amount_threshold: str,
        max_amount_threshold: str | None,
        approvers: Iterable[str],
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO approval_levels (
                client_id, name, order_level, amount_threshold, max_amount_threshold,
                approvers, active, created_by
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.client_id,
                name,
                int(order_level),
                amount_threshold,
                max_amount_threshold,
                self.dump_json(list(approvers)),
                True,
                created_by,
            ),
        )
        return self.inserted_id(cursor)

    def update_fields(self, db, level_id: int, fields: Dict[str, Any]) -> int:
        columns = [column for column in _UPDATABLE_COLUMNS if column in fields]
        if not columns:
            return 0
        values = []
        for column in columns:
            value = fields[column]
            if column == "approvers":
                value = self.dump_json(list(value))
            elif column == "active":
                value = bool(value)
            values.append(value)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        cursor = db.execute(
            f"""
            UPDATE approval_levels
            SET {assignments}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND client_id = ?
            """,
            (*values, level_id, self.client_id),
        )
        return int(cursor.rowcount or 0)
