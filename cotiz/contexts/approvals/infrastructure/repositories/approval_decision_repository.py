from __future__ import annotations

from cotiz.infrastructure.repositories.base import BaseRepository


class ApprovalDecisionRepository(BaseRepository):
    """Append-only store; the schema rejects UPDATE and DELETE on this table."""

    def append(
        self,
        db,
        *,
        quote_id: int,
        level_id: int | None,
        approver_id: str,
        decision: str,
        comment: str | None,
        amount_at_decision: str,
        approval_cycle: int,
        previous_hash: str,
        entry_hash: str,
        decided_at: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO approval_decisions (
                client_id, quote_id, level_id, approver_id, decision, comment,
                amount_at_decision, approval_cycle, previous_hash, entry_hash, decided_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.client_id,
                quote_id,
                level_id,
                approver_id,
                decision,
                comment,
                amount_at_decision,
                int(approval_cycle),
                previous_hash,
                entry_hash,
                decided_at,
            ),
        )
        return self.inserted_id(cursor)

    def list_for_quote(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM approval_decisions
            WHERE quote_id = ? AND client_id = ?
            ORDER BY id ASC
            """,
            (quote_id, self.client_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def last_for_quote(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM approval_decisions
            WHERE quote_id = ? AND client_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (quote_id, self.client_id),
        ).fetchone()
        return dict(row) if row else None
