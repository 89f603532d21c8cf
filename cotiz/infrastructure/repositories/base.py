from __future__ import annotations

import json
from typing import Any, Iterable


class ClientScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without client scope."""


class BaseRepository:
    def __init__(self, *, client_id: str | None = None) -> None:
        scope = str(client_id or "").strip()
        if not scope:
            raise ClientScopeRequiredError("client_id is required for repository access")
        self.client_id = scope

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def inserted_id(cursor) -> int:
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def dump_json(value: Any) -> str:
        return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)
