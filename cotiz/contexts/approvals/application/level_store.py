from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Tuple

from cotiz.contexts.approvals.infrastructure.repositories.approval_level_repository import (
    ApprovalLevelRepository,
)
from cotiz.core import ApprovalLevelChanged, EventBus
from cotiz.domain.contracts import ApprovalLevel


class CachedLevelStore:
    """Active approval levels per (database, client), kept for ``ttl_seconds``.

    Entries are dropped early when an ``ApprovalLevelChanged`` event arrives
    for the client. Single-level reads by id always go to the database so a
    decision checks the level's current approvers.
    """

    def __init__(self, ttl_seconds: int = 30, clock: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = max(0, int(ttl_seconds))
        self._clock = clock or time.monotonic
        self._cache: Dict[Tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def configure(self, *, ttl_seconds: int) -> None:
        with self._lock:
            self.ttl_seconds = max(0, int(ttl_seconds))
            self._cache.clear()

    @staticmethod
    def _repository(client_id: str) -> ApprovalLevelRepository:
        return ApprovalLevelRepository(client_id=client_id)

    def list_active(self, db, client_id: str) -> List[ApprovalLevel]:
        cache_key = (str(getattr(db, "identity", "") or ""), client_id)
        now = self._clock()
        with self._lock:
            entry = self._cache.get(cache_key)
            if entry and float(entry["expires_at"]) > now:
                return list(entry["levels"])
            self._cache.pop(cache_key, None)

        rows = self._repository(client_id).list_active(db)
        levels = [ApprovalLevel.from_row(row) for row in rows]
        if self.ttl_seconds > 0:
            with self._lock:
                self._cache[cache_key] = {"expires_at": now + self.ttl_seconds, "levels": tuple(levels)}
        return levels

    def get_level(self, db, client_id: str, level_id: int | None) -> ApprovalLevel | None:
        if level_id is None:
            return None
        row = self._repository(client_id).get_by_id(db, int(level_id))
        return ApprovalLevel.from_row(row) if row else None

    def invalidate(self, client_id: str | None = None) -> None:
        with self._lock:
            if client_id is None:
                self._cache.clear()
                return
            for key in [key for key in self._cache if key[1] == client_id]:
                self._cache.pop(key, None)

    def clear_cache(self) -> None:
        self.invalidate(None)

    def register_event_handlers(self, event_bus: EventBus) -> None:
        event_bus.subscribe(ApprovalLevelChanged, self._on_level_changed)

    def _on_level_changed(self, event: ApprovalLevelChanged) -> None:
        self.invalidate(event.client_id or None)
