from __future__ import annotations

import logging
from typing import Any

from flask import current_app, has_app_context

from cotiz.contexts.approvals.application.level_store import CachedLevelStore
from cotiz.contexts.approvals.domain.resolver import REASON_NO_LEVELS_CONFIGURED, select_level
from cotiz.domain.contracts import LevelResolution, parse_amount
from cotiz.errors import ConfigurationError, ValidationError
from cotiz.observability import observe_approval_resolution
from cotiz.tenant import normalize_client_id


_LOGGER = logging.getLogger("cotiz")


class ApprovalLevelResolver:
    def __init__(self, level_store: CachedLevelStore | None = None, require_levels: bool | None = None) -> None:
        self.level_store = level_store or CachedLevelStore()
        self._require_levels_override = require_levels

    def _require_levels(self) -> bool:
        if self._require_levels_override is not None:
            return bool(self._require_levels_override)
        if has_app_context():
            return bool(current_app.config.get("APPROVAL_REQUIRE_LEVELS", True))
        return True

    def resolve_level(self, db, client_id: str, amount: Any) -> LevelResolution:
        scope = normalize_client_id(client_id)
        if not scope:
            raise ValidationError(code="client_required", message_key="client_required")
        value = parse_amount(amount)

        levels = self.level_store.list_active(db, scope)
        if not levels:
            if self._require_levels():
                observe_approval_resolution("not_configured")
                _LOGGER.warning("approval_levels_not_configured", extra={"client_id": scope})
                raise ConfigurationError(details=f"cliente {scope} sem niveis de aprovacao ativos")
            observe_approval_resolution(REASON_NO_LEVELS_CONFIGURED)
            return LevelResolution(
                amount=value,
                level=None,
                approval_required=False,
                reason=REASON_NO_LEVELS_CONFIGURED,
            )

        resolution = select_level(levels, value)
        observe_approval_resolution(resolution.reason)
        return resolution
