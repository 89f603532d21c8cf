from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from cotiz.contexts.approvals.application.level_store import CachedLevelStore
from cotiz.contexts.approvals.application.resolver_service import ApprovalLevelResolver
from cotiz.contexts.approvals.domain.authorization import SYSTEM_APPROVER_ID
from cotiz.contexts.approvals.infrastructure.repositories.approval_level_repository import (
    ApprovalLevelRepository,
)
from cotiz.contexts.approvals.infrastructure.repositories.audit_log_repository import AuditLogRepository
from cotiz.contexts.approvals.infrastructure.repositories.status_event_repository import StatusEventRepository
from cotiz.core import ApprovalLevelChanged, EventBus, get_event_bus
from cotiz.domain.contracts import ApprovalLevel, ApprovalLevelInput, LevelResolution, format_amount, parse_amount
from cotiz.errors import NotFoundError, ValidationError
from cotiz.tenant import normalize_client_id


_LOGGER = logging.getLogger("cotiz")

AUDIT_ENTITY = "approval_levels"


def normalize_approvers(raw: Any) -> List[str]:
    if isinstance(raw, str):
        candidates: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        candidates = raw
    else:
        candidates = ()
    approvers: List[str] = []
    for candidate in candidates:
        value = str(candidate or "").strip()
        if value and value not in approvers:
            approvers.append(value)
    return approvers


def _parse_order_level(value: Any) -> int:
    if value is None or value == "":
        return 1
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(code="order_level_invalid", message_key="order_level_invalid") from None
    if parsed < 1:
        raise ValidationError(code="order_level_invalid", message_key="order_level_invalid")
    return parsed


class ApprovalLevelService:
    """Administration of a client's approval levels.

    Validation mirrors what resolution relies on: non-empty approver lists,
    non-negative thresholds and a single active level per threshold.
    """

    def __init__(
        self,
        level_store: CachedLevelStore | None = None,
        resolver: ApprovalLevelResolver | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.level_store = level_store or CachedLevelStore()
        self.resolver = resolver or ApprovalLevelResolver(level_store=self.level_store)
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def _scope(client_id: str | None) -> str:
        scope = normalize_client_id(client_id)
        if not scope:
            raise ValidationError(code="client_required", message_key="client_required")
        return scope

    @staticmethod
    def _get_level(db, repository: ApprovalLevelRepository, level_id: int) -> ApprovalLevel:
        row = repository.get_by_id(db, level_id)
        if not row:
            raise NotFoundError(code="approval_level_not_found", message_key="approval_level_not_found")
        return ApprovalLevel.from_row(row)

    @staticmethod
    def _validated(
        *,
        name: Any,
        amount_threshold: Any,
        max_amount_threshold: Any,
        approvers: Any,
        order_level: Any,
    ) -> Dict[str, Any]:
        normalized_name = str(name or "").strip()
        if not normalized_name:
            raise ValidationError(code="name_required", message_key="name_required")
        threshold = parse_amount(amount_threshold, field_name="amount_threshold")
        maximum: Decimal | None = None
        if max_amount_threshold not in (None, ""):
            maximum = parse_amount(max_amount_threshold, field_name="max_amount_threshold")
            if maximum < threshold:
                raise ValidationError(code="max_amount_threshold_invalid", message_key="max_amount_threshold_invalid")
        normalized_approvers = normalize_approvers(approvers)
        if not normalized_approvers:
            raise ValidationError(code="approvers_required", message_key="approvers_required")
        if SYSTEM_APPROVER_ID in normalized_approvers:
            raise ValidationError(code="approver_reserved", message_key="approver_reserved")
        return {
            "name": normalized_name,
            "amount_threshold": threshold,
            "max_amount_threshold": maximum,
            "approvers": normalized_approvers,
            "order_level": _parse_order_level(order_level),
        }

    def _ensure_unique_threshold(
        self,
        db,
        repository: ApprovalLevelRepository,
        threshold: Decimal,
        *,
        exclude_id: int | None = None,
    ) -> None:
        for row in repository.list_active(db):
            level = ApprovalLevel.from_row(row)
            if level.id != exclude_id and level.amount_threshold == threshold:
                raise ValidationError(
                    code="approval_threshold_conflict",
                    message_key="approval_threshold_conflict",
                    http_status=409,
                    payload={"conflicting_level_id": level.id},
                )

    def _record(
        self,
        db,
        *,
        client_id: str,
        actor_id: str | None,
        action: str,
        level_id: int,
        details: Dict[str, Any],
        event_action: str,
        from_status: str | None = None,
        to_status: str | None = None,
    ) -> None:
        AuditLogRepository(client_id=client_id).add(
            db,
            action=action,
            entity_type=AUDIT_ENTITY,
            entity_id=level_id,
            actor_id=actor_id,
            details=details,
        )
        if to_status is not None:
            StatusEventRepository(client_id=client_id).add_event(
                db,
                entity="approval_level",
                entity_id=level_id,
                from_status=from_status,
                to_status=to_status,
                reason=event_action,
                actor_id=actor_id,
            )

    def _publish_change(self, client_id: str, level_id: int, action: str) -> None:
        self.level_store.invalidate(client_id)
        self.event_bus.publish(ApprovalLevelChanged(client_id=client_id, level_id=level_id, action=action))

    def list_levels(self, db, *, client_id: str, include_inactive: bool = True) -> List[ApprovalLevel]:
        scope = self._scope(client_id)
        rows = ApprovalLevelRepository(client_id=scope).list_levels(db, include_inactive=include_inactive)
        return [ApprovalLevel.from_row(row) for row in rows]

    def get_level(self, db, *, client_id: str, level_id: int) -> ApprovalLevel:
        scope = self._scope(client_id)
        return self._get_level(db, ApprovalLevelRepository(client_id=scope), level_id)

    def create_level(self, db, *, client_id: str, actor_id: str | None, data: ApprovalLevelInput) -> ApprovalLevel:
        scope = self._scope(client_id)
        repository = ApprovalLevelRepository(client_id=scope)
        values = self._validated(
            name=data.name,
            amount_threshold=data.amount_threshold,
            max_amount_threshold=data.max_amount_threshold,
            approvers=data.approvers,
            order_level=data.order_level,
        )
        try:
            self._ensure_unique_threshold(db, repository, values["amount_threshold"])
            level_id = repository.insert(
                db,
                name=values["name"],
                order_level=values["order_level"],
                amount_threshold=format_amount(values["amount_threshold"]),
                max_amount_threshold=format_amount(values["max_amount_threshold"]),
                approvers=values["approvers"],
                created_by=actor_id,
            )
            self._record(
                db,
                client_id=scope,
                actor_id=actor_id,
                action="CREATE",
                level_id=level_id,
                details={
                    "name": values["name"],
                    "amount_threshold": format_amount(values["amount_threshold"]),
                    "max_amount_threshold": format_amount(values["max_amount_threshold"]),
                    "approvers": values["approvers"],
                    "order_level": values["order_level"],
                },
                event_action="created",
                to_status="active",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        _LOGGER.info("approval_level_created", extra={"client_id": scope, "level_id": level_id})
        self._publish_change(scope, level_id, "created")
        return self._get_level(db, repository, level_id)

    def update_level(
        self,
        db,
        *,
        client_id: str,
        actor_id: str | None,
        level_id: int,
        data: ApprovalLevelInput,
    ) -> ApprovalLevel:
        scope = self._scope(client_id)
        repository = ApprovalLevelRepository(client_id=scope)
        current = self._get_level(db, repository, level_id)
        provided = set(data.provided)
        if not provided:
            raise ValidationError(code="no_changes", message_key="no_changes")

        merged = {
            "name": data.name if "name" in provided else current.name,
            "amount_threshold": data.amount_threshold if "amount_threshold" in provided else current.amount_threshold,
            "max_amount_threshold": (
                data.max_amount_threshold if "max_amount_threshold" in provided else current.max_amount_threshold
            ),
            "approvers": data.approvers if "approvers" in provided else list(current.approvers),
            "order_level": data.order_level if "order_level" in provided else current.order_level,
        }
        values = self._validated(**merged)
        active = bool(data.active) if "active" in provided and data.active is not None else current.active

        fields: Dict[str, Any] = {
            "name": values["name"],
            "order_level": values["order_level"],
            "amount_threshold": format_amount(values["amount_threshold"]),
            "max_amount_threshold": format_amount(values["max_amount_threshold"]),
            "approvers": values["approvers"],
            "active": active,
        }
        before = current.to_payload()
        changes = {
            key: {"from": before.get(key), "to": value}
            for key, value in fields.items()
            if before.get(key) != value
        }

        try:
            if active:
                self._ensure_unique_threshold(db, repository, values["amount_threshold"], exclude_id=current.id)
            repository.update_fields(db, current.id, fields)
            self._record(
                db,
                client_id=scope,
                actor_id=actor_id,
                action="UPDATE",
                level_id=current.id,
                details={"changes": changes},
                event_action="updated",
                from_status="active" if current.active else "inactive",
                to_status=("active" if active else "inactive") if active != current.active else None,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        _LOGGER.info("approval_level_updated", extra={"client_id": scope, "level_id": current.id})
        self._publish_change(scope, current.id, "updated")
        return self._get_level(db, repository, current.id)

    def deactivate_level(self, db, *, client_id: str, actor_id: str | None, level_id: int) -> ApprovalLevel:
        """Soft delete. Quotes already frozen to the level keep pointing at it."""
        scope = self._scope(client_id)
        repository = ApprovalLevelRepository(client_id=scope)
        current = self._get_level(db, repository, level_id)
        if not current.active:
            return current
        try:
            repository.update_fields(db, current.id, {"active": False})
            self._record(
                db,
                client_id=scope,
                actor_id=actor_id,
                action="DELETE",
                level_id=current.id,
                details={"name": current.name, "amount_threshold": format_amount(current.amount_threshold)},
                event_action="deactivated",
                from_status="active",
                to_status="inactive",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        _LOGGER.info("approval_level_deactivated", extra={"client_id": scope, "level_id": current.id})
        self._publish_change(scope, current.id, "deactivated")
        return self._get_level(db, repository, current.id)

    def preview_resolution(self, db, *, client_id: str, amount: Any) -> LevelResolution:
        return self.resolver.resolve_level(db, self._scope(client_id), amount)
