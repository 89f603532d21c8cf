from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from cotiz.contexts.approvals.application.level_store import CachedLevelStore
from cotiz.contexts.approvals.application.resolver_service import ApprovalLevelResolver
from cotiz.contexts.approvals.domain.audit_chain import compute_entry_hash, verify_chain
from cotiz.contexts.approvals.domain.authorization import SYSTEM_APPROVER_ID, is_authorized_approver
from cotiz.contexts.approvals.infrastructure.repositories.approval_decision_repository import (
    ApprovalDecisionRepository,
)
from cotiz.contexts.approvals.infrastructure.repositories.quote_repository import QuoteRepository
from cotiz.contexts.approvals.infrastructure.repositories.status_event_repository import StatusEventRepository
from cotiz.core import EventBus, QuoteApprovalDecided, QuoteApprovalRequested, get_event_bus
from cotiz.db import DECISION_VALUES
from cotiz.domain.contracts import ApprovalDecision, ApprovalOutcome, Quote, format_amount
from cotiz.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from cotiz.observability import observe_approval_decision
from cotiz.procurement.flow_policy import action_allowed
from cotiz.tenant import normalize_client_id


_LOGGER = logging.getLogger("cotiz")

AUTO_APPROVAL_COMMENT = "auto_approved"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def is_unique_violation(exc: Exception) -> bool:
    pg_code = str(getattr(exc, "pgcode", "") or "").strip()
    if pg_code == "23505":
        return True
    message = str(exc or "").lower()
    if getattr(exc, "__cause__", None) is not None:
        message = f"{message} {str(exc.__cause__ or '').lower()}"
    if "unique constraint failed" in message:
        return True
    return "duplicate key value violates unique constraint" in message


class ApprovalWorkflowService:
    """Moves quotes through ``pending_approval`` and records decisions.

    Every write runs in one transaction on ``db``; the transaction is rolled
    back and the error re-raised on any failure. Events are published only
    after a successful commit.
    """

    def __init__(
        self,
        resolver: ApprovalLevelResolver | None = None,
        level_store: CachedLevelStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.resolver = resolver or ApprovalLevelResolver(level_store=level_store)
        self.level_store = level_store or self.resolver.level_store
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def _scope(client_id: str | None) -> str:
        scope = normalize_client_id(client_id)
        if not scope:
            raise ValidationError(code="client_required", message_key="client_required")
        return scope

    @staticmethod
    def _load_quote(db, quotes: QuoteRepository, quote_id: int) -> Quote:
        row = quotes.get_by_id(db, quote_id)
        if not row:
            raise NotFoundError(code="quote_not_found", message_key="quote_not_found")
        return Quote.from_row(row)

    @staticmethod
    def _invalid_state(quote_id: int, status: str | None, *, message_key: str = "invalid_quote_state"):
        return InvalidStateError(
            message_key=message_key,
            details=f"cotacao {quote_id} em status {status}",
            payload={"quote_id": quote_id, "status": status},
        )

    def _append_decision(
        self,
        db,
        decisions: ApprovalDecisionRepository,
        *,
        client_id: str,
        quote: Quote,
        level_id: int | None,
        approver_id: str,
        decision: str,
        comment: str | None,
        approval_cycle: int,
    ) -> ApprovalDecision:
        previous = decisions.last_for_quote(db, quote.id)
        previous_hash = str(previous["entry_hash"]) if previous else ""
        values: Dict[str, Any] = {
            "client_id": client_id,
            "quote_id": quote.id,
            "level_id": level_id,
            "approver_id": approver_id,
            "decision": decision,
            "comment": comment,
            "amount_at_decision": format_amount(quote.total),
            "approval_cycle": approval_cycle,
            "decided_at": _utc_now_iso(),
        }
        entry_hash = compute_entry_hash(previous_hash, values)
        decision_id = decisions.append(
            db,
            quote_id=quote.id,
            level_id=level_id,
            approver_id=approver_id,
            decision=decision,
            comment=comment,
            amount_at_decision=values["amount_at_decision"],
            approval_cycle=approval_cycle,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            decided_at=values["decided_at"],
        )
        return ApprovalDecision(
            id=decision_id,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            **values,
        )

    def request_approval(self, db, *, client_id: str, quote_id: int, requested_by: str | None = None) -> ApprovalOutcome:
        """Resolve the level for the quote total and open a new approval cycle.

        Amounts below every threshold are approved on the spot with a
        ``system`` decision. ``ConfigurationError`` from the resolver leaves
        the quote untouched.
        """
        scope = self._scope(client_id)
        quotes = QuoteRepository(client_id=scope)
        quote = self._load_quote(db, quotes, quote_id)
        if not action_allowed("cotacao", quote.status, "request_approval"):
            raise self._invalid_state(quote.id, quote.status)

        resolution = self.resolver.resolve_level(db, scope, quote.total)
        next_cycle = quote.approval_cycle + 1
        decision: ApprovalDecision | None = None
        to_status = "pending_approval" if resolution.approval_required else "approved"
        level_id = resolution.level.id if resolution.level is not None else None

        try:
            updated = quotes.start_approval_cycle(
                db,
                quote.id,
                expected_status=quote.status,
                expected_cycle=quote.approval_cycle,
                to_status=to_status,
                approval_level_id=level_id,
            )
            if not updated:
                current = quotes.get_by_id(db, quote.id) or {}
                raise self._invalid_state(quote.id, current.get("status"))
            if not resolution.approval_required:
                decision = self._append_decision(
                    db,
                    ApprovalDecisionRepository(client_id=scope),
                    client_id=scope,
                    quote=quote,
                    level_id=None,
                    approver_id=SYSTEM_APPROVER_ID,
                    decision="approved",
                    comment=AUTO_APPROVAL_COMMENT,
                    approval_cycle=next_cycle,
                )
            StatusEventRepository(client_id=scope).add_event(
                db,
                entity="quote",
                entity_id=quote.id,
                from_status=quote.status,
                to_status=to_status,
                reason="approval_requested" if resolution.approval_required else f"auto_approved:{resolution.reason}",
                actor_id=requested_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        refreshed = self._load_quote(db, quotes, quote.id)
        _LOGGER.info(
            "quote_approval_requested",
            extra={
                "client_id": scope,
                "quote_id": quote.id,
                "approval_cycle": next_cycle,
                "level_id": level_id,
                "auto_approved": not resolution.approval_required,
            },
        )
        if resolution.approval_required:
            self.event_bus.publish(
                QuoteApprovalRequested(
                    client_id=scope,
                    quote_id=quote.id,
                    level_id=int(level_id),
                    approvers=tuple(resolution.level.approvers),
                    amount=format_amount(quote.total),
                    approval_cycle=next_cycle,
                    requested_by=requested_by,
                )
            )
        else:
            observe_approval_decision("auto_approved")
            self.event_bus.publish(
                QuoteApprovalDecided(
                    client_id=scope,
                    quote_id=quote.id,
                    decision="approved",
                    approver_id=SYSTEM_APPROVER_ID,
                    level_id=None,
                    approval_cycle=next_cycle,
                    auto_approved=True,
                    requester_id=requested_by or quote.created_by,
                )
            )
        return ApprovalOutcome(
            quote=refreshed,
            decision=decision,
            level=resolution.level,
            auto_approved=not resolution.approval_required,
        )

    def decide(
        self,
        db,
        *,
        client_id: str,
        quote_id: int,
        approver_id: str | None,
        decision: str,
        comment: str | None = None,
        roles: Iterable[str] = (),
    ) -> ApprovalOutcome:
        scope = self._scope(client_id)
        normalized_decision = str(decision or "").strip().lower()
        if normalized_decision not in DECISION_VALUES:
            raise ValidationError(code="decision_invalid", message_key="decision_invalid")
        normalized_comment = str(comment or "").strip() or None

        quotes = QuoteRepository(client_id=scope)
        quote = self._load_quote(db, quotes, quote_id)
        if quote.status != "pending_approval":
            raise self._invalid_state(quote.id, quote.status)

        level = self.level_store.get_level(db, scope, quote.approval_level_id)
        actor = str(approver_id or "").strip()
        if not is_authorized_approver(level, actor, roles):
            observe_approval_decision("unauthorized")
            _LOGGER.warning(
                "approval_decision_unauthorized",
                extra={"client_id": scope, "quote_id": quote.id, "approver_id": actor or None, "level_id": quote.approval_level_id},
            )
            raise UnauthorizedError(payload={"quote_id": quote.id, "level_id": quote.approval_level_id})

        if normalized_decision == "rejected" and not normalized_comment:
            raise ValidationError(code="rejection_comment_required", message_key="rejection_comment_required")

        try:
            updated = quotes.update_approval_state(
                db,
                quote.id,
                to_status=normalized_decision,
                expected_cycle=quote.approval_cycle,
            )
            if not updated:
                raise self._invalid_state(quote.id, "pending_approval", message_key="decision_conflict")
            recorded = self._append_decision(
                db,
                ApprovalDecisionRepository(client_id=scope),
                client_id=scope,
                quote=quote,
                level_id=level.id,
                approver_id=actor,
                decision=normalized_decision,
                comment=normalized_comment,
                approval_cycle=quote.approval_cycle,
            )
            StatusEventRepository(client_id=scope).add_event(
                db,
                entity="quote",
                entity_id=quote.id,
                from_status="pending_approval",
                to_status=normalized_decision,
                reason=normalized_comment,
                actor_id=actor,
            )
            db.commit()
        except InvalidStateError:
            db.rollback()
            observe_approval_decision("conflict")
            current = quotes.get_by_id(db, quote.id) or {}
            raise self._invalid_state(quote.id, current.get("status"), message_key="decision_conflict") from None
        except Exception as exc:
            db.rollback()
            if is_unique_violation(exc):
                observe_approval_decision("conflict")
                raise self._invalid_state(quote.id, None, message_key="decision_conflict") from exc
            raise

        observe_approval_decision(normalized_decision)
        _LOGGER.info(
            "quote_approval_decided",
            extra={
                "client_id": scope,
                "quote_id": quote.id,
                "decision": normalized_decision,
                "approver_id": actor,
                "level_id": level.id,
                "approval_cycle": quote.approval_cycle,
            },
        )
        self.event_bus.publish(
            QuoteApprovalDecided(
                client_id=scope,
                quote_id=quote.id,
                decision=normalized_decision,
                approver_id=actor,
                level_id=level.id,
                approval_cycle=quote.approval_cycle,
                auto_approved=False,
                requester_id=quote.created_by,
                comment=normalized_comment,
            )
        )
        return ApprovalOutcome(
            quote=self._load_quote(db, quotes, quote.id),
            decision=recorded,
            level=level,
            auto_approved=False,
        )

    def list_decisions(self, db, *, client_id: str, quote_id: int) -> List[ApprovalDecision]:
        scope = self._scope(client_id)
        self._load_quote(db, QuoteRepository(client_id=scope), quote_id)
        rows = ApprovalDecisionRepository(client_id=scope).list_for_quote(db, quote_id)
        return [ApprovalDecision.from_row(row) for row in rows]

    def verify_decision_chain(self, db, *, client_id: str, quote_id: int) -> Dict[str, Any]:
        return verify_chain(self.list_decisions(db, client_id=client_id, quote_id=quote_id))

    def list_pending_for_approver(
        self,
        db,
        *,
        client_id: str,
        approver_id: str | None,
        roles: Iterable[str] = (),
    ) -> List[Quote]:
        scope = self._scope(client_id)
        role_values = tuple(roles or ())
        pending = [Quote.from_row(row) for row in QuoteRepository(client_id=scope).list_by_status(db, "pending_approval")]
        levels: Dict[int, Any] = {}
        visible: List[Quote] = []
        for quote in pending:
            if quote.approval_level_id is None:
                continue
            if quote.approval_level_id not in levels:
                levels[quote.approval_level_id] = self.level_store.get_level(db, scope, quote.approval_level_id)
            if is_authorized_approver(levels[quote.approval_level_id], approver_id, role_values):
                visible.append(quote)
        return visible
