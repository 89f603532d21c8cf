from __future__ import annotations

import logging
from typing import Any, Dict

from cotiz.contexts.approvals.infrastructure.repositories.approval_decision_repository import (
    ApprovalDecisionRepository,
)
from cotiz.contexts.approvals.infrastructure.repositories.quote_repository import QuoteRepository
from cotiz.contexts.approvals.infrastructure.repositories.status_event_repository import StatusEventRepository
from cotiz.domain.contracts import ApprovalDecision, Quote, QuoteCreateInput, format_amount, parse_amount
from cotiz.errors import InvalidStateError, NotFoundError, ValidationError
from cotiz.procurement.flow_policy import action_allowed, flow_meta, statuses_allowing
from cotiz.tenant import normalize_client_id


_LOGGER = logging.getLogger("cotiz")

CREATABLE_STATUSES = ("draft", "sent", "received")


class QuoteService:
    """Collaborator operations on quotes; approval transitions live in the workflow service."""

    @staticmethod
    def _repository(client_id: str | None) -> QuoteRepository:
        scope = normalize_client_id(client_id)
        if not scope:
            raise ValidationError(code="client_required", message_key="client_required")
        return QuoteRepository(client_id=scope)

    @staticmethod
    def _load(db, repository: QuoteRepository, quote_id: int) -> Quote:
        row = repository.get_by_id(db, quote_id)
        if not row:
            raise NotFoundError(code="quote_not_found", message_key="quote_not_found")
        return Quote.from_row(row)

    @staticmethod
    def _title(value: Any) -> str:
        title = str(value or "").strip()
        if not title:
            raise ValidationError(code="title_required", message_key="title_required")
        return title

    def create_quote(self, db, *, client_id: str, created_by: str | None, data: QuoteCreateInput) -> Quote:
        repository = self._repository(client_id)
        title = self._title(data.title)
        total = parse_amount(data.total, field_name="total")
        status = str(data.status or "draft").strip().lower()
        if status not in CREATABLE_STATUSES:
            raise ValidationError(code="validation_error", details=f"status inicial invalido: {status}")
        try:
            quote_id = repository.insert(
                db,
                title=title,
                total=format_amount(total),
                status=status,
                created_by=created_by,
            )
            StatusEventRepository(client_id=repository.client_id).add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status=None,
                to_status=status,
                reason="created",
                actor_id=created_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        _LOGGER.info("quote_created", extra={"client_id": repository.client_id, "quote_id": quote_id})
        return self._load(db, repository, quote_id)

    def get_quote(self, db, *, client_id: str, quote_id: int) -> Quote:
        return self._load(db, self._repository(client_id), quote_id)

    def get_quote_details(self, db, *, client_id: str, quote_id: int) -> Dict[str, Any]:
        repository = self._repository(client_id)
        quote = self._load(db, repository, quote_id)
        decisions = ApprovalDecisionRepository(client_id=repository.client_id).list_for_quote(db, quote.id)
        return {
            "quote": quote.to_payload(),
            "flow": flow_meta("cotacao", quote.status),
            "decisions": [ApprovalDecision.from_row(row).to_payload() for row in decisions],
        }

    def update_quote(self, db, *, client_id: str, quote_id: int, payload: Dict[str, Any]) -> Quote:
        repository = self._repository(client_id)
        quote = self._load(db, repository, quote_id)
        if "title" not in payload and "total" not in payload:
            raise ValidationError(code="no_changes", message_key="no_changes")
        if not action_allowed("cotacao", quote.status, "edit_quote"):
            raise InvalidStateError(payload={"quote_id": quote.id, "status": quote.status})

        title = self._title(payload["title"]) if "title" in payload else quote.title
        total = parse_amount(payload["total"], field_name="total") if "total" in payload else quote.total
        try:
            updated = repository.update_details(
                db,
                quote.id,
                title=title,
                total=format_amount(total),
                allowed_statuses=statuses_allowing("cotacao", "edit_quote"),
            )
            if not updated:
                current = repository.get_by_id(db, quote.id) or {}
                raise InvalidStateError(payload={"quote_id": quote.id, "status": current.get("status")})
            db.commit()
        except Exception:
            db.rollback()
            raise
        return self._load(db, repository, quote.id)

    def reopen_quote(self, db, *, client_id: str, quote_id: int, actor_id: str | None) -> Quote:
        """Send a rejected quote back to draft; the next request starts a new cycle."""
        repository = self._repository(client_id)
        quote = self._load(db, repository, quote_id)
        if not action_allowed("cotacao", quote.status, "reopen"):
            raise InvalidStateError(payload={"quote_id": quote.id, "status": quote.status})
        try:
            updated = repository.reopen(db, quote.id, expected_cycle=quote.approval_cycle)
            if not updated:
                current = repository.get_by_id(db, quote.id) or {}
                raise InvalidStateError(payload={"quote_id": quote.id, "status": current.get("status")})
            StatusEventRepository(client_id=repository.client_id).add_event(
                db,
                entity="quote",
                entity_id=quote.id,
                from_status=quote.status,
                to_status="draft",
                reason="reopened",
                actor_id=actor_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        _LOGGER.info("quote_reopened", extra={"client_id": repository.client_id, "quote_id": quote.id})
        return self._load(db, repository, quote.id)

    def list_status_events(self, db, *, client_id: str, quote_id: int) -> list[dict]:
        repository = self._repository(client_id)
        quote = self._load(db, repository, quote_id)
        return StatusEventRepository(client_id=repository.client_id).list_for_entity(
            db,
            entity="quote",
            entity_id=quote.id,
        )
