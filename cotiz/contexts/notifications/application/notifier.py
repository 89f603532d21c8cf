from __future__ import annotations

import logging

from flask import has_app_context

from cotiz.contexts.approvals.domain.authorization import SYSTEM_APPROVER_ID, is_role_tag
from cotiz.contexts.notifications.infrastructure.repository import NotificationRepository
from cotiz.core import EventBus, QuoteApprovalDecided, QuoteApprovalRequested
from cotiz.db import get_db
from cotiz.ui_strings import notification_text


_LOGGER = logging.getLogger("cotiz")


def _action_url(quote_id: int) -> str:
    return f"/cotacoes/{quote_id}"


def notify_approvers_on_request(event: QuoteApprovalRequested) -> int:
    """Write one ``approval_request`` notification per user approver.

    Role tags have no inbox of their own and are skipped.
    """
    if not has_app_context():
        return 0
    recipients = [approver for approver in event.approvers if approver and not is_role_tag(approver)]
    if not recipients:
        return 0
    text = notification_text("approval_request", quote_id=event.quote_id, amount=event.amount)
    db = get_db()
    repository = NotificationRepository(client_id=event.client_id)
    try:
        for approver in recipients:
            repository.add(
                db,
                user_id=approver,
                title=text["title"],
                message=text["message"],
                kind="approval_request",
                action_url=_action_url(event.quote_id),
                metadata={
                    "quote_id": event.quote_id,
                    "level_id": event.level_id,
                    "approval_cycle": event.approval_cycle,
                },
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return len(recipients)


def notify_requester_on_decision(event: QuoteApprovalDecided) -> int:
    if not has_app_context():
        return 0
    requester = str(event.requester_id or "").strip()
    if not requester or requester in {SYSTEM_APPROVER_ID, event.approver_id}:
        return 0
    kind = "approval_approved" if event.decision == "approved" else "approval_rejected"
    text = notification_text(kind, quote_id=event.quote_id, comment=event.comment or "")
    db = get_db()
    try:
        NotificationRepository(client_id=event.client_id).add(
            db,
            user_id=requester,
            title=text["title"],
            message=text["message"],
            kind=kind,
            action_url=_action_url(event.quote_id),
            metadata={
                "quote_id": event.quote_id,
                "decision": event.decision,
                "approver_id": event.approver_id,
                "auto_approved": event.auto_approved,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    _LOGGER.info(
        "approval_requester_notified",
        extra={"client_id": event.client_id, "quote_id": event.quote_id, "decision": event.decision},
    )
    return 1


def register_notification_handlers(event_bus: EventBus) -> None:
    event_bus.subscribe(QuoteApprovalRequested, notify_approvers_on_request)
    event_bus.subscribe(QuoteApprovalDecided, notify_requester_on_decision)
