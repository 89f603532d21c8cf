from __future__ import annotations

from flask import Blueprint, jsonify, request

from cotiz.contexts.notifications.infrastructure.repository import NotificationRepository
from cotiz.contexts.quotes.application.service import QuoteService
from cotiz.db import get_db
from cotiz.domain.contracts import QuoteCreateInput
from cotiz.routes.approval_routes import WORKFLOW_SERVICE, json_body
from cotiz.tenant import current_actor_id, current_actor_roles, require_actor_id, require_client_id
from cotiz.ui_strings import success_message


quote_bp = Blueprint("quotes", __name__)

_QUOTE_SERVICE = QuoteService()


@quote_bp.route("/api/cotacoes", methods=["POST"])
def quote_create_api():
    db = get_db()
    client_id = require_client_id()
    payload = json_body()
    quote = _QUOTE_SERVICE.create_quote(
        db,
        client_id=client_id,
        created_by=current_actor_id(),
        data=QuoteCreateInput(
            title=payload.get("title"),
            total=payload.get("total"),
            status=payload.get("status") or "draft",
        ),
    )
    return jsonify({"quote": quote.to_payload(), "message": success_message("quote_created")}), 201


@quote_bp.route("/api/cotacoes/<int:quote_id>", methods=["GET", "PATCH"])
def quote_detail_api(quote_id: int):
    db = get_db()
    client_id = require_client_id()
    if request.method == "PATCH":
        quote = _QUOTE_SERVICE.update_quote(db, client_id=client_id, quote_id=quote_id, payload=json_body())
        return jsonify({"quote": quote.to_payload(), "message": success_message("quote_updated")})
    return jsonify(_QUOTE_SERVICE.get_quote_details(db, client_id=client_id, quote_id=quote_id))


@quote_bp.route("/api/cotacoes/<int:quote_id>/solicitar-aprovacao", methods=["POST"])
def quote_request_approval_api(quote_id: int):
    db = get_db()
    client_id = require_client_id()
    outcome = WORKFLOW_SERVICE.request_approval(
        db,
        client_id=client_id,
        quote_id=quote_id,
        requested_by=current_actor_id(),
    )
    message_key = "auto_approved" if outcome.auto_approved else "approval_requested"
    return jsonify({**outcome.to_payload(), "message": success_message(message_key)})


@quote_bp.route("/api/cotacoes/<int:quote_id>/decisao", methods=["POST"])
def quote_decision_api(quote_id: int):
    db = get_db()
    client_id = require_client_id()
    payload = json_body()
    outcome = WORKFLOW_SERVICE.decide(
        db,
        client_id=client_id,
        quote_id=quote_id,
        approver_id=require_actor_id(),
        decision=payload.get("decision"),
        comment=payload.get("comment"),
        roles=current_actor_roles(),
    )
    message_key = "quote_approved" if outcome.quote.status == "approved" else "quote_rejected"
    return jsonify({**outcome.to_payload(), "message": success_message(message_key)})


@quote_bp.route("/api/cotacoes/<int:quote_id>/reabrir", methods=["POST"])
def quote_reopen_api(quote_id: int):
    db = get_db()
    client_id = require_client_id()
    quote = _QUOTE_SERVICE.reopen_quote(db, client_id=client_id, quote_id=quote_id, actor_id=current_actor_id())
    return jsonify({"quote": quote.to_payload(), "message": success_message("quote_reopened")})


@quote_bp.route("/api/cotacoes/<int:quote_id>/auditoria", methods=["GET"])
def quote_audit_api(quote_id: int):
    db = get_db()
    client_id = require_client_id()
    decisions = WORKFLOW_SERVICE.list_decisions(db, client_id=client_id, quote_id=quote_id)
    chain = WORKFLOW_SERVICE.verify_decision_chain(db, client_id=client_id, quote_id=quote_id)
    events = _QUOTE_SERVICE.list_status_events(db, client_id=client_id, quote_id=quote_id)
    return jsonify(
        {
            "quote_id": quote_id,
            "decisions": [decision.to_payload() for decision in decisions],
            "chain": chain,
            "status_events": events,
        }
    )


@quote_bp.route("/api/notificacoes", methods=["GET"])
def notifications_api():
    db = get_db()
    client_id = require_client_id()
    unread_only = (request.args.get("unread") or "").strip().lower() in {"1", "true", "sim"}
    items = NotificationRepository(client_id=client_id).list_for_user(db, require_actor_id(), unread_only=unread_only)
    return jsonify({"items": items})
