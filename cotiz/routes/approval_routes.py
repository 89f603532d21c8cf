from __future__ import annotations

from flask import Blueprint, jsonify, request

from cotiz.contexts.approvals.application.level_service import ApprovalLevelService
from cotiz.contexts.approvals.application.level_store import CachedLevelStore
from cotiz.contexts.approvals.application.resolver_service import ApprovalLevelResolver
from cotiz.contexts.approvals.application.workflow_service import ApprovalWorkflowService
from cotiz.db import get_db
from cotiz.domain.contracts import ApprovalLevelInput
from cotiz.errors import ValidationError
from cotiz.policies import LEVEL_ADMIN_ROLES
from cotiz.policies import require_roles as policy_require_roles
from cotiz.tenant import current_actor_id, current_actor_roles, require_actor_id, require_client_id
from cotiz.ui_strings import success_message


approval_bp = Blueprint("approvals", __name__)

LEVEL_STORE = CachedLevelStore()
_RESOLVER = ApprovalLevelResolver(level_store=LEVEL_STORE)
LEVEL_SERVICE = ApprovalLevelService(level_store=LEVEL_STORE, resolver=_RESOLVER)
WORKFLOW_SERVICE = ApprovalWorkflowService(resolver=_RESOLVER, level_store=LEVEL_STORE)


def _clear_level_cache_for_tests() -> None:
    LEVEL_STORE.clear_cache()


def _require_level_admin() -> None:
    policy_require_roles(*sorted(LEVEL_ADMIN_ROLES))


def json_body() -> dict:
    """Request JSON as a dict; an absent body reads as empty."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(code="validation_error", details="corpo JSON deve ser um objeto")
    return payload


def _parse_bool_arg(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on", "sim"}


@approval_bp.route("/api/aprovacoes/niveis", methods=["GET", "POST"])
def approval_levels_api():
    db = get_db()
    client_id = require_client_id()

    if request.method == "POST":
        _require_level_admin()
        level = LEVEL_SERVICE.create_level(
            db,
            client_id=client_id,
            actor_id=current_actor_id(),
            data=ApprovalLevelInput.from_payload(json_body()),
        )
        return jsonify({"level": level.to_payload(), "message": success_message("approval_level_created")}), 201

    include_inactive = _parse_bool_arg(request.args.get("include_inactive"), True)
    levels = LEVEL_SERVICE.list_levels(db, client_id=client_id, include_inactive=include_inactive)
    return jsonify({"items": [level.to_payload() for level in levels]})


@approval_bp.route("/api/aprovacoes/niveis/<int:level_id>", methods=["PATCH", "DELETE"])
def approval_level_crud_api(level_id: int):
    db = get_db()
    client_id = require_client_id()
    _require_level_admin()

    if request.method == "DELETE":
        level = LEVEL_SERVICE.deactivate_level(db, client_id=client_id, actor_id=current_actor_id(), level_id=level_id)
        return jsonify({"level": level.to_payload(), "message": success_message("approval_level_deactivated")})

    level = LEVEL_SERVICE.update_level(
        db,
        client_id=client_id,
        actor_id=current_actor_id(),
        level_id=level_id,
        data=ApprovalLevelInput.from_payload(json_body()),
    )
    return jsonify({"level": level.to_payload(), "message": success_message("approval_level_updated")})


@approval_bp.route("/api/aprovacoes/simular", methods=["GET"])
def approval_preview_api():
    db = get_db()
    client_id = require_client_id()
    resolution = LEVEL_SERVICE.preview_resolution(db, client_id=client_id, amount=request.args.get("valor"))
    return jsonify(resolution.to_payload())


@approval_bp.route("/api/aprovacoes/pendentes", methods=["GET"])
def approval_pending_api():
    db = get_db()
    client_id = require_client_id()
    quotes = WORKFLOW_SERVICE.list_pending_for_approver(
        db,
        client_id=client_id,
        approver_id=require_actor_id(),
        roles=current_actor_roles(),
    )
    return jsonify({"items": [quote.to_payload() for quote in quotes]})
