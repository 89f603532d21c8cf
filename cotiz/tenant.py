from flask import g, has_request_context, session

from cotiz.errors import ValidationError
from cotiz.policies import normalize_role


def normalize_client_id(value: str | None) -> str | None:
    client_id = str(value or "").strip()
    return client_id or None


def current_client_id() -> str | None:
    if not has_request_context():
        return None
    return normalize_client_id(session.get("client_id")) or normalize_client_id(getattr(g, "client_id", None))


def require_client_id(value: str | None = None) -> str:
    client_id = normalize_client_id(value) or current_client_id()
    if not client_id:
        raise ValidationError(code="client_required", message_key="client_required", http_status=400)
    return client_id


def current_actor_id() -> str | None:
    if not has_request_context():
        return None
    return normalize_client_id(session.get("user_id")) or normalize_client_id(getattr(g, "actor_id", None))


def require_actor_id() -> str:
    actor_id = current_actor_id()
    if not actor_id:
        raise ValidationError(code="actor_required", message_key="actor_required", http_status=400)
    return actor_id


def current_actor_roles() -> tuple[str, ...]:
    if not has_request_context():
        return ()
    role = session.get("user_role") or getattr(g, "actor_role", None)
    normalized = normalize_role(role, default="")
    return (normalized,) if normalized else ()
