from __future__ import annotations

from typing import Iterable, Set

from flask import g, has_request_context, session

from cotiz.errors import PermissionError as AppPermissionError


VALID_ROLES: Set[str] = {"admin", "manager", "approver", "client", "collaborator", "supplier"}
LEVEL_ADMIN_ROLES: Set[str] = {"admin", "manager"}


def normalize_role(role: str | None, default: str = "client") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    if not has_request_context():
        return normalize_role(None)
    return normalize_role(session.get("user_role") or getattr(g, "actor_role", None))


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    normalized_role = normalize_role(role)
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalized_role in allowed


def require_roles(*allowed_roles: str, role: str | None = None) -> str:
    normalized_role = normalize_role(role) if role is not None else current_role()
    if has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise AppPermissionError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
    )
