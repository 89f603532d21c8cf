from __future__ import annotations

import secrets
from typing import Iterable

from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash

from cotiz.errors import PermissionError as AppPermissionError
from cotiz.errors import ValidationError
from cotiz.policies import normalize_role
from cotiz.ui_strings import success_message


auth_bp = Blueprint("auth", __name__)

_PUBLIC_PATHS = {"/api/auth/login", "/api/auth/logout", "/health", "/metrics"}
_HASH_PREFIXES = ("pbkdf2:", "scrypt:")


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        if not app.config.get("AUTH_ENABLED", True):
            return None
        if app.config.get("TESTING"):
            return None

        path = request.path or "/"
        if path in _PUBLIC_PATHS or not path.startswith("/api/"):
            return None
        if session.get("user_id"):
            return None
        raise AppPermissionError(
            code="auth_required",
            message_key="auth_required",
            http_status=401,
            critical=False,
        )


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or request.form or {}
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    if not email or not password:
        raise ValidationError(code="auth_missing_credentials", message_key="auth_missing_credentials")

    user = find_user(email, password, current_app.config.get("APP_USERS"))
    if not user:
        raise AppPermissionError(
            code="auth_invalid_credentials",
            message_key="auth_invalid_credentials",
            http_status=401,
            critical=False,
        )

    session.clear()
    session["user_id"] = user["user_id"]
    session["user_email"] = user["email"]
    session["display_name"] = user["display_name"]
    session["client_id"] = user["client_id"]
    session["user_role"] = user["role"]
    return jsonify(
        {
            "user_id": user["user_id"],
            "email": user["email"],
            "display_name": user["display_name"],
            "client_id": user["client_id"],
            "role": user["role"],
        }
    )


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"message": success_message("logged_out", "Sessao encerrada.")})


def _password_matches(stored: str, candidate: str) -> bool:
    if stored.startswith(_HASH_PREFIXES):
        return check_password_hash(stored, candidate)
    return secrets.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))


def find_user(email: str, password: str, raw_users: object) -> dict | None:
    for user in parse_users(raw_users):
        if user["email"] == email and _password_matches(user["password"], password):
            return user
    return None


def parse_users(raw_users: object) -> Iterable[dict]:
    """Parse ``email:password:client:display:role:user_id`` entries.

    Entries are separated by commas, semicolons or newlines. The password
    may be a werkzeug hash; it then contains ``:`` and ``$`` separators, so
    hashed entries must use ``|`` between fields instead of ``:``.
    """
    if not raw_users:
        return []
    if isinstance(raw_users, str):
        entries = []
        for chunk in raw_users.replace("\n", ",").replace(";", ",").split(","):
            entry = chunk.strip()
            if entry:
                entries.append(entry)
    elif isinstance(raw_users, (list, tuple, set)):
        entries = [str(item).strip() for item in raw_users if str(item).strip()]
    else:
        return []

    users = []
    for entry in entries:
        separator = "|" if "|" in entry else ":"
        parts = [part.strip() for part in entry.split(separator)]
        if len(parts) < 3:
            continue
        email, password, client_id = parts[0].lower(), parts[1], parts[2]
        if not email or not password or not client_id:
            continue
        display_name = parts[3] if len(parts) > 3 and parts[3] else email.split("@")[0]
        role = normalize_role(parts[4] if len(parts) > 4 else None, default="collaborator")
        user_id = parts[5] if len(parts) > 5 and parts[5] else email
        users.append(
            {
                "email": email,
                "password": password,
                "client_id": client_id,
                "display_name": display_name,
                "role": role,
                "user_id": user_id,
            }
        )
    return users
