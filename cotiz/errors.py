from __future__ import annotations

from typing import Any, Dict

from cotiz.ui_strings import error_message


class AppError(Exception):
    """Base of every error rendered as a JSON body.

    ``payload`` keys are merged into the response so clients can act on them
    (for example ``conflicting_level_id`` or the quote's current ``status``).
    """

    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    @property
    def user_message(self) -> str:
        return error_message(self.message_key, error_message("unexpected_error"))

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message,
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class UnauthorizedError(PermissionError):
    """Actor is not an approver of the level frozen on the quote."""

    default_code = "approver_not_authorized"
    default_message_key = "approver_not_authorized"
    default_http_status = 403
    default_critical = False


class InvalidStateError(UserActionError):
    """Quote is not in the status the operation requires; refetch and retry."""

    default_code = "invalid_quote_state"
    default_message_key = "invalid_quote_state"
    default_http_status = 409
    default_critical = False


class ConfigurationError(AppError):
    """Client has no usable approval levels; surfaced to the administrator."""

    default_code = "approval_levels_not_configured"
    default_message_key = "approval_levels_not_configured"
    default_http_status = 422
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
