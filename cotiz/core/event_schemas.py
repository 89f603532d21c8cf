from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict

from cotiz.observability import observe_domain_event_schema_invalid


_LOGGER = logging.getLogger("cotiz")


EVENT_SCHEMAS: dict[str, dict[str, Any]] = {
    "QuoteApprovalRequested": {
        "required_fields": ("client_id", "quote_id", "level_id", "approvers"),
        "non_empty_fields": ("client_id", "approvers"),
    },
    "QuoteApprovalDecided": {
        "required_fields": ("client_id", "quote_id", "decision", "approver_id"),
        "non_empty_fields": ("client_id", "decision", "approver_id"),
        "allowed_values": {"decision": ("approved", "rejected")},
    },
    "ApprovalLevelChanged": {
        "required_fields": ("client_id", "level_id", "action"),
        "non_empty_fields": ("client_id", "action"),
        "allowed_values": {"action": ("created", "updated", "deactivated")},
    },
}


def _event_payload(event: Any) -> Dict[str, Any]:
    try:
        raw = asdict(event)
    except TypeError:
        raw = dict(getattr(event, "__dict__", {}) or {})
    return dict(raw or {})


def validate_event(event: Any) -> bool:
    schema_name = type(event).__name__
    schema = EVENT_SCHEMAS.get(schema_name)
    if not schema:
        return True

    payload = _event_payload(event)
    required_fields = tuple(schema.get("required_fields") or ())
    missing_fields = [field for field in required_fields if field not in payload or payload.get(field) is None]
    empty_fields = [
        field
        for field in tuple(schema.get("non_empty_fields") or ())
        if field not in missing_fields and not payload.get(field)
    ]
    invalid_values = [
        field
        for field, allowed in dict(schema.get("allowed_values") or {}).items()
        if payload.get(field) is not None and payload.get(field) not in allowed
    ]
    if not missing_fields and not empty_fields and not invalid_values:
        return True

    observe_domain_event_schema_invalid(schema_name)
    _LOGGER.error(
        "domain_event_schema_invalid",
        extra={
            "event_id": str(payload.get("event_id") or "").strip() or None,
            "schema_name": schema_name,
            "missing_fields": missing_fields,
            "empty_fields": empty_fields,
            "invalid_values": invalid_values,
        },
    )
    return False
