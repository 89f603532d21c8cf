from __future__ import annotations

from typing import Dict, List


ACTION_LABELS: Dict[str, str] = {
    "edit_quote": "Editar cotacao",
    "request_approval": "Solicitar aprovacao",
    "approve": "Aprovar",
    "reject": "Rejeitar",
    "reopen": "Reabrir cotacao",
    "view_history": "Ver historico",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "cotacao": {
        "draft": {
            "allowed_actions": ["edit_quote", "request_approval", "view_history"],
            "primary_action": "request_approval",
        },
        "sent": {
            "allowed_actions": ["edit_quote", "request_approval", "view_history"],
            "primary_action": "request_approval",
        },
        "received": {
            "allowed_actions": ["edit_quote", "request_approval", "view_history"],
            "primary_action": "request_approval",
        },
        "pending_approval": {
            "allowed_actions": ["approve", "reject", "view_history"],
            "primary_action": "approve",
        },
        "approved": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "rejected": {
            "allowed_actions": ["reopen", "view_history"],
            "primary_action": "reopen",
        },
        "cancelled": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def statuses_allowing(stage: str, action: str) -> List[str]:
    return [status for status in FLOW_POLICY.get(stage, {}) if action_allowed(stage, status, action)]


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
        "primary_action_label": action_label(primary_action(stage, status) or ""),
    }
