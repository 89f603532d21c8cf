from __future__ import annotations

from typing import Iterable

from cotiz.domain.contracts import ApprovalLevel
from cotiz.policies import normalize_role


SYSTEM_APPROVER_ID = "system"
ROLE_TAG_PREFIX = "role:"


def role_tag(role: str) -> str:
    normalized = normalize_role(role, default="")
    return f"{ROLE_TAG_PREFIX}{normalized}" if normalized else ""


def is_role_tag(entry: str | None) -> bool:
    return str(entry or "").strip().lower().startswith(ROLE_TAG_PREFIX)


def is_authorized_approver(
    level: ApprovalLevel | None,
    actor_id: str | None,
    roles: Iterable[str] = (),
) -> bool:
    """Return True when ``actor_id`` may decide on quotes frozen to ``level``.

    Never raises: a missing level, an empty approver list or a blank actor
    simply answer False. Entries shaped ``role:<name>`` match any actor that
    holds that role. The reserved ``system`` id never qualifies.
    """
    if level is None:
        return False
    actor = str(actor_id or "").strip()
    if not actor or actor == SYSTEM_APPROVER_ID:
        return False
    approvers = tuple(str(entry or "").strip() for entry in (level.approvers or ()))
    if not approvers:
        return False
    if actor in approvers:
        return True

    actor_tags = {role_tag(role) for role in (roles or ())} - {""}
    if not actor_tags:
        return False
    return any(entry.lower() in actor_tags for entry in approvers if is_role_tag(entry))
