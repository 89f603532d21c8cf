from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable

from cotiz.domain.contracts import ApprovalDecision


_HASHED_FIELDS = (
    "client_id",
    "quote_id",
    "level_id",
    "approver_id",
    "decision",
    "comment",
    "amount_at_decision",
    "approval_cycle",
    "decided_at",
)


def canonical_decision_payload(values: Dict[str, Any]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for key in _HASHED_FIELDS:
        value = values.get(key)
        if key in {"quote_id", "level_id", "approval_cycle"} and value is not None:
            value = int(value)
        elif value is not None:
            value = str(value)
        payload[key] = value
    return payload


def compute_entry_hash(previous_hash: str | None, values: Dict[str, Any]) -> str:
    serialized = json.dumps(
        canonical_decision_payload(values),
        ensure_ascii=True,
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(f"{previous_hash or ''}{serialized}".encode("utf-8")).hexdigest()


def verify_chain(decisions: Iterable[ApprovalDecision]) -> Dict[str, Any]:
    """Recompute every link of a quote's decision chain, oldest first."""
    previous_hash = ""
    entries = 0
    for decision in decisions:
        entries += 1
        values = {key: getattr(decision, key) for key in _HASHED_FIELDS}
        expected = compute_entry_hash(previous_hash, values)
        if decision.previous_hash != previous_hash or decision.entry_hash != expected:
            return {"valid": False, "entries": entries, "broken_at": decision.id}
        previous_hash = decision.entry_hash
    return {"valid": True, "entries": entries, "broken_at": None}
