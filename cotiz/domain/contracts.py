from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Tuple

from cotiz.errors import ValidationError


_CENTS = Decimal("0.01")


def parse_amount(value: Any, *, field_name: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(code="amount_invalid", details=f"{field_name} ausente ou invalido")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(code="amount_invalid", details=f"{field_name} invalido: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(code="amount_invalid", details=f"{field_name} deve ser >= 0")
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal | None) -> str | None:
    if amount is None:
        return None
    return format(amount.quantize(_CENTS, rounding=ROUND_HALF_UP), "f")


def _row_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _load_approvers(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple)):
        values = raw
    else:
        try:
            values = json.loads(raw or "[]")
        except (TypeError, ValueError):
            return ()
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(value).strip() for value in values if str(value or "").strip())


@dataclass(frozen=True)
class ApprovalLevel:
    id: int
    client_id: str
    name: str
    order_level: int
    amount_threshold: Decimal
    approvers: Tuple[str, ...]
    active: bool = True
    max_amount_threshold: Decimal | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ApprovalLevel":
        return cls(
            id=int(row["id"]),
            client_id=str(row["client_id"]),
            name=str(row.get("name") or ""),
            order_level=int(row.get("order_level") or 1),
            amount_threshold=_row_amount(row.get("amount_threshold")) or Decimal("0.00"),
            approvers=_load_approvers(row.get("approvers")),
            active=bool(row.get("active")),
            max_amount_threshold=_row_amount(row.get("max_amount_threshold")),
            created_at=str(row["created_at"]) if row.get("created_at") is not None else None,
            updated_at=str(row["updated_at"]) if row.get("updated_at") is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "order_level": self.order_level,
            "amount_threshold": format_amount(self.amount_threshold),
            "max_amount_threshold": format_amount(self.max_amount_threshold),
            "approvers": list(self.approvers),
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Quote:
    id: int
    client_id: str
    title: str
    total: Decimal
    status: str
    approval_level_id: int | None = None
    approval_cycle: int = 0
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Quote":
        return cls(
            id=int(row["id"]),
            client_id=str(row["client_id"]),
            title=str(row.get("title") or ""),
            total=_row_amount(row.get("total")) or Decimal("0.00"),
            status=str(row["status"]),
            approval_level_id=int(row["approval_level_id"]) if row.get("approval_level_id") is not None else None,
            approval_cycle=int(row.get("approval_cycle") or 0),
            created_by=row.get("created_by"),
            created_at=str(row["created_at"]) if row.get("created_at") is not None else None,
            updated_at=str(row["updated_at"]) if row.get("updated_at") is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "title": self.title,
            "total": format_amount(self.total),
            "status": self.status,
            "approval_level_id": self.approval_level_id,
            "approval_cycle": self.approval_cycle,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class ApprovalDecision:
    id: int
    client_id: str
    quote_id: int
    level_id: int | None
    approver_id: str
    decision: str
    comment: str | None
    amount_at_decision: str
    approval_cycle: int
    previous_hash: str
    entry_hash: str
    decided_at: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ApprovalDecision":
        return cls(
            id=int(row["id"]),
            client_id=str(row["client_id"]),
            quote_id=int(row["quote_id"]),
            level_id=int(row["level_id"]) if row.get("level_id") is not None else None,
            approver_id=str(row["approver_id"]),
            decision=str(row["decision"]),
            comment=row.get("comment"),
            amount_at_decision=str(row["amount_at_decision"]),
            approval_cycle=int(row["approval_cycle"]),
            previous_hash=str(row.get("previous_hash") or ""),
            entry_hash=str(row["entry_hash"]),
            decided_at=str(row["decided_at"]),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "level_id": self.level_id,
            "approver_id": self.approver_id,
            "decision": self.decision,
            "comment": self.comment,
            "amount_at_decision": self.amount_at_decision,
            "approval_cycle": self.approval_cycle,
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
            "decided_at": self.decided_at,
        }


@dataclass(frozen=True)
class LevelResolution:
    """Outcome of picking the approval level for an amount.

    ``approval_required`` is False when the amount sits below every active
    threshold (or, with ``APPROVAL_REQUIRE_LEVELS`` off, when the client has
    no active level); ``level`` is then None.
    """

    amount: Decimal
    level: ApprovalLevel | None
    approval_required: bool
    reason: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "amount": format_amount(self.amount),
            "approval_required": self.approval_required,
            "reason": self.reason,
            "level": self.level.to_payload() if self.level is not None else None,
        }


@dataclass(frozen=True)
class ApprovalOutcome:
    quote: Quote
    decision: ApprovalDecision | None = None
    level: ApprovalLevel | None = None
    auto_approved: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "quote": self.quote.to_payload(),
            "decision": self.decision.to_payload() if self.decision is not None else None,
            "level": self.level.to_payload() if self.level is not None else None,
            "auto_approved": self.auto_approved,
        }


@dataclass(frozen=True)
class ApprovalLevelInput:
    name: str | None = None
    amount_threshold: Any = None
    max_amount_threshold: Any = None
    approvers: List[str] | None = None
    order_level: Any = None
    active: bool | None = None
    provided: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ApprovalLevelInput":
        known = ("name", "amount_threshold", "max_amount_threshold", "approvers", "order_level", "active")
        values = {key: payload.get(key) for key in known if key in payload}
        return cls(provided=tuple(values.keys()), **values)


@dataclass(frozen=True)
class QuoteCreateInput:
    title: str
    total: Any
    status: str = "draft"
