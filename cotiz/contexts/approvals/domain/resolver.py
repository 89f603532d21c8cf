"""Approval level selection.

A quote amount maps to the active level with the greatest
``amount_threshold`` that is still ``<=`` the amount. Amounts below every
threshold need no approval. Two active levels with the same threshold are a
configuration conflict: the most recently created one wins and a warning is
logged so administrators can clean it up.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List

from cotiz.domain.contracts import ApprovalLevel, LevelResolution


_LOGGER = logging.getLogger("cotiz")

REASON_THRESHOLD_MATCHED = "threshold_matched"
REASON_BELOW_ALL_THRESHOLDS = "below_all_thresholds"
REASON_NO_LEVELS_CONFIGURED = "no_levels_configured"


def _sort_key(level: ApprovalLevel):
    return (level.amount_threshold, str(level.created_at or ""), level.id)


def sorted_active_levels(levels: Iterable[ApprovalLevel]) -> List[ApprovalLevel]:
    return sorted((level for level in levels if level.active), key=_sort_key)


def select_level(levels: Iterable[ApprovalLevel], amount: Decimal) -> LevelResolution:
    """Pick the level for ``amount`` from ``levels`` without touching storage.

    Callers must handle the "no active level" case before calling; an empty
    input here yields ``no_levels_configured`` with ``approval_required``
    False.
    """
    ordered = sorted_active_levels(levels)
    if not ordered:
        return LevelResolution(
            amount=amount,
            level=None,
            approval_required=False,
            reason=REASON_NO_LEVELS_CONFIGURED,
        )

    chosen: ApprovalLevel | None = None
    for level in ordered:
        if level.amount_threshold <= amount:
            chosen = level
        else:
            break

    if chosen is None:
        return LevelResolution(
            amount=amount,
            level=None,
            approval_required=False,
            reason=REASON_BELOW_ALL_THRESHOLDS,
        )

    tied = [level for level in ordered if level.amount_threshold == chosen.amount_threshold]
    if len(tied) > 1:
        _LOGGER.warning(
            "approval_level_threshold_conflict",
            extra={
                "client_id": chosen.client_id,
                "amount_threshold": format(chosen.amount_threshold, "f"),
                "level_ids": [level.id for level in tied],
                "chosen_level_id": chosen.id,
            },
        )

    return LevelResolution(
        amount=amount,
        level=chosen,
        approval_required=True,
        reason=REASON_THRESHOLD_MATCHED,
    )
