"""Lifecycle rules for purchase receipts.

Receipts move ``pending -> received -> completed``; ``cancelled`` is reachable
from either non-terminal state. ``completed`` and ``cancelled`` are final, and
in particular ``received`` can no longer fall back to ``pending``.
"""

from __future__ import annotations

from typing import FrozenSet, Mapping

from . import log
from .constants import ReceiptStatus
from .errors import InvalidStatusTransition


TRANSITIONS: Mapping[ReceiptStatus, FrozenSet[ReceiptStatus]] = {
    ReceiptStatus.PENDING: frozenset({ReceiptStatus.RECEIVED, ReceiptStatus.CANCELLED}),
    ReceiptStatus.RECEIVED: frozenset({ReceiptStatus.COMPLETED, ReceiptStatus.CANCELLED}),
    ReceiptStatus.COMPLETED: frozenset(),
    ReceiptStatus.CANCELLED: frozenset(),
}


def allowed_transitions(current: ReceiptStatus) -> FrozenSet[ReceiptStatus]:
    """Return the states reachable in one step from ``current``."""

    return TRANSITIONS[ReceiptStatus(current)]


def can_transition(current: ReceiptStatus, target: ReceiptStatus) -> bool:
    return ReceiptStatus(target) in allowed_transitions(current)


def validate_transition(current: ReceiptStatus, target: ReceiptStatus) -> None:
    """Raise :class:`InvalidStatusTransition` unless ``current -> target`` is legal.

    Args:
        current (ReceiptStatus): Status currently stored on the receipt.
        target (ReceiptStatus): Status the caller wants to move to.

    Raises:
        InvalidStatusTransition: If the transition table has no such edge.
    """

    if not can_transition(current, target):
        log.error(
            "Rejected status transition from '%s' to '%s'",
            ReceiptStatus(current).value,
            ReceiptStatus(target).value,
        )
        raise InvalidStatusTransition(ReceiptStatus(current), ReceiptStatus(target))


__all__ = [
    "TRANSITIONS",
    "allowed_transitions",
    "can_transition",
    "validate_transition",
]
