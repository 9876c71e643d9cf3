"""Exception taxonomy for the receipt engine.

Every error raised on purpose by the engine derives from
:class:`ReceiptEngineError`. Callers branch on the concrete class, or on the
``retryable`` flag when they only need to know whether repeating the call can
succeed.
"""

from __future__ import annotations

from typing import Optional


class ReceiptEngineError(Exception):
    """Base class for all receipt engine failures."""

    retryable = False


class BusinessRuleViolation(ReceiptEngineError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a receipt, item, supplier, or product is unknown."""


class ValidationError(BusinessRuleViolation):
    """Raised when a single field breaks its contract."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class InvalidStatusTransition(BusinessRuleViolation):
    """Raised when a lifecycle move is not present in the transition table."""

    def __init__(self, current: object, target: object) -> None:
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        super().__init__(f"Invalid status transition from {current_name} to {target_name}")
        self.current = current
        self.target = target


class TerminalStateError(BusinessRuleViolation):
    """Raised when a terminal receipt, or one of its items, is edited."""


class ConflictError(ReceiptEngineError):
    """Raised when a concurrent writer won the race; safe to retry."""

    retryable = True


class DuplicateReceiptNumber(ConflictError):
    """Raised by repositories when a receipt number is already taken."""


class ConcurrentModificationError(ConflictError):
    """Raised by repositories when an update carries a stale version."""


class LockTimeoutError(ConflictError):
    """Raised when a receipt or product lock cannot be acquired in time."""


class RepositoryError(ReceiptEngineError):
    """Raised by storage adapters for backend failures.

    The workbook adapter raises it with ``transient=False`` for missing sheets
    or columns and rows that no longer parse. Adapters over a shared backend
    set ``transient=True`` for failures a retry can clear, such as a busy lock.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.transient


class IntegrationError(ReceiptEngineError):
    """Raised when stock materialization fails during completion.

    The receipt is guaranteed to still be ``received`` when this surfaces.
    """

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        if isinstance(self.cause, ReceiptEngineError):
            return bool(self.cause.retryable)
        return False


__all__ = [
    "ReceiptEngineError",
    "BusinessRuleViolation",
    "MissingReferenceError",
    "ValidationError",
    "InvalidStatusTransition",
    "TerminalStateError",
    "ConflictError",
    "DuplicateReceiptNumber",
    "ConcurrentModificationError",
    "LockTimeoutError",
    "RepositoryError",
    "IntegrationError",
]
