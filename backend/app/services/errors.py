from __future__ import annotations

from decimal import Decimal


class DomainError(Exception):
    """Recoverable business-rule failure; the message is safe to show to callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    pass


class InvalidStateError(DomainError):
    pass


class SlotUnavailableError(InvalidStateError):
    pass


class InsufficientFundsError(InvalidStateError):
    def __init__(self, available: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient wallet balance. Available: {available:,.2f}, Required: {required:,.2f}"
        )
        self.available = available
        self.required = required


class DomainValidationError(DomainError):
    pass
