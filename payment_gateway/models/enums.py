"""Enumerations for the payment gateway domain model."""

from enum import Enum


class OrderStatus(str, Enum):
    """Lifecycle states for an order awaiting payment."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.SUCCESS, OrderStatus.FAILED)


class OutcomeKind(str, Enum):
    """What reconciliation did with a verified callback."""

    APPLIED = "applied"
    DUPLICATE_IGNORED = "duplicate_ignored"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    """Categorized reasons for refusing to apply a verified callback."""

    UNKNOWN_ORDER = "unknown-order"
    AMOUNT_MISMATCH = "amount-mismatch"
    INDETERMINATE_STATUS = "indeterminate-status"


class VerificationFailure(str, Enum):
    """Why an inbound callback could not be authenticated."""

    MISSING_FIELDS = "missing-fields"
    DUPLICATE_FIELDS = "duplicate-fields"
    SIGNATURE_MISMATCH = "signature-mismatch"
