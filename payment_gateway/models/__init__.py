from payment_gateway.models.enums import OrderStatus, OutcomeKind, RejectReason, VerificationFailure
from payment_gateway.models.order import AuditLog, Base, Order

__all__ = [
    "Base",
    "Order",
    "AuditLog",
    "OrderStatus",
    "OutcomeKind",
    "RejectReason",
    "VerificationFailure",
]
