"""SQLAlchemy models for orders and their audit trail."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """
    An order awaiting payment through VNPay.

    Created as "pending" by the order-management side before the payment URL
    is issued. Moves to "success" or "failed" exactly once, through the
    reconciler's conditional update; those states are terminal.
    """

    __tablename__ = "orders"

    id = Column(String(100), primary_key=True)  # == vnp_TxnRef
    amount = Column(Integer, nullable=False)  # major units (VND)
    order_info = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Filled in from the verified callback
    response_code = Column(String(10), nullable=True)
    transaction_no = Column(String(50), nullable=True)
    bank_code = Column(String(20), nullable=True)
    pay_date = Column(String(14), nullable=True)  # yyyyMMddHHmmss, provider time
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every callback (accepted, duplicated, rejected, or failing verification)
    gets an entry. Rejected callbacks may reference orders that do not exist,
    so order_id is deliberately not a foreign key.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(100), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
