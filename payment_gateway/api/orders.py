"""
Order boundary and trace endpoints.

POST /orders            — Record a pending order (order-management seam).
GET  /orders/{id}       — Get a single order with its payment fields.
GET  /orders/{id}/trace — Full audit trail for an order.
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, StrictInt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payment_gateway.database import get_session
from payment_gateway.engine.orders import ensure_pending_order
from payment_gateway.errors import ReconciliationConflict
from payment_gateway.models.order import AuditLog, Order
from payment_gateway.vnpay.builder import ORDER_ID_PATTERN

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderCreate(BaseModel):
    orderId: str = Field(pattern=ORDER_ID_PATTERN.pattern)
    amount: StrictInt = Field(gt=0)
    orderInfo: Optional[str] = None


class OrderDetail(BaseModel):
    id: str
    amount: int
    order_info: Optional[str]
    status: str
    response_code: Optional[str]
    transaction_no: Optional[str]
    bank_code: Optional[str]
    pay_date: Optional[str]
    notes: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    model_config = {"from_attributes": True}


class AuditEntry(BaseModel):
    id: int
    action: str
    details: Optional[dict] = None
    timestamp: Optional[str]


class OrderTrace(BaseModel):
    order: OrderDetail
    audit_trail: list[AuditEntry]


def _order_to_detail(o: Order) -> OrderDetail:
    return OrderDetail(
        id=o.id,
        amount=o.amount,
        order_info=o.order_info,
        status=o.status,
        response_code=o.response_code,
        transaction_no=o.transaction_no,
        bank_code=o.bank_code,
        pay_date=o.pay_date,
        notes=o.notes,
        created_at=o.created_at.isoformat() if o.created_at else None,
        updated_at=o.updated_at.isoformat() if o.updated_at else None,
    )


@router.post("", response_model=OrderDetail, status_code=201)
async def create_order(body: OrderCreate, session: AsyncSession = Depends(get_session)):
    """Record a pending order. Idempotent for the same id and amount."""
    try:
        order = await ensure_pending_order(session, body.orderId, body.amount, body.orderInfo)
    except ReconciliationConflict as e:
        raise HTTPException(status_code=409, detail=f"Order {body.orderId} conflicts: {e.reason}")
    return _order_to_detail(order)


@router.get("/{order_id}", response_model=OrderDetail)
async def get_order(order_id: str, session: AsyncSession = Depends(get_session)):
    """Get a single order."""
    order = await session.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return _order_to_detail(order)


@router.get("/{order_id}/trace", response_model=OrderTrace)
async def get_order_trace(order_id: str, session: AsyncSession = Depends(get_session)):
    """
    Full audit trail for an order.

    Includes every callback that claimed this order: applied, duplicated,
    rejected, and those that failed signature verification.
    """
    order = await session.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")

    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.order_id == order_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )

    audit_trail = []
    for log in result.scalars().all():
        details = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}

        audit_trail.append(AuditEntry(
            id=log.id,
            action=log.action,
            details=details,
            timestamp=log.timestamp.isoformat() if log.timestamp else None,
        ))

    return OrderTrace(order=_order_to_detail(order), audit_trail=audit_trail)
