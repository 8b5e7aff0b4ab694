"""
Order-management boundary.

The gateway never decides what an order costs. The surrounding system
records a pending order (amount in VND) before or alongside asking for a
payment URL; these helpers are that seam.

A double-clicked "pay" button sends concurrent creates for the same new
order id. Exactly one INSERT wins; the others hit the primary key, roll back,
and re-read the winner's row through the same checks.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payment_gateway.audit.logger import append_note, log_event
from payment_gateway.engine.retry import BASE_DELAY, MAX_RETRIES, is_transient, with_retry
from payment_gateway.errors import ReconciliationConflict, TransientStorageError
from payment_gateway.models.enums import OrderStatus
from payment_gateway.models.order import Order

logger = logging.getLogger("payment_gateway.orders")


def _check_existing(order: Order, amount: int) -> Order:
    status = OrderStatus(order.status)
    if status.is_terminal:
        raise ReconciliationConflict("order-finalized", order_id=order.id)
    if order.amount != amount:
        raise ReconciliationConflict("amount-mismatch", order_id=order.id)
    return order


async def ensure_pending_order(
    session: AsyncSession,
    order_id: str,
    amount: int,
    order_info: Optional[str] = None,
    max_retries: int = MAX_RETRIES,
    retry_base_delay: float = BASE_DELAY,
) -> Order:
    """
    Return the pending order for order_id, creating it if it does not exist.

    Asking for a new payment URL on an existing pending order is allowed (the
    customer may retry). Anything that would change what the order costs, or
    reopen a finalized order, is refused.

    Raises:
        ReconciliationConflict: Order exists with a different amount, or is terminal.
        TransientStorageError: Storage stayed locked through every retry.
    """
    return await with_retry(
        _ensure_once,
        session,
        order_id,
        amount,
        order_info,
        max_retries=max_retries,
        base_delay=retry_base_delay,
    )


async def _ensure_once(
    session: AsyncSession,
    order_id: str,
    amount: int,
    order_info: Optional[str],
) -> Order:
    order = await session.get(Order, order_id, populate_existing=True)
    if order is not None:
        return _check_existing(order, amount)

    session.add(Order(
        id=order_id,
        amount=amount,
        order_info=order_info,
        status=OrderStatus.PENDING.value,
        notes=append_note(None, f"Order recorded as pending ({amount} VND)"),
    ))
    await log_event(session, "order_created", order_id=order_id, details={
        "amount": amount,
        "order_info": order_info,
    })

    try:
        await session.commit()
    except IntegrityError:
        # Another request created the same order first
        await session.rollback()
        order = await session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise
        logger.info("Order %s was recorded concurrently; reusing it", order_id)
        return _check_existing(order, amount)
    except SQLAlchemyError as e:
        await session.rollback()
        if is_transient(e):
            raise TransientStorageError(str(e)) from e
        raise

    logger.info("Recorded pending order %s for %d VND", order_id, amount)
    return await session.get(Order, order_id)
