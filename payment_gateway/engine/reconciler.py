"""
Order reconciler: applies a verified callback to order state exactly once.

VNPay redelivers callbacks and browsers re-trigger the return redirect, so
the same callback may arrive several times, possibly concurrently. For each
one:

  1. Load the order (unknown order -> Rejected)
  2. Terminal order -> DuplicateIgnored, nothing re-applied
  3. Scaled amount must equal order.amount * 100 (else Rejected, stays pending)
  4. Indeterminate provider status -> Rejected, stays pending for review
  5. Conditional UPDATE ... WHERE status = 'pending'

Step 5 is the only synchronization. Two racing callbacks can both see
"pending" in step 1, but only one UPDATE matches a row; the loser reloads
the order and reports DuplicateIgnored.

Each attempt runs in a fresh session. Transient storage errors are retried
with backoff; exhausting them raises ReconciliationFailedError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_gateway.audit.logger import append_note, log_event
from payment_gateway.engine.retry import BASE_DELAY, MAX_RETRIES, is_transient, with_retry
from payment_gateway.errors import ReconciliationFailedError, TransientStorageError
from payment_gateway.models.enums import OrderStatus, OutcomeKind, RejectReason
from payment_gateway.models.order import Order
from payment_gateway.vnpay.schemas import VerifiedCallback

logger = logging.getLogger("payment_gateway.reconciler")


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Applied(new_status) | DuplicateIgnored(existing_status) | Rejected(reason)."""

    kind: OutcomeKind
    status: Optional[OrderStatus] = None
    reason: Optional[RejectReason] = None
    order_amount: Optional[int] = None  # the order's recorded amount, major units

    @classmethod
    def applied(cls, status: OrderStatus, order_amount: int) -> "ReconciliationOutcome":
        return cls(OutcomeKind.APPLIED, status=status, order_amount=order_amount)

    @classmethod
    def duplicate_ignored(cls, status: OrderStatus, order_amount: int) -> "ReconciliationOutcome":
        return cls(OutcomeKind.DUPLICATE_IGNORED, status=status, order_amount=order_amount)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "ReconciliationOutcome":
        return cls(OutcomeKind.REJECTED, reason=reason)


def _callback_details(callback: VerifiedCallback, **extra: Any) -> dict[str, Any]:
    details = {
        "response_code": callback.response_code,
        "mapped_status": callback.status.value,
        "reason": callback.reason,
        "scaled_amount": callback.scaled_amount,
        "transaction_no": callback.transaction_no,
    }
    details.update(extra)
    return details


class OrderReconciler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = BASE_DELAY,
    ):
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    async def reconcile(self, order_id: str, callback: VerifiedCallback) -> ReconciliationOutcome:
        """
        Apply a verified, mapped callback to the order it references.

        Raises:
            ReconciliationFailedError: storage stayed unavailable through every retry.
        """
        try:
            return await with_retry(
                self._attempt,
                order_id,
                callback,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
            )
        except TransientStorageError as e:
            logger.critical(
                "Reconciliation FAILED for order %s after %d retries (response_code=%s, transaction_no=%s): %s",
                order_id,
                self._max_retries,
                callback.response_code,
                callback.transaction_no,
                e,
            )
            raise ReconciliationFailedError(order_id, e) from e

    async def _attempt(self, order_id: str, callback: VerifiedCallback) -> ReconciliationOutcome:
        try:
            async with self._session_factory() as session:
                return await self._reconcile_in_session(session, order_id, callback)
        except SQLAlchemyError as e:
            if is_transient(e):
                raise TransientStorageError(str(e)) from e
            raise

    async def _reconcile_in_session(
        self,
        session: AsyncSession,
        order_id: str,
        callback: VerifiedCallback,
    ) -> ReconciliationOutcome:
        order = await session.get(Order, order_id)
        if order is None:
            await log_event(session, "callback_rejected", order_id=order_id, details=_callback_details(
                callback, outcome=RejectReason.UNKNOWN_ORDER.value,
            ))
            await session.commit()
            logger.warning("Callback for unknown order %s", order_id)
            return ReconciliationOutcome.rejected(RejectReason.UNKNOWN_ORDER)

        current = OrderStatus(order.status)
        if current.is_terminal:
            return await self._duplicate(session, order, current, callback)

        if callback.scaled_amount is None or callback.scaled_amount != order.amount * 100:
            await log_event(session, "callback_rejected", order_id=order_id, details=_callback_details(
                callback,
                outcome=RejectReason.AMOUNT_MISMATCH.value,
                expected_scaled_amount=order.amount * 100,
            ))
            await session.commit()
            logger.error(
                "Amount mismatch for order %s: expected %d, callback carried %s; left pending for review",
                order_id,
                order.amount * 100,
                callback.scaled_amount,
            )
            return ReconciliationOutcome.rejected(RejectReason.AMOUNT_MISMATCH)

        if not callback.status.is_terminal:
            await log_event(session, "callback_rejected", order_id=order_id, details=_callback_details(
                callback, outcome=RejectReason.INDETERMINATE_STATUS.value,
            ))
            await session.commit()
            logger.warning(
                "Order %s: response code %s (%s) is indeterminate; left pending for review",
                order_id,
                callback.response_code,
                callback.reason,
            )
            return ReconciliationOutcome.rejected(RejectReason.INDETERMINATE_STATUS)

        order_amount = order.amount
        note = f"VNPay {callback.response_code} ({callback.reason}) -> {callback.status.value}"
        if callback.transaction_no:
            note += f", transaction {callback.transaction_no}"

        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(
                status=callback.status.value,
                response_code=callback.response_code,
                transaction_no=callback.transaction_no,
                bank_code=callback.bank_code,
                pay_date=callback.pay_date,
                notes=append_note(order.notes, note),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            # Lost the race: another callback finalized the order first.
            await session.rollback()
            order = await session.get(Order, order_id, populate_existing=True)
            existing = OrderStatus(order.status) if order is not None else None
            if existing is None or not existing.is_terminal:
                raise TransientStorageError(f"Conditional update on order {order_id} matched no row")
            return await self._duplicate(session, order, existing, callback)

        await log_event(session, "callback_applied", order_id=order_id, details=_callback_details(
            callback, previous_status=OrderStatus.PENDING.value,
        ))
        await session.commit()
        logger.info(
            "Order %s: pending -> %s (response_code=%s, transaction_no=%s)",
            order_id,
            callback.status.value,
            callback.response_code,
            callback.transaction_no or "-",
        )
        return ReconciliationOutcome.applied(callback.status, order_amount)

    async def _duplicate(
        self,
        session: AsyncSession,
        order: Order,
        existing: OrderStatus,
        callback: VerifiedCallback,
    ) -> ReconciliationOutcome:
        order_id, amount = order.id, order.amount
        await log_event(session, "callback_duplicate", order_id=order_id, details=_callback_details(
            callback, existing_status=existing.value,
        ))
        await session.commit()
        logger.info("Order %s already %s; callback ignored", order_id, existing.value)
        return ReconciliationOutcome.duplicate_ignored(existing, amount)
