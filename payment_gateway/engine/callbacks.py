"""
Callback pipeline: the one path from an untrusted VNPay callback to order state.

  1. Verify the signature (failures audited, order state untouched)
  2. Map the response code to a domain status
  3. Reconcile the order exactly once

Verification and mapping failures never escape as exceptions. They travel
on the decision as its cause (SignatureError, ProviderError). Every callback
resolves to a CallbackDecision that the HTTP layer renders as a redirect
(browser return) or an acknowledgement (IPN). The only exception that
propagates is ReconciliationFailedError, when storage stays down.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_gateway.audit.logger import log_event
from payment_gateway.engine.reconciler import OrderReconciler, ReconciliationOutcome
from payment_gateway.errors import PaymentGatewayError, SignatureError
from payment_gateway.models.enums import OrderStatus, OutcomeKind, RejectReason, VerificationFailure
from payment_gateway.vnpay.schemas import ReturnCallback, VerifiedCallback
from payment_gateway.vnpay.status_map import StatusMapper
from payment_gateway.vnpay.verifier import ReturnVerifier

logger = logging.getLogger("payment_gateway.callbacks")


class ErrorTag(str, Enum):
    """Distinct failure tags carried on the failure redirect."""

    MISSING_PARAMS = "missing_params"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_ORDER = "unknown_order"
    AMOUNT_MISMATCH = "amount_mismatch"
    PENDING_REVIEW = "pending_review"
    SERVER_ERROR = "server_error"


_REJECT_TAGS = {
    RejectReason.UNKNOWN_ORDER: ErrorTag.UNKNOWN_ORDER,
    RejectReason.AMOUNT_MISMATCH: ErrorTag.AMOUNT_MISMATCH,
    RejectReason.INDETERMINATE_STATUS: ErrorTag.PENDING_REVIEW,
}


@dataclass(frozen=True)
class CallbackDecision:
    """Where the customer goes next, and why."""

    success: bool
    order_id: Optional[str]
    error: Optional[ErrorTag] = None
    response_code: Optional[str] = None
    message: Optional[str] = None
    amount: Optional[int] = None  # major units
    transaction_no: Optional[str] = None
    verification_failure: Optional[VerificationFailure] = None
    outcome: Optional[ReconciliationOutcome] = None
    cause: Optional[PaymentGatewayError] = None  # SignatureError or ProviderError, for logging


class ReturnHandler:
    def __init__(
        self,
        verifier: ReturnVerifier,
        mapper: StatusMapper,
        reconciler: OrderReconciler,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._verifier = verifier
        self._mapper = mapper
        self._reconciler = reconciler
        self._session_factory = session_factory

    async def handle(self, callback: ReturnCallback) -> CallbackDecision:
        """
        Run a callback through verification, mapping, and reconciliation.

        Raises:
            ReconciliationFailedError: storage stayed unavailable through every retry.
        """
        result = self._verifier.verify(callback)
        if not result:
            return await self._reject_unverified(callback, result.reason)

        status, reason = self._mapper.map(callback.response_code or "")
        verified = VerifiedCallback.from_callback(callback, status, reason)

        outcome = await self._reconciler.reconcile(verified.order_id, verified)
        return self._decide(verified, outcome)

    async def _reject_unverified(
        self,
        callback: ReturnCallback,
        failure: VerificationFailure,
    ) -> CallbackDecision:
        # The raw fields are recorded for audit; the order is not touched.
        try:
            async with self._session_factory() as session:
                await log_event(session, "callback_unverified", order_id=callback.txn_ref, details={
                    "reason": failure.value,
                    "params": callback.raw(),
                })
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "Could not audit unverified callback (reason=%s, params=%s): %s",
                failure.value,
                callback.raw(),
                e,
            )

        tag = ErrorTag.MISSING_PARAMS if failure is VerificationFailure.MISSING_FIELDS else ErrorTag.INVALID_SIGNATURE
        return CallbackDecision(
            success=False,
            order_id=callback.txn_ref,
            error=tag,
            response_code=callback.response_code,
            verification_failure=failure,
            cause=SignatureError(failure.value),
        )

    def _decide(self, verified: VerifiedCallback, outcome: ReconciliationOutcome) -> CallbackDecision:
        if outcome.kind is OutcomeKind.REJECTED:
            return CallbackDecision(
                success=False,
                order_id=verified.order_id,
                error=_REJECT_TAGS[outcome.reason],
                response_code=verified.response_code,
                message=self._mapper.describe(verified.response_code),
                outcome=outcome,
            )

        # Applied or DuplicateIgnored: the order's own status and amount decide the page.
        if outcome.status is OrderStatus.SUCCESS:
            return CallbackDecision(
                success=True,
                order_id=verified.order_id,
                response_code=verified.response_code,
                amount=outcome.order_amount,
                transaction_no=verified.transaction_no,
                outcome=outcome,
            )

        return CallbackDecision(
            success=False,
            order_id=verified.order_id,
            response_code=verified.response_code,
            message=self._mapper.describe(verified.response_code),
            outcome=outcome,
            cause=self._mapper.to_error(verified.response_code) if verified.status is OrderStatus.FAILED else None,
        )
