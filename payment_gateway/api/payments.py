"""
VNPay payment endpoints.

POST /payment/vnpay/create — Build a signed payment URL for an order.
GET  /payment/vnpay/return — Browser return from VNPay; always redirects.
GET  /payment/vnpay/ipn    — Server-to-server notification; VNPay ack JSON.
"""

import logging
from collections.abc import Callable
from typing import Optional, Union
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, StrictFloat, StrictInt
from sqlalchemy.ext.asyncio import AsyncSession

from payment_gateway.config import settings
from payment_gateway.database import get_session
from payment_gateway.engine.callbacks import CallbackDecision, ErrorTag, ReturnHandler
from payment_gateway.engine.orders import ensure_pending_order
from payment_gateway.errors import ReconciliationConflict, ValidationError
from payment_gateway.models.enums import OutcomeKind, RejectReason, VerificationFailure
from payment_gateway.services import get_request_builder, get_return_handler
from payment_gateway.vnpay.builder import PaymentRequestBuilder
from payment_gateway.vnpay.schemas import PaymentRequest, ReturnCallback

logger = logging.getLogger("payment_gateway.api.payments")

router = APIRouter(prefix="/payment/vnpay", tags=["payments"])


class CreatePaymentRequest(BaseModel):
    # Strict: JSON true must not coerce to 1
    amount: Optional[Union[StrictInt, StrictFloat]] = None
    orderId: Optional[str] = None
    orderInfo: Optional[str] = None
    bankCode: Optional[str] = None
    ipAddr: Optional[str] = None
    locale: Optional[str] = None


class CreatePaymentResponse(BaseModel):
    success: bool = True
    paymentUrl: str
    orderId: str
    amount: int


def _forwarded_for(request: Request) -> Optional[str]:
    header = request.headers.get("x-forwarded-for")
    return header.split(",")[0] if header else None


def _real_ip(request: Request) -> Optional[str]:
    return request.headers.get("x-real-ip")


def _peer(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# Header sources in priority order, after an explicit ipAddr in the body
_CLIENT_IP_SOURCES: tuple[Callable[[Request], Optional[str]], ...] = (_forwarded_for, _real_ip, _peer)


def _client_ip(body_ip: Optional[str], request: Request) -> Optional[str]:
    """First non-blank address: body ipAddr, X-Forwarded-For, X-Real-IP, socket peer."""
    candidates = [body_ip] + [source(request) for source in _CLIENT_IP_SOURCES]
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return None


@router.post("/create", response_model=CreatePaymentResponse)
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    builder: PaymentRequestBuilder = Depends(get_request_builder),
):
    """
    Create a signed VNPay payment URL.

    Records the order as pending if the order-management side has not done so
    already. The response never contains the secret or the signing string.
    """
    missing = [name for name, value in (("amount", body.amount), ("orderId", body.orderId)) if value in (None, "")]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

    amount = body.amount
    if isinstance(amount, float):
        if not amount.is_integer():
            raise HTTPException(status_code=400, detail="Amount must be a whole number of VND")
        amount = int(amount)

    payment_request = PaymentRequest(
        order_id=body.orderId,
        amount=amount,
        order_info=body.orderInfo,
        bank_code=body.bankCode,
        client_ip=_client_ip(body.ipAddr, request),
        locale=body.locale,
    )

    try:
        signed = builder.build(payment_request)
        await ensure_pending_order(session, signed.order_id, amount, body.orderInfo)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ReconciliationConflict as e:
        raise HTTPException(status_code=400, detail=f"Order {e.order_id} cannot be paid: {e.reason}")
    except Exception:
        logger.exception("VNPay create payment error for order %s", body.orderId)
        raise HTTPException(status_code=500, detail="Failed to create payment URL")

    return CreatePaymentResponse(paymentUrl=signed.url, orderId=signed.order_id, amount=amount)


def _page_url(path: str, params: dict[str, Optional[Union[str, int]]]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return f"{settings.app_public_url.rstrip('/')}{path}?{query}"


def _failure_url(decision: CallbackDecision) -> str:
    return _page_url(settings.payment_failed_path, {
        "error": decision.error.value if decision.error else None,
        "orderId": decision.order_id or "unknown",
        "responseCode": decision.response_code,
        "message": decision.message,
    })


def _redirect_url(decision: CallbackDecision) -> str:
    if decision.success:
        return _page_url(settings.payment_success_path, {
            "orderId": decision.order_id,
            "amount": decision.amount,
            "transactionNo": decision.transaction_no,
        })
    return _failure_url(decision)


def _log_cause(channel: str, decision: CallbackDecision) -> None:
    if decision.cause is not None:
        logger.info("VNPay %s for order %s not successful: %s", channel, decision.order_id or "-", decision.cause)


@router.get("/return")
async def vnpay_return(
    request: Request,
    handler: ReturnHandler = Depends(get_return_handler),
):
    """
    Browser return from VNPay.

    Never answers with JSON: the customer is always redirected to the success
    or failure page. Unverified callbacks get error=missing_params or
    error=invalid_signature and never touch the order.
    """
    callback = ReturnCallback.from_pairs(request.query_params.multi_items())
    logger.info("VNPay return: txnRef=%s responseCode=%s", callback.txn_ref, callback.response_code)

    try:
        decision = await handler.handle(callback)
    except Exception:
        logger.exception("VNPay return processing error for txnRef=%s", callback.txn_ref)
        decision = CallbackDecision(success=False, order_id=callback.txn_ref, error=ErrorTag.SERVER_ERROR)
    else:
        _log_cause("return", decision)

    return RedirectResponse(_redirect_url(decision), status_code=302)


IPN_CONFIRMED = {"RspCode": "00", "Message": "Confirm Success"}
IPN_ORDER_NOT_FOUND = {"RspCode": "01", "Message": "Order not found"}
IPN_ALREADY_CONFIRMED = {"RspCode": "02", "Message": "Order already confirmed"}
IPN_INVALID_AMOUNT = {"RspCode": "04", "Message": "Invalid amount"}
IPN_INVALID_SIGNATURE = {"RspCode": "97", "Message": "Invalid signature"}
IPN_INPUT_REQUIRED = {"RspCode": "99", "Message": "Input data required"}
IPN_UNKNOWN_ERROR = {"RspCode": "99", "Message": "Unknown error"}


def _ipn_ack(decision: CallbackDecision) -> dict[str, str]:
    if decision.verification_failure is VerificationFailure.MISSING_FIELDS:
        return IPN_INPUT_REQUIRED
    if decision.verification_failure is not None:
        return IPN_INVALID_SIGNATURE

    outcome = decision.outcome
    if outcome.kind is OutcomeKind.APPLIED:
        return IPN_CONFIRMED
    if outcome.kind is OutcomeKind.DUPLICATE_IGNORED:
        return IPN_ALREADY_CONFIRMED
    if outcome.reason is RejectReason.UNKNOWN_ORDER:
        return IPN_ORDER_NOT_FOUND
    if outcome.reason is RejectReason.AMOUNT_MISMATCH:
        return IPN_INVALID_AMOUNT
    # Indeterminate status: ask VNPay to redeliver later
    return IPN_UNKNOWN_ERROR


@router.get("/ipn")
async def vnpay_ipn(
    request: Request,
    handler: ReturnHandler = Depends(get_return_handler),
):
    """
    Instant Payment Notification from VNPay's servers.

    Runs the same pipeline as the browser return and answers with the
    acknowledgement codes VNPay expects. Any code other than 00/02 makes
    VNPay redeliver.
    """
    callback = ReturnCallback.from_pairs(request.query_params.multi_items())
    logger.info("VNPay IPN: txnRef=%s responseCode=%s", callback.txn_ref, callback.response_code)

    try:
        decision = await handler.handle(callback)
    except Exception:
        logger.exception("VNPay IPN processing error for txnRef=%s", callback.txn_ref)
        return IPN_UNKNOWN_ERROR

    _log_cause("IPN", decision)
    return _ipn_ack(decision)
