"""
Outbound payment URL construction.

Turns a PaymentRequest into a signed VNPay redirect URL:

  1. Validate amount, order id, bank code
  2. Sanitize order info to the provider's character set and length
  3. Scale the amount to minor units (x100)
  4. Normalize the client IP (IPv6 loopback -> 127.0.0.1)
  5. Canonicalize the full field set, sign it, append vnp_SecureHash

Pure apart from reading the clock: it never touches order state.
"""

import ipaddress
import logging
import math
import re
import unicodedata
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from numbers import Real
from typing import Optional, Union

from payment_gateway.errors import InvalidAmountError, InvalidOrderIdError, ValidationError
from payment_gateway.signing.canonical import canonicalize
from payment_gateway.signing.signature import SignatureEngine
from payment_gateway.vnpay.fields import (
    API_VERSION,
    COMMAND_PAY,
    CURRENCY_VND,
    SUPPORTED_LOCALES,
    PaymentField,
)
from payment_gateway.vnpay.schemas import PaymentRequest, SignedPaymentURL

logger = logging.getLogger("payment_gateway.vnpay.builder")

# VNPay timestamps are Vietnam local time (GMT+7, no DST).
VN_TZ = timezone(timedelta(hours=7), name="ICT")
CREATE_DATE_FORMAT = "%Y%m%d%H%M%S"

ORDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
BANK_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,20}$")
ORDER_INFO_MAX_LENGTH = 255
_ORDER_INFO_DISALLOWED = re.compile(r"[^A-Za-z0-9 .,:_#-]")

DEFAULT_CLIENT_IP = "127.0.0.1"


def scale_amount(amount: Union[int, float, Decimal]) -> int:
    """Convert a major-unit amount to the provider's integer minor units."""
    return int(round(amount * 100))


def sanitize_order_info(text: str) -> str:
    """
    Fold Vietnamese text to the ASCII subset VNPay accepts for vnp_OrderInfo.

    "Thanh toán đơn hàng #12" -> "Thanh toan don hang #12"
    """
    text = text.replace("đ", "d").replace("Đ", "D")
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _ORDER_INFO_DISALLOWED.sub("", ascii_text)
    cleaned = " ".join(cleaned.split())
    return cleaned[:ORDER_INFO_MAX_LENGTH].rstrip()


def normalize_client_ip(ip: Optional[str]) -> str:
    """
    Rewrite the client address into the IPv4 form VNPay signs against.

    "::1" becomes "127.0.0.1" and IPv4-mapped IPv6 addresses are unwrapped.
    Anything unparseable is passed through stripped; the provider rejects it,
    not us.
    """
    if not ip or not ip.strip():
        return DEFAULT_CLIENT_IP
    candidate = ip.strip()
    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.is_loopback:
            return DEFAULT_CLIENT_IP
        if addr.ipv4_mapped is not None:
            return str(addr.ipv4_mapped)
    return str(addr)


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (Real, Decimal)):
        raise InvalidAmountError("Amount must be a number")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidAmountError("Amount must be a finite number")
    if amount <= 0:
        raise InvalidAmountError()
    scaled = scale_amount(amount)
    if scaled <= 0:
        raise InvalidAmountError()
    return scaled


def _validate_order_id(order_id) -> str:
    if not isinstance(order_id, str) or not order_id.strip():
        raise InvalidOrderIdError("orderId is required")
    order_id = order_id.strip()
    if not ORDER_ID_PATTERN.match(order_id):
        raise InvalidOrderIdError(
            "orderId must be 1-100 characters of letters, digits, '-' or '_'"
        )
    return order_id


class PaymentRequestBuilder:
    """
    Builds signed VNPay payment URLs for a single merchant terminal.

    Stateless beyond its immutable configuration, so one instance is shared
    by every request.
    """

    def __init__(
        self,
        signer: SignatureEngine,
        tmn_code: str,
        payment_url: str,
        return_url: str,
        default_locale: str = "vn",
        default_order_type: str = "other",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._signer = signer
        self._tmn_code = tmn_code
        self._payment_url = payment_url
        self._return_url = return_url
        self._default_locale = default_locale
        self._default_order_type = default_order_type
        self._clock = clock or (lambda: datetime.now(VN_TZ))

    def build(self, request: PaymentRequest) -> SignedPaymentURL:
        """
        Validate a payment request and produce its signed redirect URL.

        Raises:
            InvalidAmountError: amount is not a positive number.
            InvalidOrderIdError: order id is empty or outside [A-Za-z0-9_-].
            ValidationError: bank code or locale is malformed.
        """
        scaled = _validate_amount(request.amount)
        order_id = _validate_order_id(request.order_id)

        bank_code = (request.bank_code or "").strip() or None
        if bank_code and not BANK_CODE_PATTERN.match(bank_code):
            raise ValidationError("bankCode", "bankCode must be letters, digits or '_'")

        locale = (request.locale or self._default_locale).strip().lower()
        if locale not in SUPPORTED_LOCALES:
            raise ValidationError("locale", f"locale must be one of {', '.join(SUPPORTED_LOCALES)}")

        order_info = sanitize_order_info(request.order_info or "")
        if not order_info:
            order_info = f"Thanh toan don hang {order_id}"

        created_at = request.created_at or self._clock()
        create_date = created_at.astimezone(VN_TZ).strftime(CREATE_DATE_FORMAT)

        params: dict[str, Optional[str]] = {
            PaymentField.VERSION.value: API_VERSION,
            PaymentField.COMMAND.value: COMMAND_PAY,
            PaymentField.TMN_CODE.value: self._tmn_code,
            PaymentField.AMOUNT.value: str(scaled),
            PaymentField.CURR_CODE.value: CURRENCY_VND,
            PaymentField.LOCALE.value: locale,
            PaymentField.ORDER_INFO.value: order_info,
            PaymentField.ORDER_TYPE.value: request.order_type or self._default_order_type,
            PaymentField.RETURN_URL.value: self._return_url,
            PaymentField.IP_ADDR.value: normalize_client_ip(request.client_ip),
            PaymentField.CREATE_DATE.value: create_date,
            PaymentField.TXN_REF.value: order_id,
            PaymentField.BANK_CODE.value: bank_code,
        }

        canonical = canonicalize(params)
        secure_hash = self._signer.sign(canonical)
        url = f"{self._payment_url}?{canonical}&{PaymentField.SECURE_HASH.value}={secure_hash}"

        logger.info(
            "Built payment URL for order %s (amount=%s, scaled=%d, bank=%s)",
            order_id,
            request.amount,
            scaled,
            bank_code or "-",
        )
        return SignedPaymentURL(
            url=url,
            order_id=order_id,
            amount=request.amount,
            scaled_amount=scaled,
            secure_hash=secure_hash,
        )
