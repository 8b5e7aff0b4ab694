"""Typed request/callback shapes exchanged with VNPay."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from payment_gateway.models.enums import OrderStatus, VerificationFailure
from payment_gateway.vnpay.fields import FIELD_PREFIX, PaymentField


@dataclass
class PaymentRequest:
    """A request to pay for one order. Amount is in major units (VND)."""

    order_id: str
    amount: Union[int, float]
    order_info: Optional[str] = None
    bank_code: Optional[str] = None
    client_ip: Optional[str] = None
    locale: Optional[str] = None
    order_type: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SignedPaymentURL:
    """Redirect URL carrying the signed parameter set."""

    url: str
    order_id: str
    amount: Union[int, float]  # major units, as requested
    scaled_amount: int  # minor units, as signed
    secure_hash: str = field(repr=False)

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class ReturnCallback:
    """
    Raw callback parameters as received from the browser redirect or IPN.

    Untrusted until ReturnVerifier says otherwise. Only vnp_-prefixed fields
    are kept: those are the ones VNPay signs. Pairs are preserved as received
    so that a repeated key can still be detected at canonicalization time.
    """

    pairs: tuple[tuple[str, str], ...]

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "ReturnCallback":
        return cls(tuple((k, v) for k, v in pairs if k.strip().startswith(FIELD_PREFIX)))

    @classmethod
    def from_mapping(cls, params: Mapping[str, str]) -> "ReturnCallback":
        return cls.from_pairs(params.items())

    def get(self, name: Union[PaymentField, str]) -> Optional[str]:
        key = name.value if isinstance(name, PaymentField) else name
        for k, v in self.pairs:
            if k.strip() == key:
                return v
        return None

    def raw(self) -> dict[str, str]:
        """First value per key, for logging and audit."""
        out: dict[str, str] = {}
        for k, v in self.pairs:
            out.setdefault(k, v)
        return out

    @property
    def txn_ref(self) -> Optional[str]:
        return self.get(PaymentField.TXN_REF)

    @property
    def response_code(self) -> Optional[str]:
        return self.get(PaymentField.RESPONSE_CODE)

    @property
    def secure_hash(self) -> Optional[str]:
        return self.get(PaymentField.SECURE_HASH)

    @property
    def amount(self) -> Optional[str]:
        return self.get(PaymentField.AMOUNT)

    @property
    def transaction_no(self) -> Optional[str]:
        return self.get(PaymentField.TRANSACTION_NO)


@dataclass(frozen=True)
class VerificationResult:
    """Valid, or Invalid with a reason."""

    valid: bool
    reason: Optional[VerificationFailure] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: VerificationFailure) -> "VerificationResult":
        return cls(valid=False, reason=reason)

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True)
class VerifiedCallback:
    """An authenticated callback together with its mapped domain status."""

    order_id: str
    response_code: str
    status: OrderStatus
    reason: str
    scaled_amount: Optional[int]
    transaction_no: Optional[str] = None
    bank_code: Optional[str] = None
    pay_date: Optional[str] = None

    @classmethod
    def from_callback(
        cls,
        callback: ReturnCallback,
        status: OrderStatus,
        reason: str,
    ) -> "VerifiedCallback":
        raw_amount = (callback.amount or "").strip()
        scaled = int(raw_amount) if raw_amount.isascii() and raw_amount.isdigit() else None
        return cls(
            order_id=callback.txn_ref or "",
            response_code=callback.response_code or "",
            status=status,
            reason=reason,
            scaled_amount=scaled,
            transaction_no=callback.transaction_no,
            bank_code=callback.get(PaymentField.BANK_CODE),
            pay_date=callback.get(PaymentField.PAY_DATE),
        )

    @property
    def amount(self) -> Optional[int]:
        """Descaled amount in major units, if the scaled amount divides evenly."""
        if self.scaled_amount is None or self.scaled_amount % 100:
            return None
        return self.scaled_amount // 100
