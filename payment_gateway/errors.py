"""
Error taxonomy for the payment gateway.

Validation errors surface as 400s on the create path. Everything on the
callback path (signature, provider codes, reconciliation conflicts) is
resolved into a redirect and never reaches the HTTP layer as an exception.
Transient storage errors are retried; exhausting the retries is fatal.

No message built here ever includes the secret key or a canonical string.
"""

from typing import Optional


class PaymentGatewayError(Exception):
    """Base exception for the payment gateway."""


class ConfigurationError(PaymentGatewayError):
    """Required configuration (e.g. the HMAC secret) is missing or blank."""


class ValidationError(PaymentGatewayError):
    """Outbound payment request has a bad shape. Recoverable by the caller."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class InvalidAmountError(ValidationError):
    def __init__(self, message: str = "Amount must be greater than 0"):
        super().__init__("amount", message)


class InvalidOrderIdError(ValidationError):
    def __init__(self, message: str = "Invalid orderId"):
        super().__init__("orderId", message)


class DuplicateKeyError(ValidationError):
    """Two parameters normalize to the same key during canonicalization."""

    def __init__(self, key: str):
        super().__init__(key, f"Duplicate parameter: {key}")
        self.key = key


class SignatureError(PaymentGatewayError):
    """Inbound callback failed authenticity verification."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProviderError(PaymentGatewayError):
    """The provider reported a non-success response code."""

    def __init__(self, response_code: str, reason: str):
        super().__init__(f"Provider response {response_code}: {reason}")
        self.response_code = response_code
        self.reason = reason


class ReconciliationConflict(PaymentGatewayError):
    """Amount mismatch, unknown order, or an already-terminal order."""

    def __init__(self, reason: str, order_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.order_id = order_id


class TransientStorageError(PaymentGatewayError):
    """Storage failure that may succeed on retry (locked DB, dropped connection)."""


class ReconciliationFailedError(PaymentGatewayError):
    """Reconciliation could not be completed after exhausting retries."""

    def __init__(self, order_id: str, cause: Exception):
        super().__init__(f"Reconciliation failed for order {order_id}: {cause}")
        self.order_id = order_id
        self.cause = cause
