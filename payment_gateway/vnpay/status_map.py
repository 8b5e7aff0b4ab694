"""
VNPay response code table.

Static, versioned data. Only "00" is ever success. Codes where money may
have moved without the payment completing map to UNKNOWN so they land in
manual review instead of being finalized either way. Codes missing from the
table map to (UNKNOWN, raw_code).
"""

from typing import NamedTuple

from payment_gateway.errors import ProviderError
from payment_gateway.models.enums import OrderStatus

STATUS_TABLE_VERSION = "vnpay-2.1.0/2024-01"

SUCCESS_CODE = "00"


class StatusEntry(NamedTuple):
    status: OrderStatus
    reason: str
    message: str  # shown on the failure page


STATUS_TABLE: dict[str, StatusEntry] = {
    "00": StatusEntry(OrderStatus.SUCCESS, "ok", "Transaction successful"),
    # Indeterminate: do not finalize
    "01": StatusEntry(OrderStatus.UNKNOWN, "incomplete", "Transaction not completed"),
    "04": StatusEntry(OrderStatus.UNKNOWN, "reversed", "Transaction reversed: customer charged but not completed at VNPAY"),
    "05": StatusEntry(OrderStatus.UNKNOWN, "refund-processing", "VNPAY is processing a refund for this transaction"),
    "06": StatusEntry(OrderStatus.UNKNOWN, "refund-requested", "VNPAY has sent a refund request to the bank"),
    "07": StatusEntry(OrderStatus.UNKNOWN, "suspected-fraud", "Transaction suspected of fraud"),
    # Definite failures
    "02": StatusEntry(OrderStatus.FAILED, "error", "Transaction error"),
    "09": StatusEntry(OrderStatus.FAILED, "declined", "Transaction declined"),
    "10": StatusEntry(OrderStatus.FAILED, "cancelled-by-provider", "Transaction cancelled"),
    "11": StatusEntry(OrderStatus.FAILED, "customer-authentication-failed", "Customer information could not be verified"),
    "12": StatusEntry(OrderStatus.FAILED, "merchant-authentication-failed", "Merchant information could not be verified"),
    "13": StatusEntry(OrderStatus.FAILED, "expired", "Transaction expired"),
    "24": StatusEntry(OrderStatus.FAILED, "user-cancelled", "Customer cancelled the transaction"),
    "51": StatusEntry(OrderStatus.FAILED, "insufficient-funds", "Insufficient account balance"),
    "65": StatusEntry(OrderStatus.FAILED, "transaction-limit-exceeded", "Account exceeded its daily transaction limit"),
}

UNRECOGNIZED_MESSAGE = "Unrecognized response code"


class StatusMapper:
    def __init__(self, table: dict[str, StatusEntry] = STATUS_TABLE):
        self._table = table

    def map(self, response_code: str) -> tuple[OrderStatus, str]:
        """Translate a response code into (domain status, reason)."""
        code = (response_code or "").strip()
        entry = self._table.get(code)
        if entry is None:
            return OrderStatus.UNKNOWN, code
        return entry.status, entry.reason

    def describe(self, response_code: str) -> str:
        """Human-readable message for a response code."""
        entry = self._table.get((response_code or "").strip())
        return entry.message if entry else UNRECOGNIZED_MESSAGE

    def to_error(self, response_code: str) -> ProviderError:
        """ProviderError for a non-success code, for callers that log failures."""
        _, reason = self.map(response_code)
        return ProviderError(response_code, reason)
