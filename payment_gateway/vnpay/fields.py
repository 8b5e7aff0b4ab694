"""VNPay query-parameter schema (API version 2.1.0)."""

from enum import Enum

FIELD_PREFIX = "vnp_"


class PaymentField(str, Enum):
    # Outbound (payment URL)
    VERSION = "vnp_Version"
    COMMAND = "vnp_Command"
    TMN_CODE = "vnp_TmnCode"
    AMOUNT = "vnp_Amount"
    CURR_CODE = "vnp_CurrCode"
    LOCALE = "vnp_Locale"
    ORDER_INFO = "vnp_OrderInfo"
    ORDER_TYPE = "vnp_OrderType"
    RETURN_URL = "vnp_ReturnUrl"
    IP_ADDR = "vnp_IpAddr"
    CREATE_DATE = "vnp_CreateDate"
    TXN_REF = "vnp_TxnRef"
    BANK_CODE = "vnp_BankCode"

    # Inbound (return / IPN)
    RESPONSE_CODE = "vnp_ResponseCode"
    TRANSACTION_NO = "vnp_TransactionNo"
    TRANSACTION_STATUS = "vnp_TransactionStatus"
    PAY_DATE = "vnp_PayDate"
    CARD_TYPE = "vnp_CardType"
    BANK_TRAN_NO = "vnp_BankTranNo"

    # Signature
    SECURE_HASH = "vnp_SecureHash"
    SECURE_HASH_TYPE = "vnp_SecureHashType"


# A callback cannot be correlated or authenticated without these.
REQUIRED_CALLBACK_FIELDS = (
    PaymentField.TXN_REF,
    PaymentField.RESPONSE_CODE,
    PaymentField.SECURE_HASH,
)

API_VERSION = "2.1.0"
COMMAND_PAY = "pay"
CURRENCY_VND = "VND"
SUPPORTED_LOCALES = ("vn", "en")
