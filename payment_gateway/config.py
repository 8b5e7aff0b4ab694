"""Application configuration via environment variables."""

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # VNPay merchant configuration
    vnpay_tmn_code: str = "DEMO0001"
    vnpay_hash_secret: SecretStr  # required: no default, never logged
    vnpay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    vnpay_return_url: str = "http://localhost:8000/api/payment/vnpay/return"
    vnpay_locale: str = "vn"
    vnpay_order_type: str = "other"

    # Where the browser lands after the return callback
    app_public_url: str = "http://localhost:3000"
    payment_success_path: str = "/payment/success"
    payment_failed_path: str = "/payment/failed"

    database_url: str = "sqlite+aiosqlite:///./payment_gateway.db"
    log_level: str = "INFO"
    reconcile_max_retries: int = 3
    reconcile_retry_base_delay: float = 0.2  # seconds, doubled per attempt

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("vnpay_hash_secret")
    @classmethod
    def _secret_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("VNPAY_HASH_SECRET must not be empty")
        return value


settings = Settings()
