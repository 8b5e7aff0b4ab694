"""
Process-wide service instances, exposed as FastAPI dependencies.

The secret is read from settings exactly once, when the SignatureEngine is
first built, and every component shares that instance. Tests swap these out
through app.dependency_overrides.
"""

from functools import lru_cache

from payment_gateway.config import settings
from payment_gateway.database import get_session_factory
from payment_gateway.engine.callbacks import ReturnHandler
from payment_gateway.engine.reconciler import OrderReconciler
from payment_gateway.signing.signature import SignatureEngine
from payment_gateway.vnpay.builder import PaymentRequestBuilder
from payment_gateway.vnpay.status_map import StatusMapper
from payment_gateway.vnpay.verifier import ReturnVerifier


@lru_cache
def get_signature_engine() -> SignatureEngine:
    return SignatureEngine(settings.vnpay_hash_secret.get_secret_value())


@lru_cache
def get_request_builder() -> PaymentRequestBuilder:
    return PaymentRequestBuilder(
        signer=get_signature_engine(),
        tmn_code=settings.vnpay_tmn_code,
        payment_url=settings.vnpay_url,
        return_url=settings.vnpay_return_url,
        default_locale=settings.vnpay_locale,
        default_order_type=settings.vnpay_order_type,
    )


@lru_cache
def get_return_handler() -> ReturnHandler:
    session_factory = get_session_factory()
    return ReturnHandler(
        verifier=ReturnVerifier(get_signature_engine()),
        mapper=StatusMapper(),
        reconciler=OrderReconciler(
            session_factory,
            max_retries=settings.reconcile_max_retries,
            retry_base_delay=settings.reconcile_retry_base_delay,
        ),
        session_factory=session_factory,
    )
