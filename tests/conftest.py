"""Shared test fixtures."""

import os

# Settings are read at import time; the secret is mandatory.
os.environ["VNPAY_HASH_SECRET"] = "TESTSECRET0123456789ABCDEFGHIJKL"
os.environ["VNPAY_TMN_CODE"] = "TESTTMN1"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_PUBLIC_URL"] = "http://shop.test"

from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payment_gateway.engine.callbacks import ReturnHandler
from payment_gateway.engine.orders import ensure_pending_order
from payment_gateway.engine.reconciler import OrderReconciler
from payment_gateway.models.order import Base, Order
from payment_gateway.signing.canonical import canonicalize
from payment_gateway.signing.signature import SignatureEngine
from payment_gateway.vnpay.builder import VN_TZ, PaymentRequestBuilder
from payment_gateway.vnpay.status_map import StatusMapper
from payment_gateway.vnpay.verifier import ReturnVerifier

TEST_SECRET = os.environ["VNPAY_HASH_SECRET"]
TEST_TMN_CODE = "TESTTMN1"
PAYMENT_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
RETURN_URL = "http://localhost:8000/api/payment/vnpay/return"
FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=VN_TZ)


@pytest.fixture
def signer() -> SignatureEngine:
    return SignatureEngine(TEST_SECRET)


@pytest.fixture
def builder(signer) -> PaymentRequestBuilder:
    return PaymentRequestBuilder(
        signer=signer,
        tmn_code=TEST_TMN_CODE,
        payment_url=PAYMENT_URL,
        return_url=RETURN_URL,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def make_callback(signer):
    """Build a correctly signed VNPay callback; pass field=None to drop one."""

    def _make(order_id: str = "ORDER1", amount: int = 100_000, response_code: str = "00", **overrides):
        params = {
            "vnp_Amount": str(amount * 100),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14226112",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": f"Thanh toan don hang {order_id}",
            "vnp_PayDate": "20240115103512",
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": TEST_TMN_CODE,
            "vnp_TransactionNo": "14226112",
            "vnp_TransactionStatus": response_code,
            "vnp_TxnRef": order_id,
        }
        params.update(overrides)
        params = {k: v for k, v in params.items() if v is not None}
        params["vnp_SecureHash"] = signer.sign(canonicalize(params))
        return params

    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """A fresh SQLite database file per test, shared by every session opened on it."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def pending_order(session_factory) -> Order:
    """ORDER1, 100,000 VND, pending."""
    async with session_factory() as session:
        return await ensure_pending_order(session, "ORDER1", 100_000, "Ve xem phim")


@pytest.fixture
def reconciler(session_factory) -> OrderReconciler:
    return OrderReconciler(session_factory, max_retries=3, retry_base_delay=0.01)


@pytest.fixture
def handler(signer, reconciler, session_factory) -> ReturnHandler:
    return ReturnHandler(
        verifier=ReturnVerifier(signer),
        mapper=StatusMapper(),
        reconciler=reconciler,
        session_factory=session_factory,
    )


@pytest_asyncio.fixture
async def client(session_factory, builder, handler):
    """HTTP client against the app, wired to the per-test database."""
    from payment_gateway.database import get_session
    from payment_gateway.main import app
    from payment_gateway.services import get_request_builder, get_return_handler

    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_request_builder] = lambda: builder
    app.dependency_overrides[get_return_handler] = lambda: handler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def read_status(session_factory):
    """Read an order's current status through a fresh session."""

    async def _read(order_id: str = "ORDER1") -> str:
        async with session_factory() as session:
            order = await session.get(Order, order_id)
            return order.status

    return _read
