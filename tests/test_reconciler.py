"""
Tests for exactly-once reconciliation of verified callbacks.

Covers the outcomes (applied, duplicate, rejected), the amount check,
concurrent delivery of the same callback, and retry on transient storage errors.
"""

import asyncio
import json

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from payment_gateway.engine.reconciler import OrderReconciler
from payment_gateway.errors import ReconciliationFailedError
from payment_gateway.models.enums import OrderStatus, OutcomeKind, RejectReason
from payment_gateway.models.order import AuditLog, Order
from payment_gateway.vnpay.schemas import VerifiedCallback


def _verified(
    order_id: str = "ORDER1",
    response_code: str = "00",
    status: OrderStatus = OrderStatus.SUCCESS,
    reason: str = "ok",
    scaled_amount=10_000_000,
    transaction_no: str = "14226112",
) -> VerifiedCallback:
    return VerifiedCallback(
        order_id=order_id,
        response_code=response_code,
        status=status,
        reason=reason,
        scaled_amount=scaled_amount,
        transaction_no=transaction_no,
        bank_code="NCB",
        pay_date="20240115103512",
    )


FAILED_24 = dict(response_code="24", status=OrderStatus.FAILED, reason="user-cancelled")


async def _audit_actions(session_factory, order_id: str = "ORDER1") -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog.action).where(AuditLog.order_id == order_id).order_by(AuditLog.id)
        )
        return list(result.scalars())


class _FlakyFactory:
    """Session factory that raises a given error for the first `failures` calls."""

    def __init__(self, factory, error: Exception, failures: int):
        self._factory = factory
        self._error = error
        self._failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self._failures:
            raise self._error
        return self._factory()


def _locked() -> OperationalError:
    return OperationalError("UPDATE orders", {}, Exception("database is locked"))


class TestApplied:
    @pytest.mark.asyncio
    async def test_success_applied(self, reconciler, pending_order, session_factory):
        outcome = await reconciler.reconcile("ORDER1", _verified())

        assert outcome.kind is OutcomeKind.APPLIED
        assert outcome.status is OrderStatus.SUCCESS
        assert outcome.order_amount == 100_000

        async with session_factory() as session:
            order = await session.get(Order, "ORDER1")
        assert order.status == "success"
        assert order.response_code == "00"
        assert order.transaction_no == "14226112"
        assert order.bank_code == "NCB"
        assert order.pay_date == "20240115103512"
        assert "VNPay 00 (ok) -> success" in order.notes

    @pytest.mark.asyncio
    async def test_failure_applied(self, reconciler, pending_order, read_status):
        outcome = await reconciler.reconcile("ORDER1", _verified(**FAILED_24))

        assert outcome.kind is OutcomeKind.APPLIED
        assert outcome.status is OrderStatus.FAILED
        assert await read_status() == "failed"

    @pytest.mark.asyncio
    async def test_applied_is_audited(self, reconciler, pending_order, session_factory):
        await reconciler.reconcile("ORDER1", _verified())

        async with session_factory() as session:
            result = await session.execute(
                select(AuditLog).where(AuditLog.action == "callback_applied")
            )
            entry = result.scalar_one()
        details = json.loads(entry.details)
        assert details["response_code"] == "00"
        assert details["previous_status"] == "pending"
        assert details["scaled_amount"] == 10_000_000


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_same_callback_twice(self, reconciler, pending_order, session_factory):
        first = await reconciler.reconcile("ORDER1", _verified())
        second = await reconciler.reconcile("ORDER1", _verified())

        assert first.kind is OutcomeKind.APPLIED
        assert second.kind is OutcomeKind.DUPLICATE_IGNORED
        assert second.status is OrderStatus.SUCCESS
        assert second.order_amount == 100_000
        assert await _audit_actions(session_factory) == [
            "order_created",
            "callback_applied",
            "callback_duplicate",
        ]

    @pytest.mark.asyncio
    async def test_failed_order_not_flipped_by_later_success(self, reconciler, pending_order, read_status):
        await reconciler.reconcile("ORDER1", _verified(**FAILED_24))
        outcome = await reconciler.reconcile("ORDER1", _verified())

        assert outcome.kind is OutcomeKind.DUPLICATE_IGNORED
        assert outcome.status is OrderStatus.FAILED
        assert await read_status() == "failed"

    @pytest.mark.asyncio
    async def test_success_not_flipped_by_later_failure(self, reconciler, pending_order, read_status):
        await reconciler.reconcile("ORDER1", _verified())
        outcome = await reconciler.reconcile("ORDER1", _verified(**FAILED_24))

        assert outcome.kind is OutcomeKind.DUPLICATE_IGNORED
        assert outcome.status is OrderStatus.SUCCESS
        assert await read_status() == "success"

    @pytest.mark.asyncio
    async def test_concurrent_delivery_applies_once(self, reconciler, pending_order, session_factory, read_status):
        outcomes = await asyncio.gather(
            reconciler.reconcile("ORDER1", _verified()),
            reconciler.reconcile("ORDER1", _verified()),
        )

        kinds = sorted(o.kind.value for o in outcomes)
        assert kinds == [OutcomeKind.APPLIED.value, OutcomeKind.DUPLICATE_IGNORED.value]
        assert await read_status() == "success"
        assert (await _audit_actions(session_factory)).count("callback_applied") == 1


class TestRejected:
    @pytest.mark.asyncio
    async def test_unknown_order(self, reconciler, session_factory):
        outcome = await reconciler.reconcile("NOPE", _verified(order_id="NOPE"))

        assert outcome.kind is OutcomeKind.REJECTED
        assert outcome.reason is RejectReason.UNKNOWN_ORDER
        assert await _audit_actions(session_factory, "NOPE") == ["callback_rejected"]

        async with session_factory() as session:
            assert await session.get(Order, "NOPE") is None

    @pytest.mark.asyncio
    async def test_amount_mismatch_leaves_order_pending(self, reconciler, pending_order, read_status):
        outcome = await reconciler.reconcile("ORDER1", _verified(scaled_amount=1_000_000))

        assert outcome.kind is OutcomeKind.REJECTED
        assert outcome.reason is RejectReason.AMOUNT_MISMATCH
        assert await read_status() == "pending"

    @pytest.mark.asyncio
    async def test_unparseable_amount_is_a_mismatch(self, reconciler, pending_order, read_status):
        outcome = await reconciler.reconcile("ORDER1", _verified(scaled_amount=None))

        assert outcome.reason is RejectReason.AMOUNT_MISMATCH
        assert await read_status() == "pending"

    @pytest.mark.asyncio
    async def test_mismatch_then_correct_callback_applies(self, reconciler, pending_order, read_status):
        await reconciler.reconcile("ORDER1", _verified(scaled_amount=1))
        outcome = await reconciler.reconcile("ORDER1", _verified())

        assert outcome.kind is OutcomeKind.APPLIED
        assert await read_status() == "success"

    @pytest.mark.asyncio
    async def test_indeterminate_status_left_pending(self, reconciler, pending_order, read_status):
        outcome = await reconciler.reconcile(
            "ORDER1",
            _verified(response_code="07", status=OrderStatus.UNKNOWN, reason="suspected-fraud"),
        )

        assert outcome.kind is OutcomeKind.REJECTED
        assert outcome.reason is RejectReason.INDETERMINATE_STATUS
        assert await read_status() == "pending"

    @pytest.mark.asyncio
    async def test_duplicate_takes_precedence_over_amount_check(self, reconciler, pending_order):
        await reconciler.reconcile("ORDER1", _verified())
        outcome = await reconciler.reconcile("ORDER1", _verified(scaled_amount=1))

        assert outcome.kind is OutcomeKind.DUPLICATE_IGNORED
        assert outcome.order_amount == 100_000


class TestTransientStorage:
    @pytest.mark.asyncio
    async def test_retried_then_applied(self, session_factory, pending_order, read_status):
        flaky = _FlakyFactory(session_factory, _locked(), failures=2)
        reconciler = OrderReconciler(flaky, max_retries=3, retry_base_delay=0.01)

        outcome = await reconciler.reconcile("ORDER1", _verified())

        assert outcome.kind is OutcomeKind.APPLIED
        assert flaky.calls == 3
        assert await read_status() == "success"

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_loudly(self, session_factory, pending_order, read_status):
        flaky = _FlakyFactory(session_factory, _locked(), failures=100)
        reconciler = OrderReconciler(flaky, max_retries=2, retry_base_delay=0.01)

        with pytest.raises(ReconciliationFailedError) as exc:
            await reconciler.reconcile("ORDER1", _verified())

        assert exc.value.order_id == "ORDER1"
        assert flaky.calls == 3
        assert await read_status() == "pending"

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self, session_factory, pending_order):
        flaky = _FlakyFactory(
            session_factory,
            IntegrityError("INSERT INTO audit_logs", {}, Exception("constraint failed")),
            failures=100,
        )
        reconciler = OrderReconciler(flaky, max_retries=3, retry_base_delay=0.01)

        with pytest.raises(IntegrityError):
            await reconciler.reconcile("ORDER1", _verified())

        assert flaky.calls == 1
