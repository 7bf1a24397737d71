"""
Tests for refunds against succeeded payments.
"""
import asyncio
from typing import Any, Callable, List, Optional

import pytest

from payment_intents.core.errors import (
    InvalidStateError,
    NotFoundError,
    RefundExceedsCapturedAmountError,
    ValidationError,
)
from payment_intents.core.models import Payment, Refund, RefundReason
from payment_intents.core.refunds import RefundLedger
from payment_intents.core.service import PaymentService
from payment_intents.repository import InMemoryPaymentRepository


class YieldingRepository(InMemoryPaymentRepository):
    """Suspends on every read so concurrent refunds interleave."""

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        await asyncio.sleep(0)
        return await super().get_payment(payment_id)

    async def list_refunds(self, payment_id: str) -> List[Refund]:
        await asyncio.sleep(0)
        return await super().list_refunds(payment_id)


class TestRefundLedger:
    """Test suite for the cumulative refund cap."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_refunds_up_to_captured_amount(
        self, service: PaymentService, succeeded_intent: Callable[..., Any]
    ) -> None:
        payment = await succeeded_intent(amount=5000)
        ledger = service.refund_ledger

        first = await ledger.create_refund(payment.payment_id, 1000)
        second = await ledger.create_refund(payment.payment_id, 1000)

        assert first.id.startswith("re_")
        assert first.reason is RefundReason.REQUESTED_BY_CUSTOMER
        assert first.id != second.id

        with pytest.raises(RefundExceedsCapturedAmountError) as exc_info:
            await ledger.create_refund(payment.payment_id, 4000)

        error = exc_info.value.to_response()["error"]
        assert error["code"] == "refund_exceeds_captured_amount"
        assert error["captured_amount"] == 5000
        assert error["already_refunded"] == 2000

        refunds = await ledger.list_refunds(payment.payment_id)
        assert [refund.id for refund in refunds] == [first.id, second.id]
        assert (await service.repository.get_payment(payment.payment_id)).refunded_amount == 2000

        # The remaining 3000 can still be refunded exactly.
        await ledger.create_refund(payment.payment_id, 3000, reason="duplicate")
        refunded = (await service.repository.get_payment(payment.payment_id)).refunded_amount
        assert refunded == 5000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund_validation(
        self, service: PaymentService, succeeded_intent: Callable[..., Any]
    ) -> None:
        payment = await succeeded_intent()

        with pytest.raises(ValidationError) as exc_info:
            await service.refund_ledger.create_refund(payment.payment_id, 0, reason="whim")

        assert [v.code for v in exc_info.value.violations] == [
            "invalid_amount",
            "invalid_refund_reason",
        ]
        assert await service.refund_ledger.list_refunds(payment.payment_id) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_payment_and_refund(self, service: PaymentService) -> None:
        with pytest.raises(NotFoundError):
            await service.refund_ledger.create_refund("pay_missing", 100)
        with pytest.raises(NotFoundError):
            await service.get_refund("re_missing")
        with pytest.raises(NotFoundError):
            await service.list_refunds("pay_missing")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund_requires_succeeded_payment(
        self, service: PaymentService, repository: InMemoryPaymentRepository
    ) -> None:
        await repository.create_payment(
            Payment(
                payment_id="pay_pending",
                intent_id="pi_pending",
                captured_amount=1000,
                currency="USD",
                auth_code="ABC123",
                receipt_url="https://example.com/receipt/pay_pending",
                status="pending",
            )
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await service.refund_ledger.create_refund("pay_pending", 100)

        assert exc_info.value.code == "payment_not_succeeded"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_refund(
        self, service: PaymentService, succeeded_intent: Callable[..., Any]
    ) -> None:
        payment = await succeeded_intent()
        refund = await service.refund_ledger.create_refund(
            payment.payment_id, 250, reason="fraudulent"
        )

        fetched = await service.get_refund(refund.id)

        assert fetched == refund
        assert fetched.to_dict()["reason"] == "fraudulent"
        assert fetched.to_dict()["status"] == "succeeded"

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_refunds_never_exceed_captured_amount(self) -> None:
        """
        Concurrent refunds on one payment.

        Reads suspend, so unguarded check-then-append would interleave.
        Twenty refunds of 1000 against 5000 captured: exactly five succeed.
        """
        repository = YieldingRepository()
        await repository.create_payment(
            Payment(
                payment_id="pay_shared",
                intent_id="pi_shared",
                captured_amount=5000,
                currency="USD",
                auth_code="ABC123",
                receipt_url="https://example.com/receipt/pay_shared",
            )
        )
        ledger = RefundLedger(repository)

        results = await asyncio.gather(
            *(ledger.create_refund("pay_shared", 1000) for _ in range(20)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, RefundExceedsCapturedAmountError)]
        assert len(accepted) == 5
        assert len(rejected) == 15

        refunds = await ledger.list_refunds("pay_shared")
        assert sum(refund.amount for refund in refunds) == 5000
        assert (await repository.get_payment("pay_shared")).refunded_amount == 5000

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_refunds_on_different_payments_do_not_block(self) -> None:
        repository = YieldingRepository()
        for i in range(3):
            await repository.create_payment(
                Payment(
                    payment_id=f"pay_{i}",
                    intent_id=f"pi_{i}",
                    captured_amount=1000,
                    currency="EUR",
                    auth_code="ABC123",
                    receipt_url=f"https://example.com/receipt/pay_{i}",
                )
            )
        ledger = RefundLedger(repository)

        refunds = await asyncio.gather(
            *(ledger.create_refund(f"pay_{i}", 1000) for i in range(3))
        )

        assert {refund.payment_id for refund in refunds} == {"pay_0", "pay_1", "pay_2"}
