"""
Refund ledger.

Invariant: for every payment, the sum of its refunds never exceeds the
captured amount. The cap check and the append run under a lock scoped to
the payment id, so concurrent refunds cannot both pass on a stale total.
"""
from typing import Any, List, Optional

import structlog

from payment_intents.core.errors import (
    InvalidStateError,
    NotFoundError,
    RefundExceedsCapturedAmountError,
)
from payment_intents.core.locking import KeyedLock
from payment_intents.core.models import Payment, Refund, RefundReason, generate_id
from payment_intents.core.validation import ensure_valid, validate_refund
from payment_intents.monitoring.metrics import metrics
from payment_intents.repository.base import PaymentRepository

logger = structlog.get_logger(__name__)


class RefundLedger:
    """Append-only refunds with a per-payment cumulative cap."""

    def __init__(self, repository: PaymentRepository):
        self.repository = repository
        self._locks = KeyedLock()

    async def _require_payment(self, payment_id: str) -> Payment:
        payment = await self.repository.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", param="payment_id")
        return payment

    async def create_refund(
        self, payment_id: Any, amount: Any, reason: Optional[str] = None
    ) -> Refund:
        """
        Refund part or all of a succeeded payment.

        Args:
            payment_id: Payment to refund
            amount: Refund amount in minor units
            reason: Optional refund reason (defaults to requested_by_customer)

        Returns:
            Refund: The appended refund

        Raises:
            ValidationError: If the body is invalid
            NotFoundError: If the payment does not exist
            InvalidStateError: If the payment has not succeeded
            RefundExceedsCapturedAmountError: If the cap would be exceeded
        """
        ensure_valid(
            validate_refund({"payment_id": payment_id, "amount": amount, "reason": reason})
        )
        refund_reason = RefundReason(reason or RefundReason.REQUESTED_BY_CUSTOMER)

        async with self._locks.acquire(payment_id):
            payment = await self._require_payment(payment_id)

            if payment.status != "succeeded":
                raise InvalidStateError(
                    "Payment must be succeeded to refund",
                    code="payment_not_succeeded",
                    param="payment_id",
                    current_status=payment.status,
                )

            already_refunded = sum(
                refund.amount for refund in await self.repository.list_refunds(payment_id)
            )
            if amount + already_refunded > payment.captured_amount:
                metrics.record_refund("rejected")
                logger.warning(
                    "refund_rejected_exceeds_captured",
                    payment_id=payment_id,
                    amount=amount,
                    already_refunded=already_refunded,
                    captured_amount=payment.captured_amount,
                )
                raise RefundExceedsCapturedAmountError(
                    f"Refund of {amount} exceeds the remaining refundable amount "
                    f"of {payment.captured_amount - already_refunded}",
                    param="amount",
                    captured_amount=payment.captured_amount,
                    already_refunded=already_refunded,
                )

            refund = await self.repository.create_refund(
                Refund(
                    id=generate_id("re"),
                    payment_id=payment_id,
                    amount=amount,
                    reason=refund_reason,
                )
            )
            payment = await self.repository.update_payment(
                payment_id, refunded_amount=payment.refunded_amount + amount
            )

        metrics.record_refund("accepted", amount)
        logger.info(
            "refund_created",
            refund_id=refund.id,
            payment_id=payment_id,
            amount=amount,
            refunded_total=payment.refunded_amount,
        )
        return refund

    async def get_refund(self, refund_id: str) -> Refund:
        refund = await self.repository.get_refund(refund_id)
        if refund is None:
            raise NotFoundError("Refund not found", param="id")
        return refund

    async def list_refunds(self, payment_id: str) -> List[Refund]:
        """Refunds of a payment in creation order."""
        await self._require_payment(payment_id)
        return await self.repository.list_refunds(payment_id)
