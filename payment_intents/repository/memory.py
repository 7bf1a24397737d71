"""
In-process repository.

Single-process scope: all state lives in dictionaries owned by one
instance. Reads return deep copies so callers observe consistent
snapshots; each method body runs without awaiting, so a single call is
atomic with respect to other tasks on the event loop.
"""
import copy
import dataclasses
from typing import Any, Dict, List, Optional

from payment_intents.core.models import (
    Job,
    Payment,
    PaymentIntent,
    Refund,
    StageType,
    utcnow,
)
from payment_intents.repository.base import PaymentRepository


class InMemoryPaymentRepository(PaymentRepository):
    """Dictionary-backed ``PaymentRepository``."""

    def __init__(self) -> None:
        self._intents: Dict[str, PaymentIntent] = {}
        self._jobs: Dict[str, Dict[StageType, Job]] = {}
        self._payments: Dict[str, Payment] = {}
        self._payments_by_intent: Dict[str, str] = {}
        self._refunds: Dict[str, Refund] = {}
        self._refunds_by_payment: Dict[str, List[str]] = {}

    # Payment intents

    async def create_intent(self, intent: PaymentIntent) -> PaymentIntent:
        if intent.id in self._intents:
            raise ValueError(f"Payment intent {intent.id} already exists")
        self._intents[intent.id] = copy.deepcopy(intent)
        return copy.deepcopy(intent)

    async def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        intent = self._intents.get(intent_id)
        return copy.deepcopy(intent) if intent is not None else None

    async def update_intent(self, intent_id: str, **changes: Any) -> PaymentIntent:
        current = self._intents.get(intent_id)
        if current is None:
            raise KeyError(intent_id)
        changes.setdefault("updated_at", utcnow())
        updated = dataclasses.replace(copy.deepcopy(current), **changes)
        self._intents[intent_id] = updated
        return copy.deepcopy(updated)

    # Jobs

    async def create_jobs(self, intent_id: str, jobs: List[Job]) -> List[Job]:
        if intent_id in self._jobs:
            raise ValueError(f"Jobs for payment intent {intent_id} already exist")
        self._jobs[intent_id] = {job.stage: copy.deepcopy(job) for job in jobs}
        return await self.list_jobs(intent_id)

    async def list_jobs(self, intent_id: str) -> List[Job]:
        jobs = self._jobs.get(intent_id, {})
        return [copy.deepcopy(job) for job in sorted(jobs.values(), key=lambda j: j.order)]

    async def update_job(self, intent_id: str, stage: StageType, **changes: Any) -> Job:
        jobs = self._jobs.get(intent_id)
        if jobs is None or stage not in jobs:
            raise KeyError(f"{intent_id}_{stage.value}")
        changes.setdefault("updated_at", utcnow())
        updated = dataclasses.replace(jobs[stage], **changes)
        jobs[stage] = updated
        return copy.deepcopy(updated)

    # Payments

    async def create_payment(self, payment: Payment) -> Payment:
        if payment.payment_id in self._payments:
            raise ValueError(f"Payment {payment.payment_id} already exists")
        if payment.intent_id in self._payments_by_intent:
            raise ValueError(f"Payment intent {payment.intent_id} already has a payment")
        self._payments[payment.payment_id] = copy.deepcopy(payment)
        self._payments_by_intent[payment.intent_id] = payment.payment_id
        return copy.deepcopy(payment)

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        payment = self._payments.get(payment_id)
        return copy.deepcopy(payment) if payment is not None else None

    async def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]:
        payment_id = self._payments_by_intent.get(intent_id)
        if payment_id is None:
            return None
        return await self.get_payment(payment_id)

    async def update_payment(self, payment_id: str, **changes: Any) -> Payment:
        current = self._payments.get(payment_id)
        if current is None:
            raise KeyError(payment_id)
        updated = dataclasses.replace(current, **changes)
        self._payments[payment_id] = updated
        return copy.deepcopy(updated)

    # Refunds

    async def create_refund(self, refund: Refund) -> Refund:
        if refund.id in self._refunds:
            raise ValueError(f"Refund {refund.id} already exists")
        self._refunds[refund.id] = refund
        self._refunds_by_payment.setdefault(refund.payment_id, []).append(refund.id)
        return refund

    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        return self._refunds.get(refund_id)

    async def list_refunds(self, payment_id: str) -> List[Refund]:
        return [self._refunds[refund_id] for refund_id in self._refunds_by_payment.get(payment_id, [])]
