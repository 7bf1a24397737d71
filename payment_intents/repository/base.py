"""Repository contract for intents, jobs, payments and refunds."""
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from payment_intents.core.models import Job, Payment, PaymentIntent, Refund, StageType


class PaymentRepository(ABC):
    """
    Storage contract shared by every core component.

    Implementations hand out snapshots: mutating a returned object never
    changes stored state, and stored state only changes through
    ``create_*``/``update_*``. ``create_*`` rejects an id that already
    exists with ``ValueError``; ``update_*`` of an unknown id raises
    ``KeyError``.
    """

    # Payment intents

    @abstractmethod
    async def create_intent(self, intent: PaymentIntent) -> PaymentIntent:
        ...

    @abstractmethod
    async def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        ...

    @abstractmethod
    async def update_intent(self, intent_id: str, **changes: Any) -> PaymentIntent:
        ...

    # Jobs

    @abstractmethod
    async def create_jobs(self, intent_id: str, jobs: List[Job]) -> List[Job]:
        ...

    @abstractmethod
    async def list_jobs(self, intent_id: str) -> List[Job]:
        """Return the intent's jobs ordered by stage order (empty if none)."""

    @abstractmethod
    async def update_job(self, intent_id: str, stage: StageType, **changes: Any) -> Job:
        ...

    # Payments

    @abstractmethod
    async def create_payment(self, payment: Payment) -> Payment:
        ...

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        ...

    @abstractmethod
    async def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]:
        ...

    @abstractmethod
    async def update_payment(self, payment_id: str, **changes: Any) -> Payment:
        ...

    # Refunds

    @abstractmethod
    async def create_refund(self, refund: Refund) -> Refund:
        ...

    @abstractmethod
    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        ...

    @abstractmethod
    async def list_refunds(self, payment_id: str) -> List[Refund]:
        """Return the payment's refunds in creation order."""
