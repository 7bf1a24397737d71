"""
Payment service facade.

Wires the repository, state machine, job orchestrator, refund ledger and
idempotency cache together. Mutating operations are guarded by the
idempotency cache and return the stored response envelope; reads return
domain snapshots.
"""
import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from payment_intents.config import Settings, get_settings
from payment_intents.core.errors import MalformedRequestError
from payment_intents.core.idempotency import IdempotencyManager, StoredResponse
from payment_intents.core.models import Job, Payment, PaymentIntent, Refund
from payment_intents.core.orchestrator import JobOrchestrator
from payment_intents.core.refunds import RefundLedger
from payment_intents.core.state_machine import ConfirmOptions, PaymentIntentStateMachine
from payment_intents.repository.base import PaymentRepository
from payment_intents.repository.memory import InMemoryPaymentRepository

logger = structlog.get_logger(__name__)


def _require_object(body: Any, allow_empty: bool = False) -> Dict[str, Any]:
    if body is None and allow_empty:
        return {}
    if not isinstance(body, Mapping):
        raise MalformedRequestError(
            "Request body must be a JSON object", code="malformed_body"
        )
    return dict(body)


class PaymentService:
    """
    Entry point used by the request-handling layer.

    Components are owned by the service instance; nothing is global.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        repository: Optional[PaymentRepository] = None,
        idempotency_manager: Optional[IdempotencyManager] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize payment service.

        Args:
            settings: Optional settings (defaults to the cached instance)
            repository: Optional repository (defaults to in-memory storage)
            idempotency_manager: Optional idempotency manager
            rng: Random source for stage timing and failure choice
            sleep: Awaitable delay used by processing stages
        """
        self.settings = settings or get_settings()
        self.repository = repository or InMemoryPaymentRepository()
        self.orchestrator = JobOrchestrator(
            self.repository, settings=self.settings, rng=rng, sleep=sleep
        )
        self.state_machine = PaymentIntentStateMachine(
            self.repository, self.orchestrator, settings=self.settings
        )
        self.refund_ledger = RefundLedger(self.repository)
        self.idempotency = idempotency_manager or IdempotencyManager(settings=self.settings)

        logger.info("payment_service_initialized")

    async def create_intent(self, body: Any, idempotency_key: Optional[str]) -> StoredResponse:
        """Create a payment intent (201)."""
        self.idempotency.require_key(idempotency_key)
        payload = _require_object(body)

        async def handler() -> StoredResponse:
            intent = await self.state_machine.create(payload)
            return StoredResponse.from_payload(
                201,
                intent.to_dict(),
                headers={"Location": f"/payment_intents/{intent.id}"},
            )

        return await self.idempotency.execute(
            idempotency_key, "create_payment_intent", payload, handler
        )

    async def confirm_intent(
        self,
        intent_id: str,
        body: Any,
        idempotency_key: Optional[str],
        force_failure: bool = False,
    ) -> StoredResponse:
        """Confirm a payment intent and start processing (202)."""
        self.idempotency.require_key(idempotency_key)
        payload = _require_object(body, allow_empty=True)
        options = ConfirmOptions(
            payment_method_id=payload.get("payment_method_id"),
            force_failure=force_failure,
        )

        async def handler() -> StoredResponse:
            result = await self.state_machine.confirm(intent_id, options)
            return StoredResponse.from_payload(
                202,
                {
                    "id": result.intent.id,
                    "status": result.intent.status.value,
                    "retry_after": result.retry_after,
                },
                headers={
                    "Location": f"/payment_intents/{result.intent.id}",
                    "Retry-After": str(result.retry_after),
                },
            )

        return await self.idempotency.execute(
            idempotency_key,
            f"confirm_payment_intent:{intent_id}",
            {**payload, "force_failure": force_failure},
            handler,
        )

    async def create_refund(self, body: Any, idempotency_key: Optional[str]) -> StoredResponse:
        """Refund part of a succeeded payment (201)."""
        self.idempotency.require_key(idempotency_key)
        payload = _require_object(body)

        async def handler() -> StoredResponse:
            refund = await self.refund_ledger.create_refund(
                payment_id=payload.get("payment_id"),
                amount=payload.get("amount"),
                reason=payload.get("reason"),
            )
            return StoredResponse.from_payload(
                201,
                refund.to_dict(),
                headers={"Location": f"/refunds/{refund.id}"},
            )

        return await self.idempotency.execute(idempotency_key, "create_refund", payload, handler)

    async def get_intent(self, intent_id: str) -> PaymentIntent:
        return await self.state_machine.get(intent_id)

    async def get_payment_result(self, intent_id: str) -> Payment:
        return await self.state_machine.get_payment_result(intent_id)

    async def list_jobs(self, intent_id: str) -> List[Job]:
        return await self.state_machine.list_jobs(intent_id)

    async def get_refund(self, refund_id: str) -> Refund:
        return await self.refund_ledger.get_refund(refund_id)

    async def list_refunds(self, payment_id: str) -> List[Refund]:
        return await self.refund_ledger.list_refunds(payment_id)

    def purge_expired_idempotency_records(self) -> int:
        return self.idempotency.purge_expired()

    async def shutdown(self) -> None:
        """Let outstanding processing runs finish."""
        await self.orchestrator.drain()
        logger.info("payment_service_shutdown")
