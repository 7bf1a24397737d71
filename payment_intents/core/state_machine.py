"""
Payment intent state machine.

Owns intent and payment state. Confirmation hands the intent to the job
orchestrator and returns immediately; the orchestrator's completion
callback finalizes the intent exactly once.
"""
import secrets
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import structlog

from payment_intents.config import Settings, get_settings
from payment_intents.core.errors import (
    CardError,
    InvalidStateError,
    NotFoundError,
    TooEarlyError,
)
from payment_intents.core.locking import KeyedLock
from payment_intents.core.models import (
    CaptureMethod,
    IntentStatus,
    Job,
    Payment,
    PaymentIntent,
    can_transition,
    generate_auth_code,
    generate_id,
)
from payment_intents.core.orchestrator import JobOrchestrator, ProcessingOutcome
from payment_intents.core.validation import (
    ensure_valid,
    is_valid_payment_method,
    validate_create_intent,
)
from payment_intents.monitoring.metrics import metrics
from payment_intents.repository.base import PaymentRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConfirmOptions:
    """Confirmation options. ``force_failure`` is a test-only switch."""

    payment_method_id: Optional[str] = None
    force_failure: bool = False


@dataclass(frozen=True)
class ConfirmResult:
    intent: PaymentIntent
    retry_after: int


class PaymentIntentStateMachine:
    """
    Drives intents through ``requires_confirmation → processing → succeeded | failed``.

    Mutations of one intent are serialized by a per-intent lock; unrelated
    intents never contend.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        orchestrator: JobOrchestrator,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize state machine.

        Args:
            repository: Shared payment repository
            orchestrator: Runs processing stages for confirmed intents
            settings: Optional settings (defaults to the cached instance)
        """
        self.repository = repository
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self._locks = KeyedLock()

    async def _require_intent(self, intent_id: str) -> PaymentIntent:
        intent = await self.repository.get_intent(intent_id)
        if intent is None:
            raise NotFoundError("Payment intent not found", param="id")
        return intent

    async def _transition(
        self, intent: PaymentIntent, target: IntentStatus, **changes: Any
    ) -> PaymentIntent:
        if not can_transition(intent.status, target):
            raise InvalidStateError(
                f"Cannot move payment intent from '{intent.status.value}' to '{target.value}'",
                param="status",
                current_status=intent.status.value,
            )
        updated = await self.repository.update_intent(intent.id, status=target, **changes)
        logger.info(
            "payment_intent_transitioned",
            intent_id=intent.id,
            from_status=intent.status.value,
            to_status=target.value,
        )
        return updated

    async def create(self, data: Mapping[str, Any]) -> PaymentIntent:
        """
        Validate and store a new intent in ``requires_confirmation``.

        Args:
            data: Decoded create-intent body

        Returns:
            PaymentIntent: The stored intent

        Raises:
            ValidationError: Listing every violated field
        """
        ensure_valid(validate_create_intent(data))

        intent_id = generate_id("pi")
        intent = PaymentIntent(
            id=intent_id,
            amount=data["amount"],
            currency=data["currency"],
            customer_id=data["customer_id"],
            payment_method_id=data["payment_method_id"],
            capture_method=CaptureMethod(data.get("capture_method") or CaptureMethod.AUTOMATIC),
            client_secret=f"{intent_id}_secret_{secrets.token_hex(12)}",
            metadata=dict(data.get("metadata") or {}),
        )
        intent = await self.repository.create_intent(intent)

        metrics.record_intent_created(intent.currency, intent.amount)
        logger.info(
            "payment_intent_created",
            intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            customer_id=intent.customer_id,
        )
        return intent

    async def confirm(
        self, intent_id: str, options: Optional[ConfirmOptions] = None
    ) -> ConfirmResult:
        """
        Move an intent to ``processing`` and start its stages.

        Does not wait for any stage to finish.

        Args:
            intent_id: Payment intent id
            options: Optional payment method override and test failure switch

        Returns:
            ConfirmResult: The processing intent and a suggested polling interval

        Raises:
            NotFoundError: If the intent does not exist
            InvalidStateError: If the intent is not awaiting confirmation
            CardError: If the payment method override is not allowed
        """
        options = options or ConfirmOptions()

        async with self._locks.acquire(intent_id):
            intent = await self._require_intent(intent_id)

            if intent.status is not IntentStatus.REQUIRES_CONFIRMATION:
                raise InvalidStateError(
                    f"Payment intent is in '{intent.status.value}' state, "
                    f"expected '{IntentStatus.REQUIRES_CONFIRMATION.value}'",
                    param="status",
                    current_status=intent.status.value,
                )

            changes = {}
            if options.payment_method_id is not None:
                if not is_valid_payment_method(options.payment_method_id):
                    raise CardError("Invalid payment method", param="payment_method_id")
                changes["payment_method_id"] = options.payment_method_id

            intent = await self._transition(intent, IntentStatus.PROCESSING, **changes)

            started = await self.orchestrator.start(
                intent_id, self.finalize, force_failure=options.force_failure
            )
            if not started:
                logger.error("payment_intent_orchestration_not_started", intent_id=intent_id)

        return ConfirmResult(intent=intent, retry_after=self.settings.confirm_retry_after_seconds)

    async def finalize(self, outcome: ProcessingOutcome) -> bool:
        """
        Settle a processing intent from its aggregate stage outcome.

        Only the first call per intent has an effect.

        Returns:
            bool: True if this call moved the intent out of ``processing``
        """
        async with self._locks.acquire(outcome.intent_id):
            intent = await self.repository.get_intent(outcome.intent_id)
            if intent is None:
                logger.error("payment_intent_finalize_unknown", intent_id=outcome.intent_id)
                return False

            if intent.status is not IntentStatus.PROCESSING:
                logger.warning(
                    "payment_intent_finalize_ignored",
                    intent_id=intent.id,
                    status=intent.status.value,
                )
                return False

            if outcome.succeeded:
                payment_id = generate_id("pay")
                payment = Payment(
                    payment_id=payment_id,
                    intent_id=intent.id,
                    captured_amount=intent.amount,
                    currency=intent.currency,
                    auth_code=generate_auth_code(),
                    receipt_url=f"{self.settings.receipt_base_url.rstrip('/')}/{payment_id}",
                )
                await self.repository.create_payment(payment)
                await self._transition(intent, IntentStatus.SUCCEEDED)
                logger.info(
                    "payment_succeeded",
                    intent_id=intent.id,
                    payment_id=payment_id,
                    captured_amount=payment.captured_amount,
                )
            else:
                await self._transition(
                    intent, IntentStatus.FAILED, failure_reason=outcome.failure_reason
                )
                logger.warning(
                    "payment_failed",
                    intent_id=intent.id,
                    failure_reason=outcome.failure_reason,
                    error=outcome.error_message,
                )

            metrics.record_intent_finalized(
                IntentStatus.SUCCEEDED.value if outcome.succeeded else IntentStatus.FAILED.value
            )
            return True

    async def get(self, intent_id: str) -> PaymentIntent:
        """Current snapshot of an intent."""
        return await self._require_intent(intent_id)

    async def get_payment_result(self, intent_id: str) -> Payment:
        """
        Payment created for a succeeded intent.

        Raises:
            NotFoundError: Unknown intent, intent not succeeded, or no payment record
            TooEarlyError: While the intent is still processing
        """
        intent = await self._require_intent(intent_id)

        if intent.status is IntentStatus.PROCESSING:
            raise TooEarlyError(
                "Payment is still processing",
                param="id",
                retry_after=self.settings.confirm_retry_after_seconds,
            )

        if intent.status is not IntentStatus.SUCCEEDED:
            raise NotFoundError("No payment found for this intent", param="id")

        payment = await self.repository.get_payment_by_intent(intent_id)
        if payment is None:
            raise NotFoundError("Payment record not found", param="id")
        return payment

    async def list_jobs(self, intent_id: str) -> List[Job]:
        """Processing jobs for an intent; empty until it is confirmed."""
        await self._require_intent(intent_id)
        return await self.orchestrator.list_jobs(intent_id)
