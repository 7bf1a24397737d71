"""
Tests for the payment intent lifecycle.

Covers creation, confirmation, settlement from stage outcomes and the
payment result lookup.
"""
import asyncio
import random
from typing import Any, Callable, Dict

import pytest

from payment_intents.config import Settings
from payment_intents.core.errors import (
    CardError,
    InvalidStateError,
    NotFoundError,
    TooEarlyError,
    ValidationError,
)
from payment_intents.core.models import IntentStatus, JobStatus, can_transition
from payment_intents.core.orchestrator import ProcessingOutcome
from payment_intents.core.service import PaymentService
from payment_intents.core.state_machine import ConfirmOptions


class BlockingSleep:
    """Stage durations block until released."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        if delay >= 1.0:
            await self.gate.wait()


@pytest.fixture
def slow_service(test_settings: Settings, rng: random.Random) -> Any:
    settings = test_settings.model_copy(
        update={"job_duration_min_seconds": 1.0, "job_duration_max_seconds": 1.0}
    )
    sleep = BlockingSleep()
    return PaymentService(settings=settings, rng=rng, sleep=sleep), sleep


class TestTransitions:
    """Test suite for the transition table."""

    @pytest.mark.unit
    def test_defined_transitions(self) -> None:
        assert can_transition(IntentStatus.REQUIRES_CONFIRMATION, IntentStatus.PROCESSING)
        assert can_transition(IntentStatus.PROCESSING, IntentStatus.SUCCEEDED)
        assert can_transition(IntentStatus.PROCESSING, IntentStatus.FAILED)

    @pytest.mark.unit
    def test_terminal_states_and_canceled_are_closed(self) -> None:
        for status in IntentStatus:
            assert not can_transition(status, IntentStatus.CANCELED)
        for terminal in (IntentStatus.SUCCEEDED, IntentStatus.FAILED, IntentStatus.CANCELED):
            assert terminal.is_terminal
            assert not any(can_transition(terminal, target) for target in IntentStatus)


class TestPaymentIntentLifecycle:
    """Test suite for intent creation, confirmation and settlement."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_intent(self, service: PaymentService) -> None:
        intent = await service.state_machine.create(
            {
                "amount": 2599,
                "currency": "USD",
                "customer_id": "c1",
                "payment_method_id": "pm_fake_visa",
            }
        )

        assert intent.status is IntentStatus.REQUIRES_CONFIRMATION
        assert intent.id.startswith("pi_") and len(intent.id) == 19
        assert intent.client_secret.startswith(f"{intent.id}_secret_")
        assert intent.capture_method.value == "automatic"
        assert intent.metadata == {}
        assert await service.list_jobs(intent.id) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_reports_every_violation(self, service: PaymentService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.state_machine.create(
                {"amount": -5, "currency": "XYZ", "customer_id": "c1", "payment_method_id": "x"}
            )

        assert [v.code for v in exc_info.value.violations] == [
            "invalid_amount",
            "invalid_currency",
            "invalid_payment_method",
        ]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_then_succeed(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())

        result = await service.state_machine.confirm(intent.id)
        assert result.intent.status is IntentStatus.PROCESSING
        assert result.retry_after == 3
        await service.orchestrator.wait_for(intent.id)

        settled = await service.get_intent(intent.id)
        assert settled.status is IntentStatus.SUCCEEDED
        assert settled.failure_reason is None

        jobs = await service.list_jobs(intent.id)
        assert len(jobs) == 5
        assert all(job.status is JobStatus.COMPLETED for job in jobs)

        payment = await service.get_payment_result(intent.id)
        assert payment.captured_amount == 2599
        assert payment.refunded_amount == 0
        assert payment.currency == "USD"
        assert payment.payment_id.startswith("pay_")
        assert len(payment.auth_code) == 6
        assert payment.receipt_url.endswith(f"/{payment.payment_id}")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_forced_failure(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())

        await service.state_machine.confirm(intent.id, ConfirmOptions(force_failure=True))
        await service.orchestrator.wait_for(intent.id)

        settled = await service.get_intent(intent.id)
        assert settled.status is IntentStatus.FAILED
        assert settled.failure_reason == "forced_failure"

        statuses = [job.status for job in await service.list_jobs(intent.id)]
        assert statuses.count(JobStatus.FAILED) == 1
        assert statuses.count(JobStatus.COMPLETED) == 4

        with pytest.raises(NotFoundError):
            await service.get_payment_result(intent.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_result_too_early_while_processing(
        self, slow_service: Any, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        service, sleep = slow_service
        intent = await service.state_machine.create(intent_body())
        await service.state_machine.confirm(intent.id)

        with pytest.raises(TooEarlyError) as exc_info:
            await service.get_payment_result(intent.id)

        error = exc_info.value.to_response()["error"]
        assert error["type"] == "too_early"
        assert error["retry_after"] == 3
        assert exc_info.value.status_code == 425

        sleep.gate.set()
        await service.orchestrator.wait_for(intent.id)
        payment = await service.get_payment_result(intent.id)
        assert payment.intent_id == intent.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_result_before_confirmation_is_not_found(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())

        with pytest.raises(NotFoundError):
            await service.get_payment_result(intent.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_confirm_twice_is_invalid_state(
        self, slow_service: Any, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        service, sleep = slow_service
        intent = await service.state_machine.create(intent_body())
        await service.state_machine.confirm(intent.id)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.state_machine.confirm(intent.id)
        assert exc_info.value.details["current_status"] == "processing"
        assert exc_info.value.status_code == 409

        sleep.gate.set()
        await service.orchestrator.wait_for(intent.id)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.state_machine.confirm(intent.id)
        assert exc_info.value.details["current_status"] == "succeeded"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_intent(self, service: PaymentService) -> None:
        for call in (
            service.get_intent("pi_missing"),
            service.state_machine.confirm("pi_missing"),
            service.get_payment_result("pi_missing"),
            service.list_jobs("pi_missing"),
        ):
            with pytest.raises(NotFoundError):
                await call

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_confirm_with_payment_method_override(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())

        with pytest.raises(CardError) as exc_info:
            await service.state_machine.confirm(
                intent.id, ConfirmOptions(payment_method_id="pm_stolen")
            )
        assert exc_info.value.status_code == 402
        assert (await service.get_intent(intent.id)).status is IntentStatus.REQUIRES_CONFIRMATION

        result = await service.state_machine.confirm(
            intent.id, ConfirmOptions(payment_method_id="pm_fake_amex")
        )
        assert result.intent.payment_method_id == "pm_fake_amex"
        await service.orchestrator.wait_for(intent.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_finalize_applies_only_once(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())
        await service.state_machine.confirm(intent.id)
        await service.orchestrator.wait_for(intent.id)

        late = ProcessingOutcome(intent_id=intent.id, succeeded=False, forced=True)
        assert await service.state_machine.finalize(late) is False

        settled = await service.get_intent(intent.id)
        assert settled.status is IntentStatus.SUCCEEDED
        assert settled.failure_reason is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_finalize_ignores_unconfirmed_intent(
        self, service: PaymentService, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        intent = await service.state_machine.create(intent_body())

        outcome = ProcessingOutcome(intent_id=intent.id, succeeded=True)
        assert await service.state_machine.finalize(outcome) is False
        assert (await service.get_intent(intent.id)).status is IntentStatus.REQUIRES_CONFIRMATION
