"""
Pytest configuration and fixtures.
"""
import random
import uuid
from typing import Any, AsyncGenerator, Callable, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from payment_intents.api.main import create_app
from payment_intents.config import Settings
from payment_intents.core.models import IntentStatus
from payment_intents.core.service import PaymentService
from payment_intents.repository import InMemoryPaymentRepository


@pytest.fixture
def test_settings() -> Settings:
    """Settings with instant processing stages and no random failures."""
    return Settings(
        app_name="payment-intents-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        job_failure_rate=0.0,
        job_start_jitter_max_seconds=0.0,
        job_duration_min_seconds=0.0,
        job_duration_max_seconds=0.0,
        confirm_retry_after_seconds=3,
        idempotency_ttl_seconds=86400,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20260106)


@pytest.fixture
def repository() -> InMemoryPaymentRepository:
    return InMemoryPaymentRepository()


@pytest.fixture
def service(
    test_settings: Settings, repository: InMemoryPaymentRepository, rng: random.Random
) -> PaymentService:
    """Fresh payment service per test."""
    return PaymentService(settings=test_settings, repository=repository, rng=rng)


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, service: PaymentService
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(settings=test_settings, service=service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await service.shutdown()


@pytest.fixture
def intent_body() -> Callable[..., Dict[str, Any]]:
    """Factory for valid create-intent bodies."""

    def _build(**overrides: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "amount": 2599,
            "currency": "USD",
            "customer_id": "cus_123",
            "payment_method_id": "pm_fake_visa",
            "metadata": {"order_id": "order_123"},
        }
        body.update(overrides)
        return body

    return _build


@pytest.fixture
def new_key() -> Callable[[], str]:
    """Factory for unique idempotency keys."""
    return lambda: f"idem_{uuid.uuid4().hex}"


@pytest.fixture
def succeeded_intent(
    service: PaymentService,
    intent_body: Callable[..., Dict[str, Any]],
    new_key: Callable[[], str],
) -> Callable[..., Any]:
    """Factory that creates, confirms and settles an intent; returns its payment."""

    async def _build(amount: int = 10000) -> Any:
        created = await service.create_intent(intent_body(amount=amount), new_key())
        intent_id = created.json()["id"]
        await service.confirm_intent(intent_id, None, new_key())
        await service.orchestrator.wait_for(intent_id)
        intent = await service.get_intent(intent_id)
        assert intent.status is IntentStatus.SUCCEEDED
        return await service.get_payment_result(intent_id)

    return _build
