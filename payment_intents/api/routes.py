"""
API routes for payment intents, refunds and monitoring.

Mutating endpoints replay the exact bytes stored by the idempotency cache.
Domain errors propagate to the exception handlers registered in ``main``.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Header, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from payment_intents.core.idempotency import IDEMPOTENCY_HEADER, StoredResponse
from payment_intents.core.service import PaymentService
from payment_intents.monitoring.health import HealthCheck

from .schemas import (
    ConfirmPaymentIntentResponse,
    ErrorResponse,
    HealthCheckResponse,
    JobListResponse,
    PaymentIntentResponse,
    PaymentResponse,
    RefundListResponse,
    RefundResponse,
)

logger = structlog.get_logger(__name__)

payment_intent_router = APIRouter(prefix="/payment_intents", tags=["payment_intents"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])
monitoring_router = APIRouter(tags=["monitoring"])

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Malformed request"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
}


def get_service(request: Request) -> PaymentService:
    return request.app.state.service


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


def _replay(stored: StoredResponse) -> Response:
    return Response(
        content=stored.body,
        status_code=stored.status_code,
        headers=dict(stored.headers),
        media_type="application/json",
    )


@payment_intent_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=PaymentIntentResponse,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Create payment intent",
    description="Create a payment intent in requires_confirmation. Requires an Idempotency-Key.",
)
async def create_payment_intent(
    body: Any = Body(default=None),
    idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
    service: PaymentService = Depends(get_service),
) -> Response:
    """Create a new payment intent."""
    stored = await service.create_intent(body, idempotency_key)
    logger.info("create_payment_intent_responded", status_code=stored.status_code)
    return _replay(stored)


@payment_intent_router.post(
    "/{intent_id}/confirm",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ConfirmPaymentIntentResponse,
    responses={
        **ERROR_RESPONSES,
        402: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Confirm payment intent",
    description=(
        "Move the intent to processing and start the five processing stages. "
        "Pass ?force=failure to force the run to fail."
    ),
)
async def confirm_payment_intent(
    intent_id: str,
    body: Any = Body(default=None),
    force: Optional[str] = Query(default=None, description="Use 'failure' to force a failure"),
    idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
    service: PaymentService = Depends(get_service),
) -> Response:
    """Confirm a payment intent."""
    stored = await service.confirm_intent(
        intent_id, body, idempotency_key, force_failure=force == "failure"
    )
    logger.info(
        "confirm_payment_intent_responded",
        intent_id=intent_id,
        status_code=stored.status_code,
    )
    return _replay(stored)


@payment_intent_router.get(
    "/{intent_id}",
    response_model=PaymentIntentResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
    summary="Get payment intent",
)
async def get_payment_intent(
    intent_id: str, service: PaymentService = Depends(get_service)
) -> Dict[str, Any]:
    intent = await service.get_intent(intent_id)
    return intent.to_dict()


@payment_intent_router.get(
    "/{intent_id}/jobs",
    response_model=JobListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="List processing jobs",
    description="Processing stages of the intent, ordered by stage order.",
)
async def list_payment_intent_jobs(
    intent_id: str, service: PaymentService = Depends(get_service)
) -> Dict[str, Any]:
    jobs = await service.list_jobs(intent_id)
    return {"payment_intent_id": intent_id, "jobs": [job.to_dict() for job in jobs]}


@payment_router.get(
    "/{intent_id}",
    response_model=PaymentResponse,
    responses={404: {"model": ErrorResponse}, 425: {"model": ErrorResponse}},
    summary="Get payment result",
    description="Payment for a succeeded intent. Returns 425 while processing.",
)
async def get_payment_result(
    intent_id: str, service: PaymentService = Depends(get_service)
) -> Dict[str, Any]:
    payment = await service.get_payment_result(intent_id)
    return payment.to_dict()


@payment_router.get(
    "/{payment_id}/refunds",
    response_model=RefundListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="List refunds of a payment",
)
async def list_payment_refunds(
    payment_id: str, service: PaymentService = Depends(get_service)
) -> Dict[str, Any]:
    refunds = await service.list_refunds(payment_id)
    return {"payment_id": payment_id, "refunds": [refund.to_dict() for refund in refunds]}


@refund_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=RefundResponse,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Create refund",
    description="Refund part or all of a succeeded payment. Requires an Idempotency-Key.",
)
async def create_refund(
    body: Any = Body(default=None),
    idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
    service: PaymentService = Depends(get_service),
) -> Response:
    """Create a refund."""
    stored = await service.create_refund(body, idempotency_key)
    logger.info("create_refund_responded", status_code=stored.status_code)
    return _replay(stored)


@refund_router.get(
    "/{refund_id}",
    response_model=RefundResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get refund",
)
async def get_refund(
    refund_id: str, service: PaymentService = Depends(get_service)
) -> Dict[str, Any]:
    refund = await service.get_refund(refund_id)
    return refund.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall service health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
