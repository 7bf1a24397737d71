"""
Pydantic schemas for API responses and error envelopes.

Request bodies are accepted as raw JSON objects so that the validation
layer reports every violation in one response.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PaymentIntentResponse(BaseModel):
    """Payment intent snapshot."""

    id: str = Field(..., description="Payment intent ID (pi_...)")
    object: str = Field(default="payment_intent", description="Object type")
    status: str = Field(..., description="Intent status")
    amount: int = Field(..., description="Amount in minor units")
    currency: str = Field(..., description="ISO 4217 currency code")
    customer_id: str = Field(..., description="Customer identifier")
    payment_method_id: str = Field(..., description="Payment method identifier")
    capture_method: str = Field(..., description="automatic or manual")
    client_secret: str = Field(..., description="Client secret for the intent")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Caller metadata")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")
    failure_reason: Optional[str] = Field(default=None, description="Set when the intent failed")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "pi_3f9c0b1e6d2a4c58",
                    "object": "payment_intent",
                    "status": "requires_confirmation",
                    "amount": 2599,
                    "currency": "USD",
                    "customer_id": "cus_123",
                    "payment_method_id": "pm_fake_visa",
                    "capture_method": "automatic",
                    "client_secret": "pi_3f9c0b1e6d2a4c58_secret_5d41402abc4b2a76b9719d91",
                    "metadata": {"order_id": "order_123"},
                    "created_at": "2026-01-06T10:00:00+00:00",
                    "updated_at": "2026-01-06T10:00:00+00:00",
                }
            ]
        }
    }


class ConfirmPaymentIntentResponse(BaseModel):
    """Response schema for intent confirmation."""

    id: str = Field(..., description="Payment intent ID")
    status: str = Field(..., description="Always 'processing'")
    retry_after: int = Field(..., description="Suggested polling interval (seconds)")


class JobResponse(BaseModel):
    """Processing stage snapshot."""

    id: str = Field(..., description="Job ID ({intent_id}_{type})")
    payment_intent_id: str = Field(..., description="Payment intent ID")
    type: str = Field(..., description="Stage type")
    name: str = Field(..., description="Stage display name")
    description: str = Field(..., description="Stage description")
    status: str = Field(..., description="pending, processing, completed or failed")
    order: int = Field(..., description="Display order (1-5)")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")
    started_at: Optional[str] = Field(default=None, description="Start timestamp (ISO 8601)")
    completed_at: Optional[str] = Field(
        default=None, description="Completion timestamp (ISO 8601)"
    )
    error_message: Optional[str] = Field(default=None, description="Set when the stage failed")


class JobListResponse(BaseModel):
    """Processing stages of a payment intent."""

    payment_intent_id: str = Field(..., description="Payment intent ID")
    jobs: List[JobResponse] = Field(..., description="Jobs ordered by stage order")


class PaymentResponse(BaseModel):
    """Payment created for a succeeded intent."""

    payment_id: str = Field(..., description="Payment ID (pay_...)")
    payment_intent_id: str = Field(..., description="Payment intent ID")
    status: str = Field(..., description="Payment status")
    captured_amount: int = Field(..., description="Captured amount in minor units")
    refunded_amount: int = Field(..., description="Cumulative refunded amount")
    currency: str = Field(..., description="ISO 4217 currency code")
    auth_code: str = Field(..., description="Issuer authorization code")
    receipt_url: str = Field(..., description="Receipt link")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")


class RefundResponse(BaseModel):
    """Refund snapshot."""

    id: str = Field(..., description="Refund ID (re_...)")
    payment_id: str = Field(..., description="Refunded payment ID")
    amount: int = Field(..., description="Refunded amount in minor units")
    reason: str = Field(..., description="requested_by_customer, duplicate or fraudulent")
    status: str = Field(..., description="Refund status")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "re_8a1f2c3d4e5f6a7b",
                    "payment_id": "pay_1a2b3c4d5e6f7a8b",
                    "amount": 1000,
                    "reason": "requested_by_customer",
                    "status": "succeeded",
                    "created_at": "2026-01-06T10:05:00+00:00",
                }
            ]
        }
    }


class RefundListResponse(BaseModel):
    """Refunds of a payment."""

    payment_id: str = Field(..., description="Payment ID")
    refunds: List[RefundResponse] = Field(..., description="Refunds in creation order")


class ErrorDetail(BaseModel):
    """A single error object."""

    type: str = Field(..., description="Error type")
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable message")
    param: Optional[str] = Field(default=None, description="Offending parameter")

    model_config = {"extra": "allow"}


class ErrorResponse(BaseModel):
    """Envelope for a single error."""

    error: ErrorDetail


class ErrorListResponse(BaseModel):
    """Envelope for several validation violations."""

    errors: List[ErrorDetail]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (ok/degraded)")
    timestamp: str = Field(..., description="Check timestamp (ISO 8601)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
