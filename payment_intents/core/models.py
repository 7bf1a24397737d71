"""
Domain entities and vocabularies for the payment intent lifecycle.

Intent state machine::

    REQUIRES_CONFIRMATION → PROCESSING → SUCCEEDED
                                      ↘ FAILED

CANCELED is part of the vocabulary but nothing transitions into it.
"""
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def generate_id(prefix: str) -> str:
    """Generate a resource id such as ``pi_3f9c0b1e6d2a4c58``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def generate_auth_code() -> str:
    """Six upper-case alphanumerics, as issuers return them."""
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    return "".join(secrets.choice(alphabet) for _ in range(6))


class IntentStatus(str, Enum):
    """Payment intent lifecycle states."""

    REQUIRES_CONFIRMATION = "requires_confirmation"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_INTENT_STATUSES


TERMINAL_INTENT_STATUSES: FrozenSet[IntentStatus] = frozenset(
    {IntentStatus.SUCCEEDED, IntentStatus.FAILED, IntentStatus.CANCELED}
)

# CANCELED has no inbound edge.
INTENT_TRANSITIONS: Mapping[IntentStatus, FrozenSet[IntentStatus]] = {
    IntentStatus.REQUIRES_CONFIRMATION: frozenset({IntentStatus.PROCESSING}),
    IntentStatus.PROCESSING: frozenset({IntentStatus.SUCCEEDED, IntentStatus.FAILED}),
    IntentStatus.SUCCEEDED: frozenset(),
    IntentStatus.FAILED: frozenset(),
    IntentStatus.CANCELED: frozenset(),
}


def can_transition(current: IntentStatus, target: IntentStatus) -> bool:
    """Return True if ``current → target`` is a defined transition."""
    return target in INTENT_TRANSITIONS[current]


class CaptureMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class JobStatus(str, Enum):
    """Processing stage statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class StageType(str, Enum):
    """The five verification stages run for every confirmed intent."""

    ANTI_FRAUD = "anti_fraud"
    AUTHORIZATION = "authorization"
    RISK_ASSESSMENT = "risk_assessment"
    COMPLIANCE_CHECK = "compliance_check"
    CAPTURE = "capture"

    @property
    def definition(self) -> "StageDefinition":
        return STAGE_CATALOGUE[self]


@dataclass(frozen=True)
class StageDefinition:
    """Display data for a stage. ``order`` is informational only."""

    name: str
    description: str
    order: int
    failure_message: str


STAGE_CATALOGUE: Mapping[StageType, StageDefinition] = {
    StageType.ANTI_FRAUD: StageDefinition(
        name="Anti-Fraud Check",
        description="Analyzing transaction for fraud patterns",
        order=1,
        failure_message="Transaction flagged as potentially fraudulent",
    ),
    StageType.AUTHORIZATION: StageDefinition(
        name="Payment Authorization",
        description="Authorizing payment with card issuer",
        order=2,
        failure_message="Payment authorization declined by issuer",
    ),
    StageType.RISK_ASSESSMENT: StageDefinition(
        name="Risk Assessment",
        description="Evaluating transaction risk score",
        order=3,
        failure_message="Transaction risk score too high",
    ),
    StageType.COMPLIANCE_CHECK: StageDefinition(
        name="Compliance Verification",
        description="Checking regulatory compliance",
        order=4,
        failure_message="Compliance verification failed",
    ),
    StageType.CAPTURE: StageDefinition(
        name="Payment Capture",
        description="Capturing authorized payment",
        order=5,
        failure_message="Payment capture failed",
    ),
}

if set(STAGE_CATALOGUE) != set(StageType):
    raise RuntimeError("STAGE_CATALOGUE must describe every StageType")


class RefundReason(str, Enum):
    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"


@dataclass
class PaymentIntent:
    """
    A client's intention to collect ``amount`` minor units.

    Owned by the state machine; mutated only through defined transitions.
    """

    id: str
    amount: int
    currency: str
    customer_id: str
    payment_method_id: str
    client_secret: str
    capture_method: CaptureMethod = CaptureMethod.AUTOMATIC
    status: IntentStatus = IntentStatus.REQUIRES_CONFIRMATION
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    failure_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "object": "payment_intent",
            "status": self.status.value,
            "amount": self.amount,
            "currency": self.currency,
            "customer_id": self.customer_id,
            "payment_method_id": self.payment_method_id,
            "capture_method": self.capture_method.value,
            "client_secret": self.client_secret,
            "metadata": dict(self.metadata),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if self.failure_reason is not None:
            data["failure_reason"] = self.failure_reason
        return data


@dataclass
class Job:
    """One processing stage of a confirmed intent. Read-only outside the orchestrator."""

    intent_id: str
    stage: StageType
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{self.intent_id}_{self.stage.value}"

    @property
    def order(self) -> int:
        return self.stage.definition.order

    def to_dict(self) -> Dict[str, Any]:
        definition = self.stage.definition
        data: Dict[str, Any] = {
            "id": self.id,
            "payment_intent_id": self.intent_id,
            "type": self.stage.value,
            "name": definition.name,
            "description": definition.description,
            "status": self.status.value,
            "order": definition.order,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
        }
        if self.error_message is not None:
            data["error_message"] = self.error_message
        return data


@dataclass
class Payment:
    """
    Settled funds for a succeeded intent.

    ``refunded_amount`` is only ever changed by the refund ledger.
    """

    payment_id: str
    intent_id: str
    captured_amount: int
    currency: str
    auth_code: str
    receipt_url: str
    status: str = "succeeded"
    refunded_amount: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def refundable_amount(self) -> int:
        return self.captured_amount - self.refunded_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "payment_intent_id": self.intent_id,
            "status": self.status,
            "captured_amount": self.captured_amount,
            "refunded_amount": self.refunded_amount,
            "currency": self.currency,
            "auth_code": self.auth_code,
            "receipt_url": self.receipt_url,
            "created_at": _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class Refund:
    """Append-only refund record."""

    id: str
    payment_id: str
    amount: int
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER
    status: str = "succeeded"
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "amount": self.amount,
            "reason": self.reason.value,
            "status": self.status,
            "created_at": _isoformat(self.created_at),
        }
