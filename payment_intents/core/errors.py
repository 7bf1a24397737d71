"""
Error taxonomy for the payment intent core.

Every domain failure is a typed ``PaymentError`` carrying the ``type``,
``code`` and HTTP status the request boundary translates it to. All errors
render to the same envelope::

    {"error": {"type": ..., "code": ..., "message": ..., "param": ...}}

A validation failure with more than one violation renders
``{"errors": [...]}`` instead.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Violation:
    """A single rejected field."""

    code: str
    message: str
    param: Optional[str] = None
    type: str = "validation_error"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "code": self.code, "message": self.message}
        if self.param is not None:
            data["param"] = self.param
        return data


class PaymentError(Exception):
    """Base exception for payment intent errors."""

    error_type = "api_error"
    default_code = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        param: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.param = param
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error object."""
        data: Dict[str, Any] = {
            "type": self.error_type,
            "code": self.code,
            "message": self.message,
        }
        if self.param is not None:
            data["param"] = self.param
        data.update(self.details)
        return data

    def to_response(self) -> Dict[str, Any]:
        """Render the full error envelope."""
        return {"error": self.to_dict()}


class ValidationError(PaymentError):
    """Raised when one or more request fields are invalid."""

    error_type = "validation_error"
    default_code = "invalid_request_body"
    status_code = 422

    def __init__(self, violations: List[Violation]):
        if not violations:
            raise ValueError("ValidationError requires at least one violation")
        first = violations[0]
        super().__init__(first.message, code=first.code, param=first.param)
        self.violations = list(violations)

    def to_response(self) -> Dict[str, Any]:
        if len(self.violations) == 1:
            return {"error": self.violations[0].to_dict()}
        return {"errors": [violation.to_dict() for violation in self.violations]}


class CardError(PaymentError):
    """Raised when the payment method cannot be used."""

    error_type = "card_error"
    default_code = "invalid_payment_method"
    status_code = 402


class InvalidRequestError(PaymentError):
    """Raised for malformed requests, unknown resources and state conflicts."""

    error_type = "invalid_request_error"
    default_code = "invalid_request"
    status_code = 400


class MalformedRequestError(InvalidRequestError):
    """Raised when a request is missing a required header or has an unusable body."""

    default_code = "malformed_request"
    status_code = 400


class NotFoundError(InvalidRequestError):
    """Raised when a referenced resource does not exist."""

    default_code = "resource_not_found"
    status_code = 404


class InvalidStateError(InvalidRequestError):
    """Raised when a resource is not in a state that permits the operation."""

    default_code = "payment_intent_unexpected_state"
    status_code = 409


class RefundExceedsCapturedAmountError(InvalidRequestError):
    """Raised when a refund would push the refunded total past the captured amount."""

    default_code = "refund_exceeds_captured_amount"
    status_code = 422


class IdempotencyConflictError(PaymentError):
    """Raised when an idempotency key is replayed with a different request body."""

    error_type = "idempotency_conflict"
    default_code = "idempotency_key_reused"
    status_code = 409


class TooEarlyError(PaymentError):
    """Raised when a result is requested before processing has finished."""

    error_type = "too_early"
    default_code = "payment_processing"
    status_code = 425


class ApiError(PaymentError):
    """Raised for unexpected internal faults."""
