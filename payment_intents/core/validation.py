"""
Request validation for payment intents and refunds.

All checks are pure and collect every violation instead of stopping at the
first one.
"""
from typing import Any, FrozenSet, List, Mapping

from payment_intents.core.errors import ValidationError, Violation
from payment_intents.core.models import CaptureMethod, RefundReason

VALID_CURRENCIES: FrozenSet[str] = frozenset({"USD", "EUR", "GBP", "CAD", "AUD", "JPY"})

VALID_PAYMENT_METHODS: FrozenSet[str] = frozenset(
    {
        "pm_fake_visa",
        "pm_fake_mastercard",
        "pm_fake_amex",
        "pm_fake_discover",
    }
)

_CAPTURE_METHODS = frozenset(method.value for method in CaptureMethod)
_REFUND_REASONS = frozenset(reason.value for reason in RefundReason)


def is_positive_amount(value: Any) -> bool:
    """Amounts are integer minor units; bools and floats are rejected."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_payment_method(value: Any) -> bool:
    return isinstance(value, str) and value in VALID_PAYMENT_METHODS


def validate_create_intent(data: Mapping[str, Any]) -> List[Violation]:
    """
    Check a create-intent request body.

    Args:
        data: Decoded request body

    Returns:
        List[Violation]: Every violated field, empty if the body is valid
    """
    violations: List[Violation] = []

    if not is_positive_amount(data.get("amount")):
        violations.append(
            Violation(
                code="invalid_amount",
                message="Amount must be a positive integer in minor units",
                param="amount",
            )
        )

    currency = data.get("currency")
    if not isinstance(currency, str) or currency not in VALID_CURRENCIES:
        violations.append(
            Violation(
                code="invalid_currency",
                message=f"Currency must be one of: {', '.join(sorted(VALID_CURRENCIES))}",
                param="currency",
            )
        )

    if not is_non_empty_string(data.get("customer_id")):
        violations.append(
            Violation(
                code="missing_customer",
                message="Customer ID is required",
                param="customer_id",
            )
        )

    if not is_valid_payment_method(data.get("payment_method_id")):
        violations.append(
            Violation(
                code="invalid_payment_method",
                message="Invalid payment method",
                param="payment_method_id",
            )
        )

    capture_method = data.get("capture_method")
    if capture_method is not None and (
        not isinstance(capture_method, str) or capture_method not in _CAPTURE_METHODS
    ):
        violations.append(
            Violation(
                code="invalid_capture_method",
                message="Capture method must be automatic or manual",
                param="capture_method",
            )
        )

    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        violations.append(
            Violation(
                code="invalid_metadata",
                message="Metadata must be an object",
                param="metadata",
            )
        )

    return violations


def validate_refund(data: Mapping[str, Any]) -> List[Violation]:
    """
    Check a create-refund request body.

    Args:
        data: Decoded request body

    Returns:
        List[Violation]: Every violated field, empty if the body is valid
    """
    violations: List[Violation] = []

    if not is_non_empty_string(data.get("payment_id")):
        violations.append(
            Violation(
                code="missing_payment_id",
                message="Payment ID is required",
                param="payment_id",
            )
        )

    if not is_positive_amount(data.get("amount")):
        violations.append(
            Violation(
                code="invalid_amount",
                message="Amount must be a positive integer in minor units",
                param="amount",
            )
        )

    reason = data.get("reason")
    if reason is not None and (not isinstance(reason, str) or reason not in _REFUND_REASONS):
        violations.append(
            Violation(
                code="invalid_refund_reason",
                message=f"Reason must be one of: {', '.join(sorted(_REFUND_REASONS))}",
                param="reason",
            )
        )

    return violations


def ensure_valid(violations: List[Violation]) -> None:
    """Raise ValidationError carrying every violation, if any."""
    if violations:
        raise ValidationError(violations)
