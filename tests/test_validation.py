"""
Tests for request validation and the error envelope.
"""
from typing import Any, Callable, Dict

import pytest

from payment_intents.core.errors import (
    IdempotencyConflictError,
    NotFoundError,
    TooEarlyError,
    ValidationError,
    Violation,
)
from payment_intents.core.validation import (
    ensure_valid,
    is_positive_amount,
    validate_create_intent,
    validate_refund,
)


class TestCreateIntentValidation:
    """Test suite for create-intent body checks."""

    @pytest.mark.unit
    def test_valid_body_has_no_violations(
        self, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        assert validate_create_intent(intent_body()) == []

    @pytest.mark.unit
    def test_every_violation_is_reported(self) -> None:
        """An empty body violates amount, currency, customer and payment method at once."""
        codes = [violation.code for violation in validate_create_intent({})]

        assert codes == [
            "invalid_amount",
            "invalid_currency",
            "missing_customer",
            "invalid_payment_method",
        ]

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", [0, -1, 10.5, "100", True, None])
    def test_rejects_non_positive_integer_amounts(
        self, intent_body: Callable[..., Dict[str, Any]], amount: Any
    ) -> None:
        violations = validate_create_intent(intent_body(amount=amount))

        assert [v.code for v in violations] == ["invalid_amount"]
        assert violations[0].param == "amount"

    @pytest.mark.unit
    def test_rejects_unknown_currency_and_lowercase(
        self, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        assert [v.code for v in validate_create_intent(intent_body(currency="XYZ"))] == [
            "invalid_currency"
        ]
        assert [v.code for v in validate_create_intent(intent_body(currency="usd"))] == [
            "invalid_currency"
        ]

    @pytest.mark.unit
    def test_rejects_blank_customer(self, intent_body: Callable[..., Dict[str, Any]]) -> None:
        violations = validate_create_intent(intent_body(customer_id="   "))

        assert [v.code for v in violations] == ["missing_customer"]

    @pytest.mark.unit
    def test_rejects_unknown_payment_method(
        self, intent_body: Callable[..., Dict[str, Any]]
    ) -> None:
        violations = validate_create_intent(intent_body(payment_method_id="pm_real_card"))

        assert [v.code for v in violations] == ["invalid_payment_method"]

    @pytest.mark.unit
    def test_optional_fields(self, intent_body: Callable[..., Dict[str, Any]]) -> None:
        assert validate_create_intent(intent_body(capture_method="manual")) == []
        assert [
            v.code for v in validate_create_intent(intent_body(capture_method="later"))
        ] == ["invalid_capture_method"]
        assert [v.code for v in validate_create_intent(intent_body(metadata=["x"]))] == [
            "invalid_metadata"
        ]


class TestRefundValidation:
    """Test suite for create-refund body checks."""

    @pytest.mark.unit
    def test_valid_refund(self) -> None:
        assert validate_refund({"payment_id": "pay_1", "amount": 100}) == []
        assert validate_refund({"payment_id": "pay_1", "amount": 100, "reason": "duplicate"}) == []

    @pytest.mark.unit
    def test_collects_all_refund_violations(self) -> None:
        codes = [v.code for v in validate_refund({"amount": 0, "reason": "changed_mind"})]

        assert codes == ["missing_payment_id", "invalid_amount", "invalid_refund_reason"]


class TestErrorEnvelope:
    """Test suite for error rendering."""

    @pytest.mark.unit
    def test_is_positive_amount(self) -> None:
        assert is_positive_amount(1)
        assert not is_positive_amount(False)
        assert not is_positive_amount(1.0)

    @pytest.mark.unit
    def test_single_violation_renders_error_object(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid([Violation(code="invalid_amount", message="bad", param="amount")])

        assert exc_info.value.status_code == 422
        assert exc_info.value.to_response() == {
            "error": {
                "type": "validation_error",
                "code": "invalid_amount",
                "message": "bad",
                "param": "amount",
            }
        }

    @pytest.mark.unit
    def test_multiple_violations_render_error_list(self) -> None:
        error = ValidationError(validate_create_intent({}))

        response = error.to_response()
        assert "error" not in response
        assert len(response["errors"]) == 4
        assert all(item["type"] == "validation_error" for item in response["errors"])

    @pytest.mark.unit
    def test_ensure_valid_accepts_empty(self) -> None:
        ensure_valid([])

    @pytest.mark.unit
    def test_typed_errors_carry_status_and_details(self) -> None:
        too_early = TooEarlyError("Payment is still processing", retry_after=3)
        assert too_early.status_code == 425
        assert too_early.to_dict() == {
            "type": "too_early",
            "code": "payment_processing",
            "message": "Payment is still processing",
            "retry_after": 3,
        }

        assert NotFoundError("missing").to_dict()["type"] == "invalid_request_error"
        assert NotFoundError("missing").status_code == 404
        assert IdempotencyConflictError("reused").status_code == 409


class TestNonStringEnumValues:
    """Test suite for enum fields given JSON arrays or objects."""

    @pytest.mark.unit
    @pytest.mark.parametrize("capture_method", [["manual"], {"mode": "manual"}, 1])
    def test_capture_method_of_wrong_type_is_a_violation(self, capture_method: Any) -> None:
        violations = validate_create_intent(
            {
                "amount": -1,
                "currency": "usd",
                "customer_id": "",
                "payment_method_id": "x",
                "capture_method": capture_method,
            }
        )

        assert [v.code for v in violations] == [
            "invalid_amount",
            "invalid_currency",
            "missing_customer",
            "invalid_payment_method",
            "invalid_capture_method",
        ]

    @pytest.mark.unit
    @pytest.mark.parametrize("reason", [{"a": 1}, ["duplicate"], 3])
    def test_refund_reason_of_wrong_type_is_a_violation(self, reason: Any) -> None:
        violations = validate_refund({"payment_id": "pay_1", "amount": 0, "reason": reason})

        assert [v.code for v in violations] == ["invalid_amount", "invalid_refund_reason"]
