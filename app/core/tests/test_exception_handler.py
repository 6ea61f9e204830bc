"""
Tests for the DRF exception handler.

Application errors map to their category's HTTP status; everything else
falls through to DRF's default handling.
"""

import pytest
from rest_framework.exceptions import NotAuthenticated

from core.exception_handler import api_exception_handler
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)


class TestApiExceptionHandler:
    @pytest.mark.parametrize(
        "exc_class, expected_status",
        [
            (BaseApplicationError, 400),
            (ValidationError, 400),
            (NotFoundError, 404),
            (ConflictError, 409),
            (RateLimitError, 429),
            (ExternalServiceError, 502),
        ],
    )
    def test_status_per_category(self, exc_class, expected_status):
        response = api_exception_handler(exc_class("nope"), {"view": None})

        assert response.status_code == expected_status

    def test_body_carries_code_and_details(self):
        exc = ConflictError(
            "Cannot refund purchase in 'failed' status",
            error_code="INVALID_TRANSITION",
            details={"current_status": "failed"},
        )

        response = api_exception_handler(exc, {"view": None})

        assert response.data == {
            "error": "Cannot refund purchase in 'failed' status",
            "error_code": "INVALID_TRANSITION",
            "details": {"current_status": "failed"},
        }

    def test_details_omitted_when_empty(self):
        response = api_exception_handler(NotFoundError("Refund not found"), {"view": None})

        assert "details" not in response.data
        assert response.data["error_code"] == "NOT_FOUND"

    def test_drf_exceptions_use_default_handler(self):
        response = api_exception_handler(NotAuthenticated(), {"view": None})

        assert response.status_code == 401

    def test_unknown_exceptions_not_handled(self):
        assert api_exception_handler(RuntimeError("boom"), {"view": None}) is None


class TestBaseApplicationError:
    def test_str_includes_code(self):
        exc = ValidationError("Amount must be positive", error_code="INVALID_AMOUNT")

        assert str(exc) == "[INVALID_AMOUNT] Amount must be positive"
        assert exc.message == "Amount must be positive"

    def test_default_code(self):
        assert ExternalServiceError("down").error_code == "EXTERNAL_SERVICE_ERROR"
