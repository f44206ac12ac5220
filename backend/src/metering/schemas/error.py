"""Structured error response schemas."""
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Every error the API returns carries an error type, a primary message,
    optional field-level details, a remediation hint and the request id the
    logging middleware bound for tracing.
    """

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "TrialAlreadyUsedError",
                "message": "Trial period has already been used",
                "details": [{"code": "trial_already_used", "message": "Trial period has already been used"}],
                "remediation": "Each account is entitled to one trial. Subscribe without a trial instead.",
                "request_id": "req_1234567890",
                "timestamp": "2025-01-15T10:30:00Z",
            }
        }
    )


class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    INVALID_IDENTITY = "invalid_identity"
    INVALID_SIGNATURE = "invalid_signature"
    MISSING_REQUIRED_FIELD = "missing_required_field"

    # Authentication errors (401)
    SIGN_IN_REQUIRED = "sign_in_required"

    # Not found errors (404)
    NOT_FOUND = "not_found"
    USER_NOT_FOUND = "user_not_found"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"

    # Business logic errors (409)
    TRIAL_ALREADY_USED = "trial_already_used"

    # External service errors (502, 503)
    UPSTREAM_FAILURE = "upstream_failure"
    NOT_CONFIGURED = "not_configured"
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_IDENTITY: "Send a valid address in the X-User-Email header or call from a routable network address",
    ErrorCode.SIGN_IN_REQUIRED: "Sign in and send the account email in the X-User-Email header",
    ErrorCode.USER_NOT_FOUND: "Sign in once to create the account before managing its subscription",
    ErrorCode.NO_ACTIVE_SUBSCRIPTION: "There is no active subscription or trial on this account",
    ErrorCode.TRIAL_ALREADY_USED: "Each account is entitled to one trial. Subscribe without a trial instead.",
    ErrorCode.UPSTREAM_FAILURE: "A dependent service is temporarily unavailable. Please try again later.",
    ErrorCode.NOT_CONFIGURED: "The service is missing required credentials. Contact the operator.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
