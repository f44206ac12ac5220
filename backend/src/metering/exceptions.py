"""Exception hierarchy for usage metering and subscription lifecycle errors.

Each exception carries the HTTP status and machine-readable code the API
renders for it:

    MeteringError (500)
    ├── NotConfiguredError (503)
    ├── ValidationError (400)
    │   ├── IdentityValidationError
    │   └── InvalidSignatureError
    ├── SignInRequiredError (401)
    ├── NotFoundError (404)
    │   ├── UserNotFoundError
    │   └── NoActiveSubscriptionError
    ├── TrialAlreadyUsedError (409)
    └── UpstreamFailureError (502)
"""
from typing import Any

from metering.schemas.error import ErrorCode


class MeteringError(Exception):
    """Base class for all metering errors."""

    status_code: int = 500
    error_code: str = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class NotConfiguredError(MeteringError):
    """Store or payment provider credentials are missing."""

    status_code = 503
    error_code = ErrorCode.NOT_CONFIGURED
    default_message = "Service is not configured"


class ValidationError(MeteringError):
    """Malformed input or missing required event fields."""

    status_code = 400
    error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request"


class IdentityValidationError(ValidationError):
    """Caller identity could not be classified."""

    error_code = ErrorCode.INVALID_IDENTITY
    default_message = "Invalid caller identity"


class InvalidSignatureError(ValidationError):
    """Webhook payload failed signature verification."""

    error_code = ErrorCode.INVALID_SIGNATURE
    default_message = "Invalid webhook signature"


class SignInRequiredError(MeteringError):
    """The operation needs an account identity, not a network address."""

    status_code = 401
    error_code = ErrorCode.SIGN_IN_REQUIRED
    default_message = "Sign in required"


class NotFoundError(MeteringError):
    """Identity or subscription lookup miss."""

    status_code = 404
    error_code = ErrorCode.NOT_FOUND
    default_message = "Resource not found"


class UserNotFoundError(NotFoundError):
    error_code = ErrorCode.USER_NOT_FOUND
    default_message = "User not found"


class NoActiveSubscriptionError(NotFoundError):
    error_code = ErrorCode.NO_ACTIVE_SUBSCRIPTION
    default_message = "No active subscription or trial found to cancel"


class TrialAlreadyUsedError(MeteringError):
    """The account has already started its one trial."""

    status_code = 409
    error_code = ErrorCode.TRIAL_ALREADY_USED
    default_message = "Trial period has already been used"


class UpstreamFailureError(MeteringError):
    """A store or payment provider call errored or timed out."""

    status_code = 502
    error_code = ErrorCode.UPSTREAM_FAILURE
    default_message = "Upstream service call failed"
