"""FastAPI dependencies for database sessions, caller identity and the payment adapter."""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from fastapi import Header, Request

from metering.adapters.stripe_adapter import StripeAdapter
from metering.config import settings
from metering.database import get_db
from metering.exceptions import IdentityValidationError
from metering.services.identity import Identity, address_identity
from metering.utils.clock import utcnow

logger = structlog.get_logger(__name__)

__all__ = ["Caller", "get_caller", "get_clock", "get_db", "get_optional_stripe_adapter", "get_stripe_adapter"]


@dataclass(frozen=True)
class Caller:
    """Resolved caller of one request."""

    identity: Identity
    address: Identity
    name: Optional[str] = None
    picture: Optional[str] = None


async def get_caller(
    request: Request,
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_picture: Optional[str] = Header(default=None),
    x_forwarded_for: Optional[str] = Header(default=None),
) -> Caller:
    """
    Resolve the caller from headers set by the upstream auth layer.

    ``X-User-Email`` is trusted as already verified. When it is missing or
    malformed the caller is identified by network address instead. An
    unparseable address never fails the request.
    """
    peer_host = request.client.host if request.client else None
    address = address_identity(x_forwarded_for, peer_host)

    identity = address
    if x_user_email and "@" in x_user_email:
        try:
            identity = Identity.email(x_user_email)
        except IdentityValidationError:
            logger.warning("caller_email_invalid", email=x_user_email, address=address.value)

    structlog.contextvars.bind_contextvars(identity_kind=identity.kind.value)
    return Caller(identity=identity, address=address, name=x_user_name, picture=x_user_picture)


async def get_stripe_adapter() -> StripeAdapter:
    """Get Stripe adapter instance."""
    return StripeAdapter(settings)


async def get_optional_stripe_adapter() -> Optional[StripeAdapter]:
    """Stripe adapter if configured, for routes that reach the provider only on some paths."""
    if not settings.stripe_secret_key:
        return None
    return StripeAdapter(settings)


def get_clock() -> Callable[[], datetime]:
    """Source of the current instant for services."""
    return utcnow
