"""SQLAlchemy ORM models for usage metering."""
# Import all models here to ensure they are registered with Alembic

from metering.models.base import Base
from metering.models.user import User, SubscriptionType, SubscriptionStatus
from metering.models.ip_usage import IPUsage
from metering.models.saved_response import SavedResponse
from metering.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Base",
    "User",
    "SubscriptionType",
    "SubscriptionStatus",
    "IPUsage",
    "SavedResponse",
    "ProcessedWebhookEvent",
]
