"""User account model: usage counters and subscription state."""
import enum

from sqlalchemy import Boolean, Column, Enum as SQLEnum, Integer, String
from sqlalchemy.orm import relationship

from metering.models.base import Base, JSONType, UTCDateTime, utcnow


class SubscriptionType(enum.Enum):
    """Subscription tier."""

    STANDARD = "standard"
    PREMIUM = "premium"


class SubscriptionStatus(enum.Enum):
    """Whether paid (or trial) access is currently granted."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class User(Base):
    """
    Authenticated account.

    Holds the per-account usage record and the subscription record. Usage
    columns are written by the usage ledger; subscription columns only by
    the subscription state machine.
    """

    __tablename__ = "users"

    email = Column(String, nullable=False, unique=True, index=True)  # Normalized lower-case
    name = Column(String, nullable=True)
    picture = Column(String, nullable=True)

    # Usage record
    daily_usage = Column(Integer, nullable=False, default=0)
    total_usage = Column(Integer, nullable=False, default=0)
    last_used = Column(UTCDateTime, nullable=False, default=utcnow)
    last_reset = Column(UTCDateTime, nullable=False, default=utcnow)
    daily_usage_history = Column(JSONType, nullable=False, default=dict)  # {"YYYY-MM-DD": count}

    # Subscription record
    subscription_type = Column(
        SQLEnum(SubscriptionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubscriptionType.STANDARD,
    )
    subscription_status = Column(
        SQLEnum(SubscriptionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubscriptionStatus.INACTIVE,
        index=True,
    )
    subscription_updated_at = Column(UTCDateTime, nullable=False, default=utcnow)
    is_trial = Column(Boolean, nullable=False, default=False)
    trial_started_at = Column(UTCDateTime, nullable=True)
    trial_end_date = Column(UTCDateTime, nullable=True)
    trial_ending_soon = Column(Boolean, nullable=False, default=False)
    subscription_end_date = Column(UTCDateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)

    # Relationships
    saved_responses = relationship(
        "SavedResponse",
        back_populates="user",
        order_by="SavedResponse.created_at.desc()",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<User(id={self.id}, email={self.email}, status={self.subscription_status.value})>"
