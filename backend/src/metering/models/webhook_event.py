"""Record of payment provider events already applied."""
from sqlalchemy import Column, String

from metering.models.base import Base


class ProcessedWebhookEvent(Base):
    """
    A provider webhook event that has been applied.

    Lets duplicate deliveries of the same event id be acknowledged without
    re-running the transition.
    """

    __tablename__ = "processed_webhook_events"

    event_id = Column(String, nullable=False, unique=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=True, index=True)
    outcome = Column(String, nullable=False)  # applied, noop, unresolved

    def __repr__(self) -> str:
        """String representation."""
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, event_type={self.event_type})>"
