"""Anonymous usage keyed by network address."""
from sqlalchemy import Column, Integer, String

from metering.models.base import Base, UTCDateTime, utcnow


class IPUsage(Base):
    """Usage record for an unauthenticated caller."""

    __tablename__ = "ip_usage"

    ip_address = Column(String, nullable=False, unique=True, index=True)  # Normalized address
    daily_usage = Column(Integer, nullable=False, default=0)
    total_usage = Column(Integer, nullable=False, default=0)
    last_used = Column(UTCDateTime, nullable=False, default=utcnow)
    last_reset = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        """String representation."""
        return f"<IPUsage(ip_address={self.ip_address}, daily_usage={self.daily_usage})>"
