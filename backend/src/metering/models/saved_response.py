"""Saved generated responses."""
from sqlalchemy import Column, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from metering.models.base import Base


class SavedResponse(Base):
    """
    A generated response the user chose to keep.

    Append-only; the count per user feeds the learning percentage.
    """

    __tablename__ = "saved_responses"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    last_message = Column(Text, nullable=True)

    # Relationships
    user = relationship("User", back_populates="saved_responses")

    def __repr__(self) -> str:
        """String representation."""
        return f"<SavedResponse(id={self.id}, user_id={self.user_id})>"
