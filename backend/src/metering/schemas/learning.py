"""Pydantic schemas for saved responses and the learning percentage."""
from datetime import datetime
from uuid import UUID

from pydantic import Field

from metering.schemas.base import CamelModel


class LearningPercentage(CamelModel):
    percentage: int = Field(..., ge=0, le=100)
    saved_responses_count: int = Field(default=0, ge=0)


class SavedResponseCreate(CamelModel):
    """A generated response the caller wants to keep."""

    text: str = Field(..., min_length=1, description="Response text")
    context: str | None = Field(default=None, description="Conversation context the response was generated for")
    last_message: str | None = Field(default=None, description="Message the response replies to")


class SavedResponseRead(CamelModel):
    id: UUID
    text: str
    context: str | None = None
    last_message: str | None = None
    created_at: datetime


class SavedResponseList(CamelModel):
    responses: list[SavedResponseRead] = Field(default_factory=list)


class SavedResponseDeleted(CamelModel):
    success: bool = True
    deleted: int = Field(..., ge=0, description="Rows removed")
