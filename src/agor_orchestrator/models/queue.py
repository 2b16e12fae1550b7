"""Queued prompt models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class QueuedMessageStatus(str, Enum):
    """Queued prompt states. Promotion deletes the record."""

    QUEUED = "queued"


class QueuedMessageMetadata(BaseModel):
    """Who queued the prompt and how it should run."""

    queued_by_user_id: str | None = None
    permission_mode: str | None = None
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class QueuedMessage(BaseModel):
    """A prompt waiting for its session to become idle."""

    message_id: str
    session_id: str
    prompt: str
    queue_position: int
    status: QueuedMessageStatus = QueuedMessageStatus.QUEUED
    metadata: QueuedMessageMetadata = Field(default_factory=QueuedMessageMetadata)
