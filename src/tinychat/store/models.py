"""Data models for stored chat messages.

These models define what a message is, independent of the storage backend.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Author of a stored message."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A chat message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Role = Field(description="Who wrote the message: 'user' or 'assistant'")
    content: str = Field(description="Message text")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)
