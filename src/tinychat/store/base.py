"""Abstract base class for message stores.

This module defines the interface for durable chat history.
The abstraction hides:
- Storage format (SQLite, in-memory, etc.)
- Ordering and query mechanism
- Connection management
"""

from abc import ABC, abstractmethod

from .models import Message


class MessageStore(ABC):
    """Ordered storage of chat messages.

    Supports async context manager protocol:
        async with store:
            await store.append(Message.user("Hi"))
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the store."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store gracefully."""

    @abstractmethod
    async def append(self, message: Message) -> None:
        """Persist a new message."""

    @abstractmethod
    async def list_ordered(self) -> list[Message]:
        """Return every message, oldest first (timestamp, then insertion order)."""

    @abstractmethod
    async def delete_all(self) -> None:
        """Remove every message."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "MessageStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
