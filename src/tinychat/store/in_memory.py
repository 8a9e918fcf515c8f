"""In-memory message store.

Simple list-based storage for session-only chats and tests.
Data is lost when the application exits.
"""

from .base import MessageStore
from .models import Message


class InMemoryMessageStore(MessageStore):
    """In-memory message store (session-only)."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    async def connect(self) -> None:
        """Initialize store (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close store (no-op for in-memory)."""
        pass

    async def append(self, message: Message) -> None:
        self._messages.append(message)

    async def list_ordered(self) -> list[Message]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(self._messages, key=lambda m: m.timestamp)

    async def delete_all(self) -> None:
        self._messages.clear()

    @property
    def backend_type(self) -> str:
        return "memory"
