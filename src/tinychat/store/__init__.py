"""Message store module for tinychat.

Provides ordered, durable storage for chat messages.
"""

from .base import MessageStore
from .factory import create_message_store
from .models import Message, Role

__all__ = [
    "Message",
    "MessageStore",
    "Role",
    "create_message_store",
]
