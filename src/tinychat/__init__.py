"""
Tinychat: a local chat client for on-device language models.

Streams tokens from a locally loaded model, renders throttled snapshots of the
growing answer, and lets the user cancel generation without losing the text
produced so far. Each subpackage hides one design decision: the inference
backend, the message store, and the generation session.
"""

__version__ = "0.1.0"

from .backend import InferenceBackend, ModelHandle, TokenAction, create_inference_backend
from .errors import GenerationError, LoadError, ResourceLimitError, TinychatError
from .session import (
    ChatController,
    GenerationOutcome,
    GenerationPhase,
    GenerationSession,
    GenerationState,
    ModelLoader,
    OutcomeStatus,
    build_prompt,
)
from .store import Message, MessageStore, Role, create_message_store

__all__ = [
    "ChatController",
    "GenerationError",
    "GenerationOutcome",
    "GenerationPhase",
    "GenerationSession",
    "GenerationState",
    "InferenceBackend",
    "LoadError",
    "Message",
    "MessageStore",
    "ModelHandle",
    "ModelLoader",
    "OutcomeStatus",
    "ResourceLimitError",
    "Role",
    "TinychatError",
    "TokenAction",
    "build_prompt",
    "create_inference_backend",
    "create_message_store",
]
