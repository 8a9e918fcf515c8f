"""Generation session module for tinychat.

Loads the model, builds prompts, runs streaming generation with cooperative
cancellation, and orchestrates a chat on top of a message store.
"""

from .controller import ChatController
from .generation import GenerationSession, GenerationStream
from .loader import ModelLoader
from .models import GenerationOutcome, GenerationPhase, GenerationState, OutcomeStatus
from .prompt import build_prompt

__all__ = [
    "ChatController",
    "GenerationOutcome",
    "GenerationPhase",
    "GenerationSession",
    "GenerationState",
    "GenerationStream",
    "ModelLoader",
    "OutcomeStatus",
    "build_prompt",
]
