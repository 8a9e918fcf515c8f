"""Prompt construction.

Turns the system prompt and the stored history into model input.
"""

from collections.abc import Sequence

from ..backend.models import ChatTurn, ModelInput
from ..store.models import Message


def build_prompt(system_prompt: str, history: Sequence[Message]) -> ModelInput:
    """Build the model input for one generation.

    The system prompt is always the first turn; messages follow in the given
    (chronological) order. Nothing is truncated, merged or dropped: callers
    bound the history before calling.

    Args:
        system_prompt: Instructions for the model
        history: Messages, oldest first

    Returns:
        ModelInput with ``len(history) + 1`` turns
    """
    turns = [ChatTurn(role="system", content=system_prompt)]
    turns.extend(ChatTurn(role=message.role.value, content=message.content) for message in history)
    return ModelInput(turns=turns)
