from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TokenAction(str, Enum):
    """Answer of a token callback: keep generating or stop."""

    MORE = "more"
    STOP = "stop"


class ChatTurn(BaseModel):
    """One conversation turn in the form a chat template consumes."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"] = Field(
        description="Role of the turn: 'system', 'user', or 'assistant'"
    )
    content: str = Field(description="Text of the turn")


class ModelInput(BaseModel):
    """Ordered conversation handed to a model for one generation."""

    model_config = ConfigDict(frozen=True)

    turns: list[ChatTurn] = Field(default_factory=list)

    def as_dicts(self) -> list[dict[str, str]]:
        """Return turns as ``{"role", "content"}`` dicts, in order."""
        return [{"role": turn.role, "content": turn.content} for turn in self.turns]
