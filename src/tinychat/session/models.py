"""Data models for generation state and outcomes.

Hides how the session represents its progress and its terminal result.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..errors import GenerationError


class GenerationPhase(str, Enum):
    """Lifecycle phase of the (single) generation owned by a controller."""

    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    CANCELLING = "cancelling"
    DONE = "done"


class OutcomeStatus(str, Enum):
    """Terminal state of one generation."""

    COMPLETED = "completed"  # Finished normally or hit the token cap
    CANCELLED = "cancelled"  # Stopped by the user; partial text kept
    FAILED = "failed"        # Backend error; partial text kept


class GenerationOutcome(BaseModel):
    """Tagged result of one generation."""

    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    text: str = Field(default="", description="Final text, or partial text for cancelled/failed")
    error: str | None = Field(default=None, description="Error description for failed outcomes")
    token_count: int = Field(default=0, ge=0)

    @property
    def display_text(self) -> str:
        """Text to show as the assistant turn."""
        if self.status is OutcomeStatus.FAILED and not self.text:
            return f"Error: {self.error}"
        return self.text

    def raise_for_status(self) -> "GenerationOutcome":
        """Raise GenerationError for failed outcomes, otherwise return self."""
        if self.status is OutcomeStatus.FAILED:
            raise GenerationError(self.error or "unknown error")
        return self


class GenerationState(BaseModel):
    """Observable state of the generation session."""

    phase: GenerationPhase = GenerationPhase.IDLE
    accumulated_output: str = Field(default="", description="Latest streamed snapshot")
    last_error: str | None = None
    token_count: int = 0

    @property
    def is_running(self) -> bool:
        return self.phase in (GenerationPhase.RUNNING, GenerationPhase.CANCELLING)

    @property
    def is_busy(self) -> bool:
        return self.phase in (
            GenerationPhase.LOADING,
            GenerationPhase.RUNNING,
            GenerationPhase.CANCELLING,
        )
