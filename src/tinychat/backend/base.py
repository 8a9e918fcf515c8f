from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from ..errors import ResourceLimitError
from .models import ModelInput, TokenAction

# Called with the full token buffer after each generation step
TokenCallback = Callable[[Sequence[int]], TokenAction]

# Called with a fraction of load work completed, in [0.0, 1.0]
ProgressCallback = Callable[[float], None]


class ModelHandle(ABC):
    """A loaded model plus its tokenizer/decoder pair.

    Created once by ``InferenceBackend.load`` and reused by every generation.
    A handle is not safe for concurrent inference; the generation session
    guarantees at most one ``generate`` call at a time.
    """

    @abstractmethod
    def seed(self, value: int) -> None:
        """Reseed the sampling random source."""

    @abstractmethod
    def generate(self, model_input: ModelInput, on_tokens: TokenCallback) -> str:
        """Run token-by-token generation.

        Blocking. ``on_tokens`` is called with the growing token buffer after
        every step; generation stops when it returns ``TokenAction.STOP`` or the
        model emits end of sequence.

        Args:
            model_input: Conversation to continue
            on_tokens: Step callback deciding whether to continue

        Returns:
            Decoded text of every generated token

        Raises:
            Exception: Backend-specific errors during generation
        """

    @abstractmethod
    def decode(self, tokens: Sequence[int]) -> str:
        """Decode a non-empty token buffer to text."""

    def close(self) -> None:
        """Release model resources."""


class InferenceBackend(ABC):
    """Abstract model backend.

    This module hides the design decision of which inference runtime runs the
    model. Implementations must handle:
    - Locating or downloading weights
    - Loading weights and reporting progress
    - Applying the process-wide resource (cache) limit

    The resource limit must be configured before the first inference step and
    can never change afterwards.
    """

    def __init__(self) -> None:
        self._resource_limit: int | None = None
        self._inference_started = False

    @property
    def resource_limit(self) -> int | None:
        """Configured resource limit in bytes, or None if not configured yet."""
        return self._resource_limit

    @property
    def inference_started(self) -> bool:
        return self._inference_started

    def configure_resource_limit(self, limit_bytes: int) -> None:
        """Set the cache / working-set limit of the runtime.

        Raises:
            ResourceLimitError: If already configured or inference has started
            ValueError: If limit is negative
        """
        if self._inference_started:
            raise ResourceLimitError("cannot be configured after inference has started")
        if self._resource_limit is not None:
            raise ResourceLimitError(
                f"already configured to {self._resource_limit} bytes"
            )
        if limit_bytes < 0:
            raise ValueError("limit_bytes must be non-negative")
        self._resource_limit = limit_bytes
        self._apply_resource_limit(limit_bytes)

    def _apply_resource_limit(self, limit_bytes: int) -> None:
        """Hook for runtimes that apply the limit eagerly."""

    def mark_inference_started(self) -> None:
        """Record that a generation step ran; freezes the resource limit."""
        self._inference_started = True

    @abstractmethod
    def load(self, on_progress: ProgressCallback) -> ModelHandle:
        """Load the model. Blocking; run it off the event loop.

        Args:
            on_progress: Receives fraction-complete values in [0.0, 1.0]

        Returns:
            Loaded model handle

        Raises:
            Exception: Storage, network, format or memory errors
        """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""
