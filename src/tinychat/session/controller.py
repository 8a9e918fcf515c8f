"""Chat orchestration.

Connects the message store, the model loader and the generation session:
persists the user turn, rebuilds the prompt from stored history, streams the
answer, and persists the assistant turn (or the partial one on cancel).
"""

import inspect
import logging
from collections.abc import Callable
from typing import Any

from ..backend import ModelHandle
from ..config import DEFAULT_SYSTEM_PROMPT
from ..errors import LoadError
from ..store import Message, MessageStore
from .generation import GenerationSession
from .loader import ModelLoader
from .models import GenerationOutcome, GenerationState, OutcomeStatus
from .prompt import build_prompt

logger = logging.getLogger(__name__)


class ChatController:
    """Foreground side of the chat.

    Owns exactly one GenerationSession. Only one submit runs at a time;
    callers should watch ``is_busy`` instead of relying on rejection.
    """

    def __init__(
        self,
        store: MessageStore,
        loader: ModelLoader,
        session: GenerationSession | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_history_messages: int | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Connected message store
            loader: Model loader (shared handle source)
            session: Generation session (a default one is created if omitted)
            system_prompt: Instructions prepended to every prompt
            max_history_messages: Keep only the most recent N messages in prompts
        """
        if max_history_messages is not None and max_history_messages < 1:
            raise ValueError("max_history_messages must be at least 1")
        self._store = store
        self._loader = loader
        self._session = session or GenerationSession()
        self._system_prompt = system_prompt
        self._max_history_messages = max_history_messages
        self._messages: list[Message] = []
        self._last_outcome: GenerationOutcome | None = None
        self._submitting = False
        self._cancel_pending = False

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @system_prompt.setter
    def system_prompt(self, value: str) -> None:
        self._system_prompt = value

    @property
    def messages(self) -> list[Message]:
        """Messages as of the last refresh, oldest first."""
        return list(self._messages)

    @property
    def session(self) -> GenerationSession:
        return self._session

    @property
    def state(self) -> GenerationState:
        return self._session.state

    @property
    def is_busy(self) -> bool:
        return self._submitting or self._session.is_busy

    @property
    def last_outcome(self) -> GenerationOutcome | None:
        return self._last_outcome

    async def refresh(self) -> list[Message]:
        """Reload the in-memory view from the store."""
        self._messages = await self._store.list_ordered()
        return self.messages

    async def load(self, on_progress: Callable[[float], None] | None = None) -> ModelHandle:
        """Make sure the model is loaded.

        Raises:
            LoadError: If the model cannot be loaded
        """
        if self._loader.is_loaded:
            return self._loader.handle

        self._session.mark_loading()
        try:
            return await self._loader.load(on_progress)
        except LoadError as e:
            self._session.state.last_error = str(e)
            raise
        finally:
            self._session.mark_idle()

    async def submit(
        self,
        text: str,
        on_partial: Callable[[str], Any] | None = None,
    ) -> GenerationOutcome | None:
        """Send a user message and generate the assistant reply.

        Blank text is ignored. While another submit is in progress the call is
        rejected and nothing is stored.

        Args:
            text: User message
            on_partial: Receives each streamed snapshot (full text so far);
                may be a coroutine function

        Returns:
            The generation outcome, or None when ignored or rejected

        Raises:
            LoadError: If the model cannot be loaded (the user message stays stored)
        """
        if not text or not text.strip():
            return None
        if self.is_busy:
            logger.warning("Submit ignored: a generation is already in progress")
            return None

        self._submitting = True
        self._cancel_pending = False
        try:
            await self._store.append(Message.user(text))
            history = await self.refresh()
            if self._max_history_messages is not None:
                history = history[-self._max_history_messages:]

            handle = await self.load()
            if self._cancel_pending:
                # Cancelled before the first token; nothing to keep
                logger.info("Submit cancelled before generation started")
                outcome = GenerationOutcome(status=OutcomeStatus.CANCELLED)
                self._last_outcome = outcome
                return outcome

            stream = self._session.start(handle, build_prompt(self._system_prompt, history))
            if stream is None:
                return None

            async for snapshot in stream:
                if on_partial is not None:
                    result = on_partial(snapshot)
                    if inspect.isawaitable(result):
                        await result

            outcome = stream.outcome
            self._last_outcome = outcome
            # Cancelled turns are stored by cancel(), which saw the partial text
            if outcome.status is not OutcomeStatus.CANCELLED:
                await self._store.append(Message.assistant(outcome.display_text))
            await self.refresh()
            return outcome
        finally:
            self._submitting = False
            self._cancel_pending = False

    async def cancel(self) -> Message | None:
        """Stop the running generation, keeping any partial answer.

        Returns:
            The stored partial assistant message, or None if there was
            nothing running or nothing generated yet
        """
        if not self._session.cancel():
            if self._submitting:
                # Still persisting or loading; stop before generation starts
                self._cancel_pending = True
            return None

        partial = self._session.state.accumulated_output
        if not partial:
            return None

        message = Message.assistant(partial)
        await self._store.append(message)
        await self.refresh()
        return message

    async def clear(self) -> None:
        """Delete every stored message. The loaded model is kept."""
        await self._store.delete_all()
        await self.refresh()

    def close(self) -> None:
        """Release the model. The store is owned by the caller."""
        self._loader.close()
