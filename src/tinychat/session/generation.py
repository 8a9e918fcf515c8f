"""Streaming generation session.

Owns the single in-flight generation: runs the token loop on a worker thread,
publishes throttled snapshots back to the event loop, honours cooperative
cancellation, and reports exactly one terminal outcome per start.

Cancellation is checked between generation steps, never inside one, so a
cancel takes effect after at most one more decode step.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Sequence

from ..backend import ModelHandle, ModelInput, TokenAction
from ..config import DEFAULT_FLUSH_EVERY, DEFAULT_MAX_TOKENS
from ..errors import GenerationError
from .models import GenerationOutcome, GenerationPhase, GenerationState, OutcomeStatus

logger = logging.getLogger(__name__)

_END = object()


class GenerationStream:
    """Snapshots of one generation, ending in a terminal outcome.

    Each snapshot is the full text produced so far and supersedes the previous
    one, so consumers replace rather than append.

    Usage:
        stream = session.start(handle, model_input)
        async for snapshot in stream:
            render(snapshot)
        # After iteration, the outcome is available
        print(stream.outcome.status)
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._outcome: GenerationOutcome | None = None

    @property
    def outcome(self) -> GenerationOutcome | None:
        """Terminal outcome (available once the generation has ended)."""
        return self._outcome

    @property
    def done(self) -> bool:
        return self._outcome is not None

    def _push(self, snapshot: str) -> None:
        self._queue.put_nowait(snapshot)

    def _finish(self, outcome: GenerationOutcome) -> None:
        self._outcome = outcome
        self._queue.put_nowait(_END)

    def __aiter__(self) -> "GenerationStream":
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _END:
            # Leave the marker so later iterations end immediately too
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item

    async def result(self) -> GenerationOutcome:
        """Drain remaining snapshots and return the terminal outcome."""
        async for _ in self:
            pass
        return self._outcome


class GenerationSession:
    """Single-flight token generation with throttled streaming.

    Hidden design decisions:
    - Worker thread for the blocking token loop
    - Snapshot cadence (every ``flush_every`` tokens, full redecode)
    - Token cap as a successful stop condition
    - Per-call reseeding of the sampler
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        flush_every: int = DEFAULT_FLUSH_EVERY,
        seed_source: Callable[[], int] = time.time_ns,
    ) -> None:
        """Initialize the session.

        Args:
            max_tokens: Hard cap on generated tokens
            flush_every: Tokens between published snapshots
            seed_source: Returns a fresh seed for every generation
        """
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if flush_every < 1:
            raise ValueError("flush_every must be at least 1")
        self._max_tokens = max_tokens
        self._flush_every = flush_every
        self._seed_source = seed_source
        self._state = GenerationState()
        self._cancel_event = threading.Event()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def is_busy(self) -> bool:
        return self._state.is_busy

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    def mark_loading(self) -> None:
        """Enter the loading phase while the controller acquires the model."""
        if self._state.is_running:
            raise RuntimeError("Cannot load while a generation is running")
        self._state.phase = GenerationPhase.LOADING

    def mark_idle(self) -> None:
        """Leave the loading phase without generating."""
        if self._state.phase is GenerationPhase.LOADING:
            self._state.phase = GenerationPhase.IDLE

    def start(self, handle: ModelHandle, model_input: ModelInput) -> GenerationStream | None:
        """Start a generation.

        Must be called from a running event loop. If a generation is already
        running nothing is started and None is returned.

        Args:
            handle: Loaded model
            model_input: Conversation to continue

        Returns:
            Stream of snapshots, or None when rejected
        """
        if self._state.is_running:
            logger.warning("Generation already running; start request ignored")
            return None

        loop = asyncio.get_running_loop()

        # Fresh flag per generation so a late cancel cannot leak into the next one
        self._cancel_event = threading.Event()
        self._state.phase = GenerationPhase.RUNNING
        self._state.accumulated_output = ""
        self._state.last_error = None
        self._state.token_count = 0

        stream = GenerationStream()
        self._task = loop.create_task(self._run(handle, model_input, stream, self._cancel_event))
        return stream

    def cancel(self) -> bool:
        """Ask the running generation to stop after its current step.

        Returns:
            True if a running generation was signalled
        """
        if not self._state.is_running:
            return False
        self._cancel_event.set()
        self._state.phase = GenerationPhase.CANCELLING
        logger.info("Cancellation requested after %d tokens", self._state.token_count)
        return True

    async def _run(
        self,
        handle: ModelHandle,
        model_input: ModelInput,
        stream: GenerationStream,
        cancel_event: threading.Event,
    ) -> GenerationOutcome:
        loop = asyncio.get_running_loop()
        seed = self._seed_source()
        generated = 0

        def publish(snapshot: str, count: int) -> None:
            # Snapshots that arrive after cancel() would contradict the kept partial text
            if cancel_event.is_set():
                return
            self._state.accumulated_output = snapshot
            self._state.token_count = count
            stream._push(snapshot)

        def on_tokens(tokens: Sequence[int]) -> TokenAction:
            nonlocal generated
            if cancel_event.is_set():
                return TokenAction.STOP
            count = len(tokens)
            if count == 0:
                return TokenAction.MORE
            generated = count
            if count % self._flush_every == 0:
                loop.call_soon_threadsafe(publish, handle.decode(tokens), count)
            if count >= self._max_tokens:
                return TokenAction.STOP
            return TokenAction.MORE

        def work() -> str:
            handle.seed(seed)
            return handle.generate(model_input, on_tokens)

        logger.info("Generation started (%d turns)", len(model_input.turns))
        outcome: GenerationOutcome | None = None
        worker = asyncio.ensure_future(asyncio.to_thread(work))
        try:
            final_text = await asyncio.shield(worker)
        except asyncio.CancelledError:
            cancel_event.set()
            outcome = self._outcome_for(OutcomeStatus.CANCELLED, generated)
            raise
        except Exception as e:
            if cancel_event.is_set():
                outcome = self._outcome_for(OutcomeStatus.CANCELLED, generated)
            else:
                failure = GenerationError(str(e) or type(e).__name__)
                logger.error("%s (after %d tokens)", failure, generated, exc_info=True)
                outcome = self._outcome_for(
                    OutcomeStatus.FAILED, generated, error=failure.description
                )
        else:
            if cancel_event.is_set():
                outcome = self._outcome_for(OutcomeStatus.CANCELLED, generated)
            else:
                outcome = GenerationOutcome(
                    status=OutcomeStatus.COMPLETED,
                    text=final_text,
                    token_count=generated,
                )
                self._state.accumulated_output = final_text
        finally:
            self._state.token_count = generated
            if worker.done():
                self._state.phase = GenerationPhase.DONE
            else:
                # The thread still holds the handle; stay busy until it returns
                self._state.phase = GenerationPhase.CANCELLING
                worker.add_done_callback(self._release)
            if outcome is not None:
                if outcome.error is not None:
                    self._state.last_error = outcome.error
                stream._finish(outcome)
                logger.info("Generation %s (%d tokens)", outcome.status.value, generated)

        return outcome

    def _release(self, worker: asyncio.Future) -> None:
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("Generation thread ended with %r after cancellation", worker.exception())
        self._state.phase = GenerationPhase.DONE

    def _outcome_for(
        self, status: OutcomeStatus, token_count: int, error: str | None = None
    ) -> GenerationOutcome:
        return GenerationOutcome(
            status=status,
            text=self._state.accumulated_output,
            error=error,
            token_count=token_count,
        )
