"""Pytest configuration and shared fixtures."""
import asyncio
import threading
import time
from collections.abc import Sequence

import pytest

from tinychat.backend import InferenceBackend, ModelHandle, ModelInput, TokenAction
from tinychat.store import create_message_store

ALPHABET = "abcdefghijklmnopqrstuvwxyz"


class FakeHandle(ModelHandle):
    """Scripted model: token ``i`` decodes to ``words[i]``.

    Like a real runtime, the step callback first sees the empty buffer of the
    prefill step. ``pause_after`` blocks the worker thread after that many
    tokens until ``resume`` is set, so tests can act mid-generation.
    """

    def __init__(
        self,
        words: Sequence[str] = ALPHABET[:10],
        fail_at: int | None = None,
        pause_after: int | None = None,
        step_delay: float = 0.0,
    ):
        self.words = list(words)
        self.fail_at = fail_at
        self.pause_after = pause_after
        self.step_delay = step_delay
        self.reached = threading.Event()
        self.resume = threading.Event()
        self.seeds: list[int] = []
        self.inputs: list[ModelInput] = []
        self.decoded_lengths: list[int] = []
        self.closed = False

    def seed(self, value: int) -> None:
        self.seeds.append(value)

    def generate(self, model_input, on_tokens):
        self.inputs.append(model_input)
        tokens: list[int] = []
        if on_tokens(list(tokens)) is TokenAction.STOP:
            return ""

        for index in range(len(self.words)):
            if self.fail_at is not None and index == self.fail_at:
                raise RuntimeError("backend exploded")
            if self.step_delay:
                time.sleep(self.step_delay)
            tokens.append(index)
            action = on_tokens(list(tokens))
            if self.pause_after is not None and len(tokens) == self.pause_after:
                self.reached.set()
                self.resume.wait(timeout=5)
            if action is TokenAction.STOP:
                break

        return self.decode(tokens) if tokens else ""

    def decode(self, tokens):
        if not tokens:
            raise ValueError("Cannot decode an empty token buffer")
        self.decoded_lengths.append(len(tokens))
        return "".join(self.words[token] for token in tokens)

    def close(self) -> None:
        self.closed = True


class FakeBackend(InferenceBackend):
    """Backend returning a FakeHandle, with scripted progress and failures.

    With ``hold_load`` set, ``load`` signals ``loading`` and blocks until
    ``release`` is set.
    """

    def __init__(
        self,
        handle: FakeHandle | None = None,
        progress: Sequence[float] = (0.25, 0.5, 0.9),
        fail_times: int = 0,
        hold_load: bool = False,
    ):
        super().__init__()
        self.hold_load = hold_load
        self.loading = threading.Event()
        self.release = threading.Event()
        self.handle = handle or FakeHandle()
        self.progress = list(progress)
        self.fail_times = fail_times
        self.load_calls = 0
        self.limit_at_load: list[int | None] = []
        self.applied_limits: list[int] = []

    def _apply_resource_limit(self, limit_bytes: int) -> None:
        self.applied_limits.append(limit_bytes)

    def load(self, on_progress):
        self.load_calls += 1
        self.limit_at_load.append(self.resource_limit)
        self.loading.set()
        if self.hold_load:
            self.release.wait(timeout=5)
        for fraction in self.progress:
            on_progress(fraction)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise OSError("weights unreadable")
        return self.handle

    @property
    def backend_type(self) -> str:
        return "fake"


async def wait_for(event: threading.Event, timeout: float = 5.0) -> None:
    """Wait for a worker-thread event without blocking the event loop."""
    assert await asyncio.to_thread(event.wait, timeout), "worker never reached the pause point"


@pytest.fixture
def fake_handle():
    """Return a ten-token scripted model."""
    return FakeHandle()


@pytest.fixture
def fake_backend(fake_handle):
    """Return a backend serving ``fake_handle``."""
    return FakeBackend(fake_handle)


@pytest.fixture
def memory_store():
    """Return an in-memory message store."""
    return create_message_store("memory")
