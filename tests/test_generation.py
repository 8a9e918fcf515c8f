"""Unit tests for the streaming generation session."""
import asyncio
import itertools

import pytest

from conftest import FakeHandle, wait_for
from tinychat.backend import ChatTurn, ModelInput
from tinychat.errors import GenerationError
from tinychat.session import GenerationPhase, GenerationSession, OutcomeStatus

PROMPT = ModelInput(turns=[
    ChatTurn(role="system", content="you are a helpful assistant"),
    ChatTurn(role="user", content="Hi"),
])


async def collect(stream) -> list[str]:
    return [snapshot async for snapshot in stream]


class TestGenerationSessionConfig:
    """Tests for session construction."""

    def test_defaults(self):
        """Test the default cap and idle start."""
        session = GenerationSession()

        assert session.max_tokens == 2048
        assert session.state.phase == GenerationPhase.IDLE
        assert not session.is_running

    @pytest.mark.parametrize("kwargs", [{"max_tokens": 0}, {"flush_every": 0}])
    def test_rejects_non_positive_settings(self, kwargs):
        """Test cap and cadence must be positive."""
        with pytest.raises(ValueError):
            GenerationSession(**kwargs)


class TestStreaming:
    """Tests for snapshot cadence and completion."""

    @pytest.mark.asyncio
    async def test_snapshots_every_four_tokens(self, fake_handle):
        """Test snapshots are full re-decodes at multiples of four tokens."""
        session = GenerationSession()

        stream = session.start(fake_handle, PROMPT)
        snapshots = await collect(stream)

        assert snapshots == ["abcd", "abcdefgh"]
        assert stream.outcome.status == OutcomeStatus.COMPLETED
        assert stream.outcome.text == "abcdefghij"
        assert stream.outcome.token_count == 10
        assert session.state.accumulated_output == "abcdefghij"

    @pytest.mark.asyncio
    async def test_each_snapshot_supersedes_the_previous(self):
        """Test every snapshot extends the one before it."""
        handle = FakeHandle(words=[f"{i} " for i in range(37)])
        session = GenerationSession(flush_every=3)

        snapshots = await collect(session.start(handle, PROMPT))

        assert len(snapshots) == 12
        for previous, current in itertools.pairwise(snapshots):
            assert current.startswith(previous)

    @pytest.mark.asyncio
    async def test_empty_buffer_is_never_decoded(self, fake_handle):
        """Test the prefill step with zero tokens does not reach decode."""
        session = GenerationSession(flush_every=1)

        await session.start(fake_handle, PROMPT).result()

        assert 0 not in fake_handle.decoded_lengths

    @pytest.mark.asyncio
    async def test_no_tokens_completes_empty(self):
        """Test a model that ends immediately yields an empty completion."""
        session = GenerationSession()

        stream = session.start(FakeHandle(words=[]), PROMPT)
        snapshots = await collect(stream)

        assert snapshots == []
        assert stream.outcome.status == OutcomeStatus.COMPLETED
        assert stream.outcome.text == ""

    @pytest.mark.asyncio
    async def test_model_input_is_passed_through(self, fake_handle):
        """Test the handle receives the prompt unchanged."""
        await GenerationSession().start(fake_handle, PROMPT).result()

        assert fake_handle.inputs == [PROMPT]

    @pytest.mark.asyncio
    async def test_state_after_completion(self, fake_handle):
        """Test the busy flag is cleared and the phase is terminal."""
        session = GenerationSession()

        await session.start(fake_handle, PROMPT).result()

        assert session.state.phase == GenerationPhase.DONE
        assert not session.is_running
        assert not session.is_busy
        assert session.state.token_count == 10

    @pytest.mark.asyncio
    async def test_stream_can_be_iterated_after_end(self, fake_handle):
        """Test a finished stream stays finished."""
        stream = GenerationSession().start(fake_handle, PROMPT)
        await stream.result()

        assert await collect(stream) == []
        assert stream.done


class TestTokenCap:
    """Tests for the hard token cap."""

    @pytest.mark.asyncio
    async def test_stops_at_2048_tokens(self):
        """Test generation stops successfully at exactly the default cap."""
        handle = FakeHandle(words=["x"] * 3000)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        snapshots = await collect(stream)

        assert stream.outcome.status == OutcomeStatus.COMPLETED
        assert stream.outcome.token_count == 2048
        assert len(stream.outcome.text) == 2048
        assert len(snapshots) == 2048 // 4
        assert max(handle.decoded_lengths) == 2048

    @pytest.mark.asyncio
    async def test_custom_cap_between_snapshots(self, fake_handle):
        """Test a cap that is not a multiple of the snapshot cadence."""
        session = GenerationSession(max_tokens=6)

        stream = session.start(fake_handle, PROMPT)
        snapshots = await collect(stream)

        assert snapshots == ["abcd"]
        assert stream.outcome.text == "abcdef"
        assert stream.outcome.token_count == 6


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_output(self):
        """Test cancel stops after the current step and keeps the snapshot."""
        handle = FakeHandle(pause_after=5)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)

        assert session.cancel() is True
        assert session.state.phase == GenerationPhase.CANCELLING
        handle.resume.set()
        outcome = await stream.result()

        assert outcome.status == OutcomeStatus.CANCELLED
        assert outcome.text == "abcd"
        assert session.state.accumulated_output == "abcd"
        assert session.state.phase == GenerationPhase.DONE
        assert not session.is_running

    @pytest.mark.asyncio
    async def test_cancel_before_first_snapshot(self):
        """Test cancelling before any snapshot yields empty text."""
        handle = FakeHandle(pause_after=2)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)
        session.cancel()
        handle.resume.set()
        outcome = await stream.result()

        assert outcome.status == OutcomeStatus.CANCELLED
        assert outcome.text == ""

    def test_cancel_when_idle(self):
        """Test cancel is a no-op without a running generation."""
        session = GenerationSession()

        assert session.cancel() is False
        assert session.state.phase == GenerationPhase.IDLE

    @pytest.mark.asyncio
    async def test_cancel_after_completion(self, fake_handle):
        """Test cancel after the end does not alter the outcome."""
        session = GenerationSession()
        outcome = await session.start(fake_handle, PROMPT).result()

        assert session.cancel() is False
        assert outcome.status == OutcomeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_does_not_leak_into_next_generation(self):
        """Test a new start begins with a clear cancel flag."""
        handle = FakeHandle(pause_after=5)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)
        session.cancel()
        handle.resume.set()
        await stream.result()

        outcome = await session.start(FakeHandle(), PROMPT).result()

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.text == "abcdefghij"

    @pytest.mark.asyncio
    async def test_task_cancel_waits_for_worker_thread(self):
        """Test a cancelled task stays busy until the worker thread returns."""
        handle = FakeHandle(pause_after=5)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)
        session._task.cancel()
        outcome = await stream.result()

        assert outcome.status == OutcomeStatus.CANCELLED
        assert outcome.text == "abcd"
        assert session.state.phase == GenerationPhase.CANCELLING
        assert session.is_running
        assert session.start(FakeHandle(), PROMPT) is None

        handle.resume.set()
        for _ in range(500):
            if session.state.phase == GenerationPhase.DONE:
                break
            await asyncio.sleep(0.01)

        assert session.state.phase == GenerationPhase.DONE
        next_outcome = await session.start(FakeHandle(), PROMPT).result()
        assert next_outcome.status == OutcomeStatus.COMPLETED


class TestSingleFlight:
    """Tests for one generation at a time."""

    @pytest.mark.asyncio
    async def test_second_start_rejected_while_running(self):
        """Test a start during a running generation is ignored."""
        handle = FakeHandle(pause_after=3)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)

        assert session.start(FakeHandle(), PROMPT) is None
        handle.resume.set()
        outcome = await stream.result()

        assert outcome.status == OutcomeStatus.COMPLETED
        assert len(handle.inputs) == 1

    @pytest.mark.asyncio
    async def test_mark_loading_rejected_while_running(self):
        """Test the loading phase cannot interrupt a generation."""
        handle = FakeHandle(pause_after=1)
        session = GenerationSession()

        stream = session.start(handle, PROMPT)
        await wait_for(handle.reached)

        with pytest.raises(RuntimeError):
            session.mark_loading()
        handle.resume.set()
        await stream.result()

    @pytest.mark.asyncio
    async def test_sequential_generations_allowed(self, fake_handle):
        """Test the session can be restarted after the terminal state."""
        session = GenerationSession()

        first = await session.start(fake_handle, PROMPT).result()
        second = await session.start(fake_handle, PROMPT).result()

        assert first.status == second.status == OutcomeStatus.COMPLETED


class TestFailure:
    """Tests for backend failures during generation."""

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_output(self):
        """Test a failure mid-stream is reported with the text so far."""
        session = GenerationSession()

        stream = session.start(FakeHandle(fail_at=6), PROMPT)
        snapshots = await collect(stream)

        assert snapshots == ["abcd"]
        assert stream.outcome.status == OutcomeStatus.FAILED
        assert stream.outcome.error == "backend exploded"
        assert stream.outcome.text == "abcd"
        assert stream.outcome.display_text == "abcd"
        assert session.state.last_error == "backend exploded"
        assert not session.is_running

    @pytest.mark.asyncio
    async def test_failure_without_output(self):
        """Test a failure before any snapshot displays the error."""
        stream = GenerationSession().start(FakeHandle(fail_at=0), PROMPT)
        outcome = await stream.result()

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.text == ""
        assert outcome.display_text == "Error: backend exploded"

    @pytest.mark.asyncio
    async def test_raise_for_status(self, fake_handle):
        """Test failed outcomes can be turned back into an exception."""
        failed = await GenerationSession().start(FakeHandle(fail_at=3), PROMPT).result()
        completed = await GenerationSession().start(fake_handle, PROMPT).result()

        with pytest.raises(GenerationError, match="backend exploded") as exc_info:
            failed.raise_for_status()
        assert exc_info.value.is_retryable()
        assert completed.raise_for_status() is completed

    @pytest.mark.asyncio
    async def test_session_usable_after_failure(self, fake_handle):
        """Test a failure is terminal for that generation only."""
        session = GenerationSession()
        await session.start(FakeHandle(fail_at=2), PROMPT).result()

        outcome = await session.start(fake_handle, PROMPT).result()

        assert outcome.status == OutcomeStatus.COMPLETED
        assert session.state.last_error is None


class TestSeeding:
    """Tests for per-generation reseeding."""

    @pytest.mark.asyncio
    async def test_reseeds_every_generation(self, fake_handle):
        """Test a fresh seed is drawn for every start."""
        session = GenerationSession(seed_source=itertools.count(100).__next__)

        await session.start(fake_handle, PROMPT).result()
        await session.start(fake_handle, PROMPT).result()

        assert fake_handle.seeds == [100, 101]

    @pytest.mark.asyncio
    async def test_default_seed_source_varies(self, fake_handle):
        """Test the default clock-based seed changes between runs."""
        session = GenerationSession()

        await session.start(fake_handle, PROMPT).result()
        await session.start(fake_handle, PROMPT).result()

        assert len(fake_handle.seeds) == 2
        assert fake_handle.seeds[0] != fake_handle.seeds[1]
