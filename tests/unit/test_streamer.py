import asyncio
from collections.abc import AsyncIterator

import pytest

from rag_stream.config import StreamingConfig
from rag_stream.errors import GenerationFailure
from rag_stream.generation.streamer import AnswerStreamer
from rag_stream.types import (
    ContextWindow,
    IndexRecord,
    RetrievalResult,
    StreamSession,
    StreamState,
)

CONFIG = StreamingConfig()


def _context(text: str = "The sky is blue on clear days.") -> ContextWindow:
    record = IndexRecord(id="sky#0", vector=[1.0], text=text, metadata={})
    return ContextWindow(entries=(RetrievalResult(record=record, score=0.82),))


class ScriptedGenerator:
    def __init__(self, tokens: list[str], error: Exception | None = None) -> None:
        self.tokens = tokens
        self.error = error
        self.prompts: list[str] = []

    async def stream_complete(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for token in self.tokens:
            yield token
        if self.error is not None:
            raise self.error


class WithholdingGenerator:
    """Yields one token, then blocks until torn down."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.closed = False
        self.cancelled = False

    async def stream_complete(self, prompt: str) -> AsyncIterator[str]:
        try:
            yield "partial"
            self.started.set()
            await asyncio.Event().wait()
            yield "never"
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.closed = True


async def _collect(stream: AsyncIterator[str]) -> list[str]:
    return [token async for token in stream]


@pytest.mark.asyncio
async def test_stream_forwards_tokens_in_order_and_completes() -> None:
    generator = ScriptedGenerator(["The", " sky", " is", " blue"])
    session = StreamSession()
    streamer = AnswerStreamer(generator)

    tokens = await _collect(streamer.answer("What colour is the sky?", _context(), session=session))

    assert tokens == ["The", " sky", " is", " blue"]
    assert session.state is StreamState.COMPLETED
    assert session.tokens_emitted == 4
    assert "(0.8200) The sky is blue on clear days." in generator.prompts[0]
    assert generator.prompts[0].endswith("Question:\nWhat colour is the sky?")


@pytest.mark.asyncio
async def test_empty_context_emits_not_found_once_without_generating() -> None:
    generator = ScriptedGenerator(["unused"])
    session = StreamSession()
    streamer = AnswerStreamer(generator)

    tokens = await _collect(streamer.answer("Anything?", ContextWindow.empty(), session=session))

    assert tokens == [CONFIG.not_found_message]
    assert generator.prompts == []
    assert session.state is StreamState.COMPLETED


@pytest.mark.asyncio
async def test_zero_tokens_emits_fallback_message() -> None:
    session = StreamSession()
    streamer = AnswerStreamer(ScriptedGenerator([]))

    tokens = await _collect(streamer.answer("Q", _context(), session=session))

    assert tokens == [CONFIG.empty_answer_message]
    assert session.state is StreamState.COMPLETED


@pytest.mark.asyncio
async def test_generation_failure_ends_stream_with_diagnostic() -> None:
    generator = ScriptedGenerator(["The", " sky"], error=GenerationFailure("upstream reset"))
    session = StreamSession()

    tokens = await _collect(AnswerStreamer(generator).answer("Q", _context(), session=session))

    assert tokens == ["The", " sky", CONFIG.generation_failed_message]
    assert session.state is StreamState.FAILED
    assert session.error_kind == "GenerationFailure"


@pytest.mark.asyncio
async def test_unexpected_generator_error_reports_internal_error() -> None:
    generator = ScriptedGenerator(["The"], error=KeyError("boom"))
    session = StreamSession()

    tokens = await _collect(AnswerStreamer(generator).direct("Q", session=session))

    assert tokens == ["The", CONFIG.internal_error_message]
    assert session.state is StreamState.FAILED
    assert session.error_kind == "InternalError"
    assert "boom" not in tokens[-1]


@pytest.mark.asyncio
async def test_session_cancel_tears_down_withholding_generator() -> None:
    generator = WithholdingGenerator()
    session = StreamSession()
    stream = AnswerStreamer(generator).answer("Q", _context(), session=session)

    assert await stream.__anext__() == "partial"
    await generator.started.wait()
    assert session.state is StreamState.STREAMING

    session.cancel()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()

    assert session.state is StreamState.CANCELLED
    assert generator.cancelled
    assert generator.closed


@pytest.mark.asyncio
async def test_consumer_close_tears_down_withholding_generator() -> None:
    generator = WithholdingGenerator()
    session = StreamSession()
    stream = AnswerStreamer(generator).answer("Q", _context(), session=session)

    assert await stream.__anext__() == "partial"
    await generator.started.wait()
    await stream.aclose()

    assert session.state is StreamState.CANCELLED
    assert generator.closed


@pytest.mark.asyncio
async def test_consumer_task_cancellation_tears_down_generator() -> None:
    generator = WithholdingGenerator()
    session = StreamSession()
    received: list[str] = []

    async def _consume() -> None:
        async for token in AnswerStreamer(generator).answer("Q", _context(), session=session):
            received.append(token)

    task = asyncio.create_task(_consume())
    await generator.started.wait()
    while not received:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert received == ["partial"]
    assert session.state is StreamState.CANCELLED
    assert generator.closed


@pytest.mark.asyncio
async def test_cancel_before_start_never_calls_generator() -> None:
    generator = ScriptedGenerator(["unused"])
    session = StreamSession()
    session.cancel()

    tokens = await _collect(AnswerStreamer(generator).answer("Q", _context(), session=session))

    assert tokens == []
    assert generator.prompts == []
    assert session.state is StreamState.CANCELLED


def test_session_rejects_illegal_transitions() -> None:
    session = StreamSession()

    with pytest.raises(RuntimeError):
        session.transition(StreamState.COMPLETED)

    session.transition(StreamState.STREAMING)
    session.transition(StreamState.COMPLETED)
    assert session.is_terminal

    with pytest.raises(RuntimeError):
        session.transition(StreamState.CANCELLED)
