"""Answer streaming over a producer/consumer channel.

The generator runs in its own producer task and pushes tokens into a bounded
queue. The consumer side (`AnswerStreamer.answer`) forwards each token as soon
as it arrives and drives the session state machine:

    PENDING -> STREAMING -> COMPLETED | FAILED
                        \\-> CANCELLED

Closing the consumer, cancelling its task, or calling `session.cancel()`
cancels the producer task, which closes the generator's iterator.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from rag_stream.config import StreamingConfig
from rag_stream.errors import GenerationFailure
from rag_stream.generation.generator import Generator
from rag_stream.generation.prompts import build_answer_prompt, build_direct_prompt
from rag_stream.types import ContextWindow, StreamSession, StreamState

logger = logging.getLogger(__name__)

_END = object()


@dataclass(slots=True)
class _Failure:
    error: Exception


class AnswerStreamer:
    """Streams grounded answers with well-defined completion and failure output.

    No retries are made on generation; a failed stream ends with one
    diagnostic message and the session in `FAILED`.
    """

    def __init__(self, generator: Generator, config: StreamingConfig | None = None) -> None:
        self.generator = generator
        self.config = config or StreamingConfig()

    def answer(
        self,
        question: str,
        context: ContextWindow,
        *,
        session: StreamSession | None = None,
    ) -> AsyncIterator[str]:
        """Return the token stream for `question` grounded in `context`.

        An empty context yields the fixed "not found" message and never calls
        the generator.
        """

        session = session or StreamSession()
        if context.is_empty:
            logger.info("Session %s: empty context, answering not-found", session.session_id)
            return self._emit_fixed(session, self.config.not_found_message)
        return self.stream_prompt(build_answer_prompt(context, question), session=session)

    def direct(self, question: str, *, session: StreamSession | None = None) -> AsyncIterator[str]:
        """Return the token stream for an ungrounded answer to `question`."""

        return self.stream_prompt(build_direct_prompt(question), session=session)

    async def stream_prompt(
        self, prompt: str, *, session: StreamSession | None = None
    ) -> AsyncIterator[str]:
        session = session or StreamSession()
        if session.cancelled:
            session.transition(StreamState.CANCELLED)
            return

        queue: asyncio.Queue[object] = asyncio.Queue(maxsize=self.config.channel_capacity)
        producer = asyncio.create_task(
            self._produce(prompt, queue, session.session_id),
            name=f"generate-{session.session_id}",
        )
        cancel_waiter = asyncio.ensure_future(session.wait_cancelled())
        getter: asyncio.Future[object] | None = None
        generated = 0
        session.transition(StreamState.STREAMING)
        logger.debug("Session %s: streaming started", session.session_id)

        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter in done:
                    logger.info("Session %s: cancelled by caller", session.session_id)
                    session.transition(StreamState.CANCELLED)
                    return

                item = getter.result()
                getter = None
                if item is _END:
                    break
                if isinstance(item, _Failure):
                    session.error_kind, message = self._diagnose(item.error)
                    session.transition(StreamState.FAILED)
                    session.tokens_emitted += 1
                    yield message
                    return

                generated += 1
                session.tokens_emitted += 1
                yield str(item)

            if generated == 0:
                logger.warning("Session %s: generator produced no tokens", session.session_id)
                session.tokens_emitted += 1
                yield self.config.empty_answer_message
            session.transition(StreamState.COMPLETED)
        finally:
            if getter is not None:
                getter.cancel()
            cancel_waiter.cancel()
            producer.cancel()
            await asyncio.gather(producer, cancel_waiter, return_exceptions=True)
            if not session.is_terminal:
                session.transition(StreamState.CANCELLED)
            logger.info(
                "Session %s: closed %s after %d tokens",
                session.session_id,
                session.state.value,
                session.tokens_emitted,
            )

    async def _emit_fixed(self, session: StreamSession, message: str) -> AsyncIterator[str]:
        if session.cancelled:
            session.transition(StreamState.CANCELLED)
            return
        session.transition(StreamState.STREAMING)
        try:
            session.tokens_emitted += 1
            yield message
            session.transition(StreamState.COMPLETED)
        finally:
            if not session.is_terminal:
                session.transition(StreamState.CANCELLED)

    async def _produce(self, prompt: str, queue: asyncio.Queue[object], session_id: str) -> None:
        stream = self.generator.stream_complete(prompt)
        try:
            async for token in stream:
                if token:
                    await queue.put(token)
        except Exception as exc:
            logger.error("Session %s: generation failed: %s", session_id, exc, exc_info=exc)
            await queue.put(_Failure(exc))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        await queue.put(_END)

    def _diagnose(self, error: Exception) -> tuple[str, str]:
        if isinstance(error, GenerationFailure):
            return error.error_kind, self.config.generation_failed_message
        return "InternalError", self.config.internal_error_message
