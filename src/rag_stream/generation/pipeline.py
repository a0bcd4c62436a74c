"""Query-time pipeline: question -> query vector -> context -> token stream."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rag_stream.generation.prompts import compose_question
from rag_stream.generation.streamer import AnswerStreamer
from rag_stream.ingest.embedder import EmbeddingClient
from rag_stream.obs.tracing import Timer, TraceStore
from rag_stream.retrieval.retriever import Retriever
from rag_stream.types import ContextWindow, StreamSession

logger = logging.getLogger(__name__)


class QueryRequest(BaseModel):
    """A question, optionally with a precomputed vector and a classifier label."""

    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=1)
    query_vector: list[float] | None = Field(default=None, alias="embedding")
    label: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=50)
    score_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be blank")
        return value


class PreparedAnswer:
    """A query that passed every pre-stream step and is ready to stream.

    Iterating `stream()` forwards the streamer's tokens and records a trace
    when the stream closes, however it closes.
    """

    def __init__(
        self,
        *,
        mode: str,
        question: str,
        label: str | None,
        context: ContextWindow | None,
        session: StreamSession,
        tokens: AsyncIterator[str],
        trace_store: TraceStore | None = None,
    ) -> None:
        self.mode = mode
        self.question = question
        self.label = label
        self.context = context
        self.session = session
        self._tokens = tokens
        self._trace_store = trace_store

    async def stream(self) -> AsyncIterator[str]:
        timer = Timer()
        answer_chars = 0
        try:
            with timer:
                async for token in self._tokens:
                    answer_chars += len(token)
                    yield token
        finally:
            aclose = getattr(self._tokens, "aclose", None)
            if aclose is not None:
                await aclose()
            if self._trace_store is not None:
                self._trace_store.create_record(
                    mode=self.mode,
                    question=self.question,
                    label=self.label,
                    session=self.session,
                    context=self.context,
                    answer_chars=answer_chars,
                    latency_ms=timer.elapsed_ms,
                )


class QueryPipeline:
    """Runs the pre-stream steps of a query.

    Everything that can fail before the first token (embedding the question,
    the dimension check, the index query) happens in `prepare`, so callers can
    report those failures as structured errors with no partial output.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingClient,
        retriever: Retriever,
        streamer: AnswerStreamer,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.embedder = embedder
        self.retriever = retriever
        self.streamer = streamer
        self.trace_store = trace_store

    async def prepare(self, request: QueryRequest) -> PreparedAnswer:
        question = compose_question(request.question, request.label)
        vector = request.query_vector
        if vector is None:
            vector = await self.embedder.embed(question)

        context = await self.retriever.retrieve(
            vector,
            k=request.top_k,
            score_threshold=request.score_threshold,
        )
        logger.info(
            "Query prepared: %d context entries (top score %s)",
            len(context.entries),
            f"{context.top_score:.4f}" if context.top_score is not None else "n/a",
        )

        session = StreamSession()
        return PreparedAnswer(
            mode="rag",
            question=question,
            label=request.label,
            context=context,
            session=session,
            tokens=self.streamer.answer(question, context, session=session),
            trace_store=self.trace_store,
        )

    def direct(self, question: str) -> PreparedAnswer:
        session = StreamSession()
        return PreparedAnswer(
            mode="direct",
            question=question,
            label=None,
            context=None,
            session=session,
            tokens=self.streamer.direct(question, session=session),
            trace_store=self.trace_store,
        )
