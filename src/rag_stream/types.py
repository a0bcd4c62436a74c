"""Shared domain models."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

MetadataValue = str | int | float | bool


@dataclass(slots=True)
class ParsedDocument:
    """A parsed source document before chunking."""

    doc_id: str
    text: str
    metadata: dict[str, Any]


@dataclass(slots=True, frozen=True)
class Chunk:
    """A contiguous slice of a source document.

    `overlap` counts the leading characters copied from the tail of the
    previous chunk, so `text[overlap:]` is the new material this chunk adds.
    """

    text: str
    source_id: str
    sequence_index: int
    total_chunks: int
    created_at: datetime
    start: int = 0
    overlap: int = 0
    oversized: bool = False

    @property
    def record_id(self) -> str:
        return f"{self.source_id}#{self.sequence_index}"


@dataclass(slots=True, frozen=True)
class IndexRecord:
    """A vector plus the text and metadata it was computed from."""

    id: str
    vector: list[float]
    text: str
    metadata: dict[str, MetadataValue]


@dataclass(slots=True, frozen=True)
class IndexDescription:
    dimension: int
    metric: str = "cosine"


@dataclass(slots=True, frozen=True)
class RetrievalResult:
    """A nearest-neighbor hit with its similarity score."""

    record: IndexRecord
    score: float


@dataclass(slots=True, frozen=True)
class ContextWindow:
    """Relevant retrieval results rendered as grounding text for a prompt."""

    entries: tuple[RetrievalResult, ...] = ()
    separator: str = "\n---\n"
    score_precision: int = 4

    @classmethod
    def empty(cls) -> "ContextWindow":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def top_score(self) -> float | None:
        return self.entries[0].score if self.entries else None

    def render_entry(self, result: RetrievalResult) -> str:
        return f"({result.score:.{self.score_precision}f}) {result.record.text}"

    @property
    def text(self) -> str:
        return self.separator.join(self.render_entry(entry) for entry in self.entries)


@dataclass(slots=True)
class IngestReport:
    source_id: str
    chunks_created: int
    bytes_processed: int
    oversized_chunks: int = 0


class StreamState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.PENDING: frozenset({StreamState.STREAMING, StreamState.CANCELLED}),
    StreamState.STREAMING: frozenset(
        {StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED}
    ),
    StreamState.COMPLETED: frozenset(),
    StreamState.FAILED: frozenset(),
    StreamState.CANCELLED: frozenset(),
}


@dataclass(slots=True)
class StreamSession:
    """Lifecycle of one streamed answer.

    The session is owned by a single consumer. `cancel()` may be called from
    any task on the same event loop; the streamer observes it between tokens
    and tears down the generator call.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: StreamState = StreamState.PENDING
    tokens_emitted: int = 0
    cancelled: bool = False
    error_kind: str | None = None
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, target: StreamState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal stream transition {self.state.value} -> {target.value}"
            )
        self.state = target
        if target is StreamState.CANCELLED:
            self.cancelled = True

    def cancel(self) -> None:
        """Request cancellation; the streamer performs the transition."""
        self.cancelled = True
        self._cancel_event.set()

    async def wait_cancelled(self) -> None:
        await self._cancel_event.wait()
