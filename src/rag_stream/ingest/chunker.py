"""Recursive separator chunking with character overlap."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone

from rag_stream.config import CHARACTER, SENTENCE, ChunkingConfig
from rag_stream.types import Chunk, ParsedDocument


@dataclass(slots=True, frozen=True)
class _Span:
    start: int
    end: int
    overlap: int = 0
    oversized: bool = False

    def __len__(self) -> int:
        return self.end - self.start


class RecursiveOverlapChunker:
    """Splits text into bounded, overlapping slices of the source text.

    Design notes:
    1. Recursive separator splitting.
       The text is cut on the coarsest separator first (paragraph, line,
       sentence, word, character). A separator stays attached to the piece in
       front of it, so pieces tile the input without gaps. Any piece larger
       than the piece limit (`max_chunk_size - overlap`) is cut again with the
       next finer separator. A piece that is still too large once the
       separators run out is emitted as-is and flagged oversized.

    2. Greedy merge.
       Adjacent pieces are packed into a chunk body while it fits. The first
       body may fill `max_chunk_size`; later bodies leave room for the overlap
       prefix.

    3. Overlap.
       Every chunk after the first starts with the trailing `overlap`
       characters (or the whole predecessor, if shorter) of the chunk before
       it. Oversized chunks carry no prefix.

    All chunks are slices of the source, so dropping each chunk's overlap
    prefix and concatenating rebuilds the text exactly.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        self._piece_limit = self.config.max_chunk_size - self.config.overlap
        self._patterns = [
            None if separator == CHARACTER else _compile(separator)
            for separator in self.config.separators
        ]

    def split(
        self,
        text: str,
        *,
        source_id: str = "",
        created_at: datetime | None = None,
    ) -> "ChunkSequence":
        """Return a lazy, restartable sequence of chunks for `text`."""

        return ChunkSequence(
            self,
            text,
            source_id=source_id,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def chunk_document(self, document: ParsedDocument) -> "ChunkSequence":
        return self.split(document.text, source_id=document.doc_id)

    def spans(self, text: str) -> Iterator[_Span]:
        """Yield chunk boundaries as offsets into `text`."""

        max_size = self.config.max_chunk_size
        previous: _Span | None = None
        body_start = body_end = -1
        lead = 0

        for piece in self._pieces(text, 0, len(text), 0):
            if piece.oversized:
                if body_start >= 0:
                    previous = _Span(body_start - lead, body_end, lead)
                    yield previous
                    body_start = -1
                previous = piece
                yield previous
                continue

            if body_start >= 0 and (body_end - body_start) + len(piece) <= max_size - lead:
                body_end = piece.end
                continue

            if body_start >= 0:
                previous = _Span(body_start - lead, body_end, lead)
                yield previous
            lead = min(self.config.overlap, len(previous)) if previous is not None else 0
            body_start, body_end = piece.start, piece.end

        if body_start >= 0:
            yield _Span(body_start - lead, body_end, lead)

    def _pieces(self, text: str, start: int, end: int, level: int) -> Iterator[_Span]:
        if end - start <= self._piece_limit:
            if end > start:
                yield _Span(start, end)
            return
        if level >= len(self._patterns):
            yield _Span(start, end, oversized=True)
            return

        pattern = self._patterns[level]
        if pattern is None:
            # Single characters, so the merge can fill each body to its limit.
            for offset in range(start, end):
                yield _Span(offset, offset + 1)
            return

        cursor = start
        for match in pattern.finditer(text, start, end):
            if match.end() <= cursor:
                continue
            yield from self._pieces(text, cursor, match.end(), level + 1)
            cursor = match.end()
        if cursor < end:
            yield from self._pieces(text, cursor, end, level + 1)


class ChunkSequence:
    """Lazy view over the chunks of one text.

    Each iteration recomputes the segmentation and yields identical chunks.
    `len()` walks the boundaries once without materializing chunk text.
    """

    def __init__(
        self,
        chunker: RecursiveOverlapChunker,
        text: str,
        *,
        source_id: str,
        created_at: datetime,
    ) -> None:
        self._chunker = chunker
        self._text = text
        self.source_id = source_id
        self.created_at = created_at
        self._total: int | None = None

    def __len__(self) -> int:
        if self._total is None:
            self._total = sum(1 for _ in self._chunker.spans(self._text))
        return self._total

    def __iter__(self) -> Iterator[Chunk]:
        total = len(self)
        for index, span in enumerate(self._chunker.spans(self._text)):
            yield Chunk(
                text=self._text[span.start : span.end],
                source_id=self.source_id,
                sequence_index=index,
                total_chunks=total,
                created_at=self.created_at,
                start=span.start,
                overlap=span.overlap,
                oversized=span.oversized,
            )


def reassemble(chunks: list[Chunk]) -> str:
    """Concatenate chunks with their overlap prefixes removed."""

    return "".join(chunk.text[chunk.overlap :] for chunk in chunks)


def _compile(separator: str) -> re.Pattern[str]:
    if separator == SENTENCE:
        return re.compile(separator)
    return re.compile(re.escape(separator))
