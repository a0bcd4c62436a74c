"""End-to-end ingest pipeline: parse -> chunk -> embed -> upsert."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from rag_stream.config import IngestConfig
from rag_stream.errors import (
    DimensionMismatch,
    EmbeddingFailure,
    EmptyContentError,
    IndexWriteFailure,
    RagError,
)
from rag_stream.ingest.chunker import RecursiveOverlapChunker
from rag_stream.ingest.embedder import EmbeddingClient
from rag_stream.ingest.parser import ParserRegistry
from rag_stream.retrieval.vector_store import VectorIndex
from rag_stream.types import Chunk, IndexRecord, IngestReport, MetadataValue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IngestPipeline:
    """Coordinates chunker/embedder/vector index stages for one source at a time.

    This class isolates ingestion from query-time retrieval so indexing can be
    executed offline, in batch jobs, or on document upload.

    Ingest is all-or-nothing per source: every chunk is embedded before the
    first write, and vectors already computed are discarded if any chunk
    fails. Record ids are `source_id#sequence_index`, so re-ingesting a source
    overwrites its records instead of duplicating them, and records beyond the
    new chunk count are pruned once every batch is written. If a batch still
    fails after its retries, every record of the source is discarded, so the
    index never serves a mix of two versions of one source.
    """

    def __init__(
        self,
        chunker: RecursiveOverlapChunker,
        embedder: EmbeddingClient,
        index: VectorIndex,
        *,
        parser_registry: ParserRegistry | None = None,
        config: IngestConfig | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._parser_registry = parser_registry or ParserRegistry()
        self.config = config or IngestConfig()

    async def ingest(
        self,
        source_id: str,
        raw_text: str,
        source_metadata: dict[str, Any] | None = None,
    ) -> IngestReport:
        """Chunk, embed and upsert one document.

        Raises:
            EmptyContentError: `raw_text` is empty or whitespace only.
            DimensionMismatch: the embedder and index disagree on dimension,
                or the embedder returned a vector of the wrong length.
            EmbeddingFailure: a chunk could not be embedded within the retry bound.
            IndexWriteFailure: the index rejected a batch within the retry bound.
        """

        if not raw_text.strip():
            raise EmptyContentError(f"No text content found for source '{source_id}'")

        description = await self._index.describe()
        if description.dimension != self._embedder.dimension:
            raise DimensionMismatch(
                description.dimension,
                self._embedder.dimension,
                context=f"embedding model {self._embedder.model_name}",
            )

        chunks = self._chunker.split(raw_text, source_id=source_id)
        total = len(chunks)
        logger.info("Ingesting source %s: %d chunks", source_id, total)

        vectors = await self._embed_all(iter(chunks), total, description.dimension)

        base_metadata = _flatten_metadata(source_metadata or {})
        records: list[IndexRecord] = []
        oversized = 0
        for chunk in chunks:
            oversized += int(chunk.oversized)
            records.append(
                IndexRecord(
                    id=chunk.record_id,
                    vector=vectors[chunk.sequence_index],
                    text=chunk.text,
                    metadata={
                        **base_metadata,
                        **self._chunk_metadata(chunk),
                    },
                )
            )

        batch_size = self.config.upsert_batch_size
        try:
            for offset in range(0, len(records), batch_size):
                batch = records[offset : offset + batch_size]
                await self._with_retry(
                    lambda batch=batch: self._index.upsert(batch),
                    IndexWriteFailure,
                    f"upsert {source_id}[{offset}:{offset + len(batch)}]",
                )
        except IndexWriteFailure:
            await self._discard_source(source_id)
            raise

        keep = {record.id for record in records}
        stale = await self._with_retry(
            lambda: self._index.delete_source(source_id, keep=keep),
            IndexWriteFailure,
            f"prune {source_id}",
        )
        if stale:
            logger.info("Removed %d superseded records of source %s", stale, source_id)

        if oversized:
            logger.warning("Source %s produced %d oversized chunks", source_id, oversized)
        logger.info("Ingested source %s (%d records)", source_id, len(records))
        return IngestReport(
            source_id=source_id,
            chunks_created=len(records),
            bytes_processed=len(raw_text.encode("utf-8")),
            oversized_chunks=oversized,
        )

    async def ingest_path(
        self,
        path: str | Path,
        *,
        source_id: str | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> IngestReport:
        """Parse and ingest a single source file."""

        parsed = await asyncio.to_thread(self._parser_registry.parse_path, path, doc_id=source_id)
        if extra_metadata:
            parsed.metadata.update(extra_metadata)
        return await self.ingest(parsed.doc_id, parsed.text, parsed.metadata)

    async def ingest_directory(self, path: str | Path) -> list[IngestReport]:
        """Ingest every supported file in a folder, in file name order.

        Unsupported files are skipped. A failing file stops the batch.
        """

        folder = Path(path)
        reports: list[IngestReport] = []
        for file_path in sorted(folder.iterdir()):
            if not file_path.is_file():
                continue
            if not self._parser_registry.supports(file_path):
                logger.info("Skipping unsupported file %s", file_path.name)
                continue
            reports.append(await self.ingest_path(file_path))
        return reports

    async def _embed_all(
        self, chunks: Iterator[Chunk], total: int, dimension: int
    ) -> list[list[float]]:
        # Workers share one iterator; results land at their sequence index.
        arena: list[list[float] | None] = [None] * total

        async def _worker() -> None:
            for chunk in chunks:
                vector = await self._with_retry(
                    lambda chunk=chunk: self._embedder.embed(chunk.text),
                    EmbeddingFailure,
                    f"embed {chunk.record_id}",
                )
                if len(vector) != dimension:
                    raise DimensionMismatch(
                        dimension, len(vector), context=f"embedding for {chunk.record_id}"
                    )
                arena[chunk.sequence_index] = vector

        workers = [
            asyncio.create_task(_worker())
            for _ in range(min(self.config.concurrency, max(total, 1)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        return [vector for vector in arena if vector is not None]

    async def _discard_source(self, source_id: str) -> None:
        # A failed write leaves no mix of old and new records for the source.
        try:
            removed = await self._index.delete_source(source_id)
        except IndexWriteFailure:
            logger.exception("Could not discard partial records of source %s", source_id)
            return
        logger.error("Write failed for source %s; discarded %d records", source_id, removed)

    async def _with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        retry_on: type[RagError],
        label: str,
    ) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(retry_on),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_initial_seconds,
                max=self.config.backoff_max_seconds,
            )
            + wait_random(0, self.config.backoff_jitter_seconds),
            before_sleep=_log_retry(label, self.config.max_attempts),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await call()
        except retry_on as exc:
            raise retry_on(
                f"{label} failed after {self.config.max_attempts} attempts: {exc.message}"
            ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _chunk_metadata(self, chunk: Chunk) -> dict[str, MetadataValue]:
        return {
            "source_id": chunk.source_id,
            "sequence_index": chunk.sequence_index,
            "total_chunks": chunk.total_chunks,
            "created_at": chunk.created_at.isoformat(),
            "overlap": chunk.overlap,
            "oversized": chunk.oversized,
            "embedding_model": self._embedder.model_name,
            "embedding_dimension": self._embedder.dimension,
        }


def _log_retry(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            "%s: attempt %d/%d failed (%s), retrying",
            label,
            retry_state.attempt_number,
            max_attempts,
            error,
        )

    return _before_sleep


def _flatten_metadata(metadata: dict[str, Any]) -> dict[str, MetadataValue]:
    flat: dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = str(value)
    return flat
