"""Vector index interfaces and concrete adapters."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from math import sqrt
from pathlib import Path
from typing import Any, Protocol

from rag_stream.errors import DimensionMismatch, IndexQueryFailure, IndexWriteFailure
from rag_stream.types import IndexDescription, IndexRecord, RetrievalResult

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Minimal vector index contract for ingestion and retrieval."""

    async def upsert(self, records: list[IndexRecord]) -> None:
        """Insert records, replacing any with the same id."""

    async def query(self, vector: list[float], k: int) -> list[RetrievalResult]:
        """Return up to `k` nearest records with similarity scores."""

    async def describe(self) -> IndexDescription:
        """Report the configured dimension and metric."""

    async def delete_source(self, source_id: str, *, keep: Collection[str] = ()) -> int:
        """Remove records whose `source_id` metadata matches, except ids in `keep`.

        Returns the number of records removed.
        """


class InMemoryVectorIndex:
    """Deterministic cosine index used for tests and local prototyping.

    Results are ordered by descending score, then ascending record id.
    """

    def __init__(self, dimension: int) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self._store: dict[str, IndexRecord] = {}

    def __len__(self) -> int:
        return len(self._store)

    def get(self, record_id: str) -> IndexRecord | None:
        return self._store.get(record_id)

    async def upsert(self, records: list[IndexRecord]) -> None:
        for record in records:
            if len(record.vector) != self.dimension:
                raise DimensionMismatch(
                    self.dimension, len(record.vector), context=f"record {record.id}"
                )
        for record in records:
            self._store[record.id] = record

    async def query(self, vector: list[float], k: int) -> list[RetrievalResult]:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), context="query vector")
        ranked = sorted(
            (
                RetrievalResult(record=record, score=_cosine_similarity(vector, record.vector))
                for record in self._store.values()
            ),
            key=lambda item: (-item.score, item.record.id),
        )
        return ranked[:k]

    async def delete_source(self, source_id: str, *, keep: Collection[str] = ()) -> int:
        stale = [
            record_id
            for record_id, record in self._store.items()
            if record.metadata.get("source_id") == source_id and record_id not in keep
        ]
        for record_id in stale:
            del self._store[record_id]
        return len(stale)

    async def describe(self) -> IndexDescription:
        return IndexDescription(dimension=self.dimension, metric="cosine")


class FaissVectorIndex:
    """FAISS adapter via LangChain community integration.

    Vectors are L2-normalized and searched by inner product, so scores are
    cosine similarities like `InMemoryVectorIndex`. Only vector-based calls
    are used; text is never embedded by the store itself.
    """

    def __init__(self, dimension: int, *, store: Any | None = None) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_community.vectorstores.utils import DistanceStrategy
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _PrecomputedEmbeddings(Embeddings):
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise RuntimeError("FaissVectorIndex only accepts precomputed vectors")

            def embed_query(self, text: str) -> list[float]:
                raise RuntimeError("FaissVectorIndex only accepts precomputed vectors")

        self.dimension = dimension
        self._faiss_cls = FAISS
        self._distance = DistanceStrategy.MAX_INNER_PRODUCT
        self._embeddings = _PrecomputedEmbeddings()
        self._store: Any | None = store

    @classmethod
    def load(cls, folder: str | Path, dimension: int) -> "FaissVectorIndex":
        index = cls(dimension)
        store = index._faiss_cls.load_local(
            str(folder),
            index._embeddings,
            distance_strategy=index._distance,
            allow_dangerous_deserialization=True,
        )
        if store.index.d != dimension:
            raise DimensionMismatch(dimension, store.index.d, context=f"FAISS index at {folder}")
        index._store = store
        return index

    def save(self, folder: str | Path) -> None:
        if self._store is None:
            raise IndexWriteFailure("Nothing to save: the FAISS index is empty")
        self._store.save_local(str(folder))

    async def upsert(self, records: list[IndexRecord]) -> None:
        if not records:
            return
        for record in records:
            if len(record.vector) != self.dimension:
                raise DimensionMismatch(
                    self.dimension, len(record.vector), context=f"record {record.id}"
                )
        try:
            await asyncio.to_thread(self._upsert_sync, records)
        except DimensionMismatch:
            raise
        except Exception as exc:
            raise IndexWriteFailure(f"FAISS upsert failed: {exc}") from exc

    def _upsert_sync(self, records: list[IndexRecord]) -> None:
        text_embeddings = [(record.text, _normalize(record.vector)) for record in records]
        metadatas = [{**record.metadata, "record_id": record.id} for record in records]
        ids = [record.id for record in records]

        if self._store is None:
            self._store = self._faiss_cls.from_embeddings(
                text_embeddings=text_embeddings,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=ids,
                distance_strategy=self._distance,
            )
            return

        known = set(self._store.index_to_docstore_id.values())
        existing = [record_id for record_id in ids if record_id in known]
        if existing:
            logger.debug("Replacing %d existing FAISS records", len(existing))
            self._store.delete(ids=existing)
        self._store.add_embeddings(
            text_embeddings=text_embeddings,
            metadatas=metadatas,
            ids=ids,
        )

    async def query(self, vector: list[float], k: int) -> list[RetrievalResult]:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), context="query vector")
        if self._store is None:
            return []
        try:
            docs_and_scores = await asyncio.to_thread(
                self._store.similarity_search_with_score_by_vector,
                _normalize(vector),
                k,
            )
        except Exception as exc:
            raise IndexQueryFailure(f"FAISS query failed: {exc}") from exc

        results: list[RetrievalResult] = []
        for doc, score in docs_and_scores:
            metadata = dict(doc.metadata)
            record_id = str(metadata.pop("record_id", getattr(doc, "id", None) or ""))
            results.append(
                RetrievalResult(
                    record=IndexRecord(
                        id=record_id,
                        vector=[],
                        text=doc.page_content,
                        metadata=metadata,
                    ),
                    score=float(score),
                )
            )
        return results

    async def delete_source(self, source_id: str, *, keep: Collection[str] = ()) -> int:
        if self._store is None:
            return 0
        try:
            return await asyncio.to_thread(self._delete_source_sync, source_id, set(keep))
        except Exception as exc:
            raise IndexWriteFailure(f"FAISS delete failed for {source_id}: {exc}") from exc

    def _delete_source_sync(self, source_id: str, keep: set[str]) -> int:
        stale = []
        for doc_id in self._store.index_to_docstore_id.values():
            if doc_id in keep:
                continue
            doc = self._store.docstore.search(doc_id)
            if getattr(doc, "metadata", {}).get("source_id") == source_id:
                stale.append(doc_id)
        if stale:
            self._store.delete(ids=stale)
        return len(stale)

    async def describe(self) -> IndexDescription:
        return IndexDescription(dimension=self.dimension, metric="cosine")


def _normalize(vector: list[float]) -> list[float]:
    norm = sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        return 0.0
    return sum(x * y for x, y in zip(_normalize(a), _normalize(b)))
