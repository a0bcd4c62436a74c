"""Threshold-filtered nearest-neighbor retrieval into a context window."""

from __future__ import annotations

import logging

from rag_stream.config import RetrievalConfig
from rag_stream.errors import DimensionMismatch
from rag_stream.retrieval.vector_store import VectorIndex
from rag_stream.types import ContextWindow, RetrievalResult

logger = logging.getLogger(__name__)


class Retriever:
    """Fetches top-k neighbors and keeps those above the relevance threshold.

    The threshold is a tunable, not a hidden constant: it comes from
    `RetrievalConfig` and can be overridden per call. When nothing passes,
    `retrieve` returns `ContextWindow.empty()` so callers can answer "not
    found" instead of generating without grounding.
    """

    def __init__(
        self,
        index: VectorIndex,
        *,
        dimension: int,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.index = index
        self.dimension = dimension
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query_vector: list[float],
        *,
        k: int | None = None,
        score_threshold: float | None = None,
    ) -> list[RetrievalResult]:
        """Return passing results in descending score order, ties by record id."""

        if len(query_vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(query_vector), context="query vector")
        top_k = self.config.top_k if k is None else k
        if top_k < 1:
            raise ValueError("k must be positive")
        threshold = self.config.score_threshold if score_threshold is None else score_threshold

        candidates = await self.index.query(query_vector, top_k)
        ranked = sorted(candidates, key=lambda item: (-item.score, item.record.id))[:top_k]
        passing = [item for item in ranked if item.score >= threshold]
        logger.debug(
            "Retrieved %d candidates, %d above threshold %.3f",
            len(ranked),
            len(passing),
            threshold,
        )
        return passing

    async def retrieve(
        self,
        query_vector: list[float],
        *,
        k: int | None = None,
        score_threshold: float | None = None,
    ) -> ContextWindow:
        passing = await self.search(query_vector, k=k, score_threshold=score_threshold)
        if not passing:
            return ContextWindow.empty()
        return ContextWindow(
            entries=tuple(passing),
            separator=self.config.separator,
            score_precision=self.config.score_precision,
        )
