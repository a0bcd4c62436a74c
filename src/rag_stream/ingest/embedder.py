"""Embedding client abstractions and implementations."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from rag_stream.errors import EmbeddingFailure

logger = logging.getLogger(__name__)


class EmbeddingClient(ABC):
    """Maps text to a fixed-length vector.

    Implementations raise `EmbeddingFailure` for provider errors so the
    ingest pipeline can retry them.
    """

    dimension: int
    model_name: str

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class HashingEmbedder(EmbeddingClient):
    """Deterministic sparse-like embedding without external model calls.

    This class is primarily used for local runs and tests. In production,
    use `LangChainEmbeddingClient` over an OpenAI or other provider model.
    """

    model_name = "hashing-v1"

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimension
            vector[bucket] += -1.0 if digest[4] & 1 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector


class LangChainEmbeddingClient(EmbeddingClient):
    """Adapter over any LangChain `Embeddings` implementation.

    The dimension is declared up front because providers only reveal it
    after a call; the ingest pipeline checks every returned vector against it.
    """

    def __init__(self, embeddings: Any, *, dimension: int, model_name: str | None = None) -> None:
        self._embeddings = embeddings
        self.dimension = dimension
        self.model_name = model_name or str(
            getattr(embeddings, "model", type(embeddings).__name__)
        )

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self._embeddings.aembed_query(text)
        except Exception as exc:
            logger.warning("Embedding call to %s failed: %s", self.model_name, exc)
            raise EmbeddingFailure(f"{self.model_name} embedding failed: {exc}") from exc
        return [float(value) for value in vector]


def create_openai_embedder(model: str, dimension: int) -> LangChainEmbeddingClient:
    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbeddingClient(
        OpenAIEmbeddings(model=model),
        dimension=dimension,
        model_name=model,
    )
