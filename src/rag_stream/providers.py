"""Environment-driven construction of collaborators.

With `OPENAI_API_KEY` set, OpenAI models are used through LangChain.
Without it, deterministic local collaborators are used so the service runs
offline.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from rag_stream.generation.generator import (
    ExtractiveGenerator,
    Generator,
    create_openai_generator,
)
from rag_stream.ingest.embedder import EmbeddingClient, HashingEmbedder, create_openai_embedder
from rag_stream.retrieval.vector_store import FaissVectorIndex, InMemoryVectorIndex, VectorIndex

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_DIMENSION = 1536
DEFAULT_HASHING_DIMENSION = 256


def llm_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def create_embedder() -> EmbeddingClient:
    if not llm_configured():
        dimension = int(os.getenv("RAG_EMBEDDING_DIMENSION", DEFAULT_HASHING_DIMENSION))
        return HashingEmbedder(dimension)
    return create_openai_embedder(
        os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        int(os.getenv("RAG_EMBEDDING_DIMENSION", DEFAULT_OPENAI_DIMENSION)),
    )


def create_generator() -> Generator:
    if not llm_configured():
        return ExtractiveGenerator()
    return create_openai_generator(os.getenv("OPENAI_MODEL", "gpt-4o-mini"))


def create_index(dimension: int) -> VectorIndex:
    """Load the FAISS index at `RAG_FAISS_PATH` if present, else an in-memory one."""

    faiss_path = os.getenv("RAG_FAISS_PATH")
    if faiss_path and Path(faiss_path).exists():
        logger.info("Loading FAISS index from %s", faiss_path)
        return FaissVectorIndex.load(faiss_path, dimension)
    return InMemoryVectorIndex(dimension)
