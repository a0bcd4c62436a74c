"""RAG Stream package."""

from .config import ChunkingConfig, IngestConfig, RetrievalConfig, StreamingConfig

__all__ = ["ChunkingConfig", "IngestConfig", "RetrievalConfig", "StreamingConfig"]
