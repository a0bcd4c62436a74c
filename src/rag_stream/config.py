"""Configuration models for the RAG system."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

PARAGRAPH = "\n\n"
LINE = "\n"
SENTENCE = r"(?<=[.!?])\s+"
WORD = " "
CHARACTER = ""


class ChunkingConfig(BaseModel):
    """Configures recursive separator splitting with character overlap.

    `separators` run coarse to fine. Entries are literal strings, except
    `SENTENCE` which is a regular expression; an empty string enables the
    character-level fallback. Without it, indivisible pieces longer than
    `max_chunk_size` are kept whole and flagged oversized.
    """

    max_chunk_size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=200, ge=0)
    separators: tuple[str, ...] = (PARAGRAPH, LINE, SENTENCE, WORD, CHARACTER)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap >= self.max_chunk_size:
            raise ValueError("overlap must be less than max_chunk_size")
        return self


class IngestConfig(BaseModel):
    """Configures embedding concurrency and retry behavior during ingest."""

    concurrency: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_initial_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=8.0, ge=0.0)
    backoff_jitter_seconds: float = Field(default=0.5, ge=0.0)
    upsert_batch_size: int = Field(default=100, ge=1)


class RetrievalConfig(BaseModel):
    """Configures nearest-neighbor retrieval and relevance filtering."""

    top_k: int = Field(default=4, ge=1)
    score_threshold: float = Field(default=0.3, ge=-1.0, le=1.0)
    separator: str = "\n---\n"
    score_precision: int = Field(default=4, ge=0, le=8)


class StreamingConfig(BaseModel):
    """Configures the answer stream channel and its fixed messages."""

    channel_capacity: int = Field(default=1, ge=1)
    not_found_message: str = (
        "I couldn't find anything relevant to that question in the knowledge base."
    )
    empty_answer_message: str = "The model returned an empty answer. Please try rephrasing."
    generation_failed_message: str = (
        "\n[error] Upstream generation failed before the answer was complete."
    )
    internal_error_message: str = "\n[error] The answer stream stopped unexpectedly."
