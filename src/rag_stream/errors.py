"""Error taxonomy shared by ingestion, retrieval and streaming."""

from __future__ import annotations


class RagError(Exception):
    """Base class for errors reported to callers as structured payloads."""

    error_kind = "RagError"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error_kind": self.error_kind, "message": self.message}


class EmptyContentError(RagError):
    """Raised when a document has nothing to ingest."""

    error_kind = "EmptyContentError"
    status_code = 400


class DimensionMismatch(RagError):
    """Raised when a vector length disagrees with the index dimension."""

    error_kind = "DimensionMismatch"
    status_code = 422

    def __init__(self, expected: int, actual: int, *, context: str = "vector") -> None:
        super().__init__(
            f"{context} has dimension {actual}, index expects {expected}"
        )
        self.expected = expected
        self.actual = actual


class EmbeddingFailure(RagError):
    error_kind = "EmbeddingFailure"
    status_code = 502


class IndexWriteFailure(RagError):
    error_kind = "IndexWriteFailure"
    status_code = 502


class IndexQueryFailure(RagError):
    error_kind = "IndexQueryFailure"
    status_code = 502


class GenerationFailure(RagError):
    """Raised by generators when the upstream model fails mid-stream."""

    error_kind = "GenerationFailure"
    status_code = 502


class UnsupportedFileType(RagError):
    error_kind = "UnsupportedFileType"
    status_code = 415


class FileTooLarge(RagError):
    error_kind = "FileTooLarge"
    status_code = 413


class InvalidRequest(RagError):
    error_kind = "InvalidRequest"
    status_code = 422
