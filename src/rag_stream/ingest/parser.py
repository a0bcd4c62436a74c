"""Parsing interfaces, concrete parsers and upload validation."""

from __future__ import annotations

import io
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import pypdf

from rag_stream.errors import EmptyContentError, FileTooLarge, UnsupportedFileType
from rag_stream.types import ParsedDocument

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = ("application/pdf", "text/plain", "text/markdown")
ALLOWED_UPLOAD_SUFFIXES = (".md", ".txt")

_FILE_TYPES = {
    ".pdf": "pdf",
    ".txt": "text",
    ".log": "text",
    ".md": "markdown",
    ".markdown": "markdown",
    ".json": "json",
    ".docx": "word",
}


class Parser(ABC):
    """Base parser interface used by the ingest pipeline."""

    extensions: tuple[str, ...] = ()
    format_name: str = "text"

    @abstractmethod
    def parse_bytes(self, data: bytes, *, doc_id: str) -> ParsedDocument:
        """Decode raw file content into normalized text + metadata."""

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        document = self.parse_bytes(path.read_bytes(), doc_id=doc_id or path.stem)
        document.metadata["source"] = str(path)
        return document


class TextParser(Parser):
    """Parser for plain text documents."""

    extensions = (".txt", ".log")

    def parse_bytes(self, data: bytes, *, doc_id: str) -> ParsedDocument:
        return ParsedDocument(
            doc_id=doc_id,
            text=data.decode("utf-8"),
            metadata={"format": self.format_name},
        )


class MarkdownParser(TextParser):
    """Parser for markdown documents."""

    extensions = (".md", ".markdown")
    format_name = "markdown"


class JsonParser(Parser):
    """Parser for JSON documents with deterministic normalization."""

    extensions = (".json",)
    format_name = "json"

    def parse_bytes(self, data: bytes, *, doc_id: str) -> ParsedDocument:
        payload: Any = json.loads(data.decode("utf-8"))
        metadata: dict[str, Any] = {"format": self.format_name}
        if isinstance(payload, dict):
            text = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)
            metadata["keys"] = ",".join(sorted(payload.keys()))
        elif isinstance(payload, list):
            text = json.dumps(payload, ensure_ascii=False, indent=2)
            metadata["length"] = len(payload)
        else:
            text = str(payload)
        return ParsedDocument(doc_id=doc_id, text=text, metadata=metadata)


class PdfParser(Parser):
    """Extracts text page by page via pypdf; pages without text are skipped."""

    extensions = (".pdf",)
    format_name = "pdf"

    def parse_bytes(self, data: bytes, *, doc_id: str) -> ParsedDocument:
        reader = pypdf.PdfReader(io.BytesIO(data))
        parts: list[str] = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                parts.append(page_text)
        if not parts:
            raise EmptyContentError(f"No text content found in PDF '{doc_id}'")
        return ParsedDocument(
            doc_id=doc_id,
            text="\n\n".join(parts),
            metadata={"format": self.format_name, "pages": len(reader.pages)},
        )


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), MarkdownParser(), JsonParser(), PdfParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def supports(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in self._parsers

    def parse_path(self, path: str | Path, *, doc_id: str | None = None) -> ParsedDocument:
        file_path = Path(path)
        return self._parser_for(file_path.name).parse(file_path, doc_id=doc_id)

    def parse_bytes(
        self, file_name: str, data: bytes, *, doc_id: str | None = None
    ) -> ParsedDocument:
        document = self._parser_for(file_name).parse_bytes(
            data, doc_id=doc_id or Path(file_name).stem
        )
        document.metadata["source"] = file_name
        return document

    def _parser_for(self, file_name: str) -> Parser:
        suffix = Path(file_name).suffix.lower()
        parser = self._parsers.get(suffix)
        if parser is None:
            raise UnsupportedFileType(f"No parser registered for extension: {suffix or file_name}")
        return parser


def detect_file_type(file_name: str) -> str:
    return _FILE_TYPES.get(Path(file_name).suffix.lower(), "unknown")


def validate_upload(
    file_name: str,
    content_type: str | None,
    size: int,
    *,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> None:
    """Reject uploads that are not PDF/TXT/MD or exceed the size limit."""

    lowered = file_name.lower()
    if content_type not in ALLOWED_CONTENT_TYPES and not lowered.endswith(
        ALLOWED_UPLOAD_SUFFIXES
    ):
        raise UnsupportedFileType(
            "Unsupported file type. Please upload PDF, TXT, or MD files."
        )
    if size > max_bytes:
        raise FileTooLarge(
            f"File too large ({size / (1024 * 1024):.2f} MB). "
            f"Maximum size is {max_bytes // (1024 * 1024)}MB."
        )
