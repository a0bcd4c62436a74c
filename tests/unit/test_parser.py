from pathlib import Path

import pytest

from rag_stream.errors import FileTooLarge, UnsupportedFileType
from rag_stream.ingest.parser import (
    MAX_UPLOAD_BYTES,
    ParserRegistry,
    detect_file_type,
    validate_upload,
)


def test_validate_upload_accepts_known_types() -> None:
    validate_upload("report.pdf", "application/pdf", 1024)
    validate_upload("notes.md", "application/octet-stream", 1024)
    validate_upload("README", "text/plain", 10)


def test_validate_upload_rejects_unknown_type() -> None:
    with pytest.raises(UnsupportedFileType):
        validate_upload("photo.png", "image/png", 1024)


def test_validate_upload_rejects_oversized_file() -> None:
    with pytest.raises(FileTooLarge) as exc_info:
        validate_upload("big.txt", "text/plain", MAX_UPLOAD_BYTES + 1)

    assert "Maximum size is 10MB" in exc_info.value.message


def test_detect_file_type() -> None:
    assert detect_file_type("Handbook.PDF") == "pdf"
    assert detect_file_type("notes.md") == "markdown"
    assert detect_file_type("log.txt") == "text"
    assert detect_file_type("contract.docx") == "word"
    assert detect_file_type("archive.zip") == "unknown"


def test_registry_parses_text_and_json_bytes() -> None:
    registry = ParserRegistry()

    text_doc = registry.parse_bytes("policy.txt", "Encrypt data at rest.".encode("utf-8"))
    json_doc = registry.parse_bytes("config.json", b'{"zeta": 1, "alpha": {"nested": true}}')

    assert text_doc.doc_id == "policy"
    assert text_doc.text == "Encrypt data at rest."
    assert text_doc.metadata == {"format": "text", "source": "policy.txt"}
    assert json_doc.metadata["keys"] == "alpha,zeta"
    assert json_doc.text.index('"alpha"') < json_doc.text.index('"zeta"')


def test_registry_parse_path_and_unsupported_extension(tmp_path: Path) -> None:
    registry = ParserRegistry()
    doc_path = tmp_path / "guide.md"
    doc_path.write_text("# Guide\n\nRotate keys.", encoding="utf-8")

    parsed = registry.parse_path(doc_path)

    assert parsed.doc_id == "guide"
    assert parsed.metadata["format"] == "markdown"
    assert parsed.metadata["source"] == str(doc_path)
    assert registry.supports(doc_path)
    assert not registry.supports(tmp_path / "image.png")

    with pytest.raises(UnsupportedFileType):
        registry.parse_bytes("image.png", b"\x89PNG")
