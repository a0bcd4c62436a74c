from pathlib import Path

import pytest
from typer.testing import CliRunner

from rag_stream.cli import app

runner = CliRunner()


def _docs(tmp_path: Path) -> Path:
    folder = tmp_path / "docs"
    folder.mkdir()
    (folder / "policy.txt").write_text("Encrypt customer data at rest. " * 80, encoding="utf-8")
    (folder / "notes.md").write_text("# Notes\n\nKeys rotate monthly.", encoding="utf-8")
    (folder / "diagram.png").write_bytes(b"\x89PNG")
    return folder


def test_ingest_dry_run_reports_chunk_counts(tmp_path: Path) -> None:
    folder = _docs(tmp_path)
    index_dir = tmp_path / "index"

    result = runner.invoke(
        app,
        [
            "ingest",
            str(folder),
            "--index-dir",
            str(index_dir),
            "--max-chunk-size",
            "500",
            "--overlap",
            "50",
            "--dry-run",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Skipping unsupported file diagram.png" in result.output
    assert "2 source(s)" in result.output
    assert not index_dir.exists()


def test_ingest_rejects_overlap_not_below_chunk_size(tmp_path: Path) -> None:
    folder = _docs(tmp_path)

    result = runner.invoke(
        app,
        ["ingest", str(folder), "--max-chunk-size", "100", "--overlap", "100", "--dry-run"],
    )

    assert result.exit_code == 2
    assert "Invalid chunking options" in result.output


def test_ingest_rejects_source_id_for_folder(tmp_path: Path) -> None:
    result = runner.invoke(app, ["ingest", str(_docs(tmp_path)), "--source-id", "all", "--dry-run"])

    assert result.exit_code == 2
    assert "--source-id" in result.output


def test_ingest_writes_faiss_index(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    pytest.importorskip("faiss")
    pytest.importorskip("langchain_community")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("RAG_EMBEDDING_DIMENSION", "64")
    folder = _docs(tmp_path)
    index_dir = tmp_path / "index"

    first = runner.invoke(app, ["ingest", str(folder), "--index-dir", str(index_dir)])
    second = runner.invoke(
        app,
        ["ingest", str(folder / "notes.md"), "--index-dir", str(index_dir), "--source-id", "notes"],
    )

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert (index_dir / "index.faiss").exists()
