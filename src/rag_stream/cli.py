"""rag-stream CLI: batch ingestion into an on-disk FAISS index.

    rag-stream ingest docs/                 ingest every supported file
    rag-stream ingest notes.md --dry-run    report chunk counts only
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from rag_stream.config import ChunkingConfig
from rag_stream.errors import RagError
from rag_stream.ingest.chunker import RecursiveOverlapChunker
from rag_stream.ingest.parser import ParserRegistry
from rag_stream.ingest.pipeline import IngestPipeline
from rag_stream.obs.logger import configure_logging
from rag_stream.providers import create_embedder
from rag_stream.retrieval.vector_store import FaissVectorIndex
from rag_stream.types import IngestReport

console = Console()

_DEFAULT_INDEX_DIR = ".rag_index"

app = typer.Typer(
    name="rag-stream",
    help="Retrieval-augmented answering: ingest sources into a vector index.",
    add_completion=False,
)


@app.callback()
def main_callback() -> None:
    """rag-stream command line tools."""


@app.command("version")
def version_cmd() -> None:
    """Show the installed rag-stream version."""
    try:
        ver = importlib.metadata.version("rag-stream")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"rag-stream {ver}")


@app.command("ingest")
def ingest_cmd(
    path: Annotated[Path, typer.Argument(help="File or folder to ingest.", exists=True)],
    index_dir: Annotated[
        Path,
        typer.Option("--index-dir", help="FAISS index folder (created if missing)."),
    ] = Path(os.getenv("RAG_FAISS_PATH", _DEFAULT_INDEX_DIR)),
    source_id: Annotated[
        str | None,
        typer.Option("--source-id", help="Source id for a single file (defaults to its name)."),
    ] = None,
    max_chunk_size: Annotated[
        int,
        typer.Option("--max-chunk-size", help="Maximum chunk length in characters."),
    ] = 1000,
    overlap: Annotated[
        int,
        typer.Option("--overlap", help="Characters shared between consecutive chunks."),
    ] = 200,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Report chunk counts without embedding or writing."),
    ] = False,
) -> None:
    """Ingest a file or every supported file in a folder."""
    configure_logging(os.getenv("RAG_LOG_LEVEL", "WARNING"))

    try:
        chunking = ChunkingConfig(max_chunk_size=max_chunk_size, overlap=overlap)
    except ValueError as exc:
        console.print(f"[red]Error:[/] Invalid chunking options: {exc}")
        raise typer.Exit(2)

    if path.is_dir() and source_id is not None:
        console.print("[red]Error:[/] --source-id applies to a single file, not a folder.")
        raise typer.Exit(2)

    registry = ParserRegistry()
    chunker = RecursiveOverlapChunker(chunking)

    if dry_run:
        _dry_run(path, registry, chunker, source_id)
        return

    try:
        reports = asyncio.run(_ingest(path, index_dir, registry, chunker, source_id))
    except (RagError, RuntimeError) as exc:
        message = exc.message if isinstance(exc, RagError) else str(exc)
        console.print(f"[red]Error:[/] {message}")
        raise typer.Exit(1)

    _print_reports(reports, title=f"Ingested into {index_dir}")


async def _ingest(
    path: Path,
    index_dir: Path,
    registry: ParserRegistry,
    chunker: RecursiveOverlapChunker,
    source_id: str | None,
) -> list[IngestReport]:
    embedder = create_embedder()
    if index_dir.exists():
        index = FaissVectorIndex.load(index_dir, embedder.dimension)
    else:
        index = FaissVectorIndex(embedder.dimension)

    pipeline = IngestPipeline(chunker, embedder, index, parser_registry=registry)
    if path.is_dir():
        reports = await pipeline.ingest_directory(path)
    else:
        reports = [await pipeline.ingest_path(path, source_id=source_id)]

    if reports:
        index.save(index_dir)
    return reports


def _dry_run(
    path: Path,
    registry: ParserRegistry,
    chunker: RecursiveOverlapChunker,
    source_id: str | None,
) -> None:
    files = sorted(p for p in path.iterdir() if p.is_file()) if path.is_dir() else [path]
    reports: list[IngestReport] = []
    for file_path in files:
        if not registry.supports(file_path):
            console.print(f"[dim]Skipping unsupported file {file_path.name}[/]")
            continue
        try:
            parsed = registry.parse_path(file_path, doc_id=source_id)
        except (RagError, ValueError) as exc:
            console.print(f"[yellow]Could not read {file_path.name}:[/] {exc}")
            continue
        chunks = chunker.chunk_document(parsed)
        reports.append(
            IngestReport(
                source_id=parsed.doc_id,
                chunks_created=len(chunks),
                bytes_processed=len(parsed.text.encode("utf-8")),
                oversized_chunks=sum(1 for chunk in chunks if chunk.oversized),
            )
        )
    _print_reports(reports, title="Dry run: nothing written")


def _print_reports(reports: list[IngestReport], *, title: str) -> None:
    if not reports:
        console.print("[yellow]No supported sources found.[/]")
        return
    table = Table(title=title)
    table.add_column("Source")
    table.add_column("Chunks", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Oversized", justify="right")
    for report in reports:
        table.add_row(
            report.source_id,
            str(report.chunks_created),
            str(report.bytes_processed),
            str(report.oversized_chunks),
        )
    console.print(table)
    total = sum(report.chunks_created for report in reports)
    console.print(f"[green]✓[/] {len(reports)} source(s), {total} chunk(s)")


if __name__ == "__main__":
    app()
