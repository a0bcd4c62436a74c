"""FastAPI entrypoint for ingest/query/trace endpoints."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from pypdf.errors import PdfReadError

from rag_stream.config import ChunkingConfig, IngestConfig, RetrievalConfig, StreamingConfig
from rag_stream.errors import InvalidRequest, RagError
from rag_stream.generation.generator import Generator
from rag_stream.generation.pipeline import PreparedAnswer, QueryPipeline, QueryRequest
from rag_stream.generation.streamer import AnswerStreamer
from rag_stream.ingest.chunker import RecursiveOverlapChunker
from rag_stream.ingest.embedder import EmbeddingClient
from rag_stream.ingest.parser import (
    MAX_UPLOAD_BYTES,
    ParserRegistry,
    detect_file_type,
    validate_upload,
)
from rag_stream.ingest.pipeline import IngestPipeline
from rag_stream.obs.logger import configure_logging
from rag_stream.obs.tracing import TraceStore
from rag_stream.providers import create_embedder, create_generator, create_index
from rag_stream.retrieval.retriever import Retriever
from rag_stream.retrieval.vector_store import VectorIndex

logger = logging.getLogger(__name__)


class IngestRequest(BaseModel):
    source_id: str = Field(min_length=1)
    raw_text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class AskRequest(BaseModel):
    question: str = Field(min_length=1)


class EmbeddingRequest(BaseModel):
    text: str = Field(min_length=1)


class SourceSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)
    score_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


@dataclass(slots=True)
class Services:
    """The collaborator graph behind one app instance."""

    embedder: EmbeddingClient
    index: VectorIndex
    generator: Generator
    parser_registry: ParserRegistry
    ingest_pipeline: IngestPipeline
    retriever: Retriever
    query_pipeline: QueryPipeline
    trace_store: TraceStore


def build_services(
    *,
    embedder: EmbeddingClient | None = None,
    index: VectorIndex | None = None,
    generator: Generator | None = None,
    chunking: ChunkingConfig | None = None,
    ingest: IngestConfig | None = None,
    retrieval: RetrievalConfig | None = None,
    streaming: StreamingConfig | None = None,
) -> Services:
    embedder = embedder or create_embedder()
    index = index or create_index(embedder.dimension)
    generator = generator or create_generator()
    parser_registry = ParserRegistry()
    trace_store = TraceStore()

    retriever = Retriever(
        index,
        dimension=embedder.dimension,
        config=retrieval or _retrieval_config_from_env(),
    )
    return Services(
        embedder=embedder,
        index=index,
        generator=generator,
        parser_registry=parser_registry,
        ingest_pipeline=IngestPipeline(
            RecursiveOverlapChunker(chunking or ChunkingConfig()),
            embedder,
            index,
            parser_registry=parser_registry,
            config=ingest,
        ),
        retriever=retriever,
        query_pipeline=QueryPipeline(
            embedder=embedder,
            retriever=retriever,
            streamer=AnswerStreamer(generator, streaming),
            trace_store=trace_store,
        ),
        trace_store=trace_store,
    )


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services()
    app = FastAPI(title="RAG Stream", version="0.1.0")
    app.state.services = services

    @app.exception_handler(RagError)
    async def _rag_error(_: Request, exc: RagError) -> JSONResponse:
        logger.warning("Request rejected: %s: %s", exc.error_kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        error = InvalidRequest(_describe_validation_errors(exc.errors()))
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.get("/health")
    async def health() -> dict[str, Any]:
        description = await services.index.describe()
        return {
            "status": "ok",
            "generator_mode": getattr(services.generator, "mode", "custom"),
            "embedding_model": services.embedder.model_name,
            "index_dimension": description.dimension,
            "index_metric": description.metric,
            "trace_count": len(services.trace_store.list_recent(limit=services.trace_store.capacity)),
        }

    @app.post("/ingest")
    async def ingest(request: IngestRequest) -> dict[str, Any]:
        report = await services.ingest_pipeline.ingest(
            request.source_id, request.raw_text, request.metadata
        )
        return asdict(report)

    @app.post("/ingest/upload")
    async def ingest_upload(
        file: UploadFile = File(...),
        file_name: str | None = Form(default=None),
    ) -> dict[str, Any]:
        name = file_name or file.filename or "upload.txt"
        if file.size is not None:
            validate_upload(name, file.content_type, file.size)
        # Read one byte past the limit so an unsized oversized body is still caught.
        content = await file.read(MAX_UPLOAD_BYTES + 1)
        validate_upload(name, file.content_type, len(content))
        logger.info("Processing upload %s (%d bytes)", name, len(content))

        try:
            parsed = await asyncio.to_thread(services.parser_registry.parse_bytes, name, content)
        except (ValueError, PdfReadError) as exc:
            raise InvalidRequest(f"Could not read '{name}': {exc}") from exc

        report = await services.ingest_pipeline.ingest(
            parsed.doc_id,
            parsed.text,
            {
                **parsed.metadata,
                "source": name,
                "type": detect_file_type(name),
                "uploaded_at": datetime.now(timezone.utc).isoformat(),
                "file_size": len(content),
            },
        )
        return {
            **asdict(report),
            "file_name": name,
            "text_length": len(parsed.text),
            "message": (
                f"Successfully processed {name} and created "
                f"{report.chunks_created} searchable chunks"
            ),
        }

    @app.post("/embeddings")
    async def embeddings(request: EmbeddingRequest) -> dict[str, Any]:
        vector = await services.embedder.embed(request.text)
        return {"embedding": vector, "dimension": len(vector)}

    @app.post("/query")
    async def query(request: QueryRequest) -> StreamingResponse:
        prepared = await services.query_pipeline.prepare(request)
        return _stream_response(prepared)

    @app.post("/ask")
    async def ask(request: AskRequest) -> StreamingResponse:
        return _stream_response(services.query_pipeline.direct(request.question))

    @app.post("/sources/search")
    async def source_search(request: SourceSearchRequest) -> dict[str, Any]:
        vector = await services.embedder.embed(request.query)
        hits = await services.retriever.search(
            vector,
            k=request.top_k,
            score_threshold=request.score_threshold,
        )
        return {
            "items": [
                {
                    "id": hit.record.id,
                    "score": hit.score,
                    "text": hit.record.text,
                    "metadata": hit.record.metadata,
                }
                for hit in hits
            ]
        }

    @app.get("/traces")
    async def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in services.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    async def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = services.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        return services.trace_store.summary()

    return app


def _stream_response(prepared: PreparedAnswer) -> StreamingResponse:
    return StreamingResponse(
        prepared.stream(),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Trace-Id": prepared.session.session_id,
        },
    )


def _retrieval_config_from_env() -> RetrievalConfig:
    defaults = RetrievalConfig()
    return RetrievalConfig(
        top_k=int(os.getenv("RAG_TOP_K", defaults.top_k)),
        score_threshold=float(os.getenv("RAG_SCORE_THRESHOLD", defaults.score_threshold)),
    )


def _describe_validation_errors(errors: Any) -> str:
    messages: list[str] = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "invalid value"))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "invalid request"


configure_logging(os.getenv("RAG_LOG_LEVEL", "INFO"))
app = create_app()
