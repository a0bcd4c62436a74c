"""Query tracing and aggregate stream metrics."""

from __future__ import annotations

import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from rag_stream.types import ContextWindow, StreamSession, StreamState


@dataclass(slots=True)
class QueryTrace:
    trace_id: str
    timestamp_utc: str
    mode: str
    question: str
    label: str | None
    state: str
    tokens_emitted: int
    answer_chars: int
    context_ids: list[str]
    top_score: float | None
    error_kind: str | None
    latency_ms: float


class TraceStore:
    """In-memory trace storage for API-level observability.

    Bounded to the most recent `capacity` traces.
    """

    def __init__(self, *, capacity: int = 1000) -> None:
        self.capacity = capacity
        self._records: dict[str, QueryTrace] = {}

    def create_record(
        self,
        *,
        mode: str,
        question: str,
        label: str | None,
        session: StreamSession,
        context: ContextWindow | None,
        answer_chars: int,
        latency_ms: float,
    ) -> QueryTrace:
        record = QueryTrace(
            trace_id=session.session_id or str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            mode=mode,
            question=question,
            label=label,
            state=session.state.value,
            tokens_emitted=session.tokens_emitted,
            answer_chars=answer_chars,
            context_ids=[entry.record.id for entry in context.entries] if context else [],
            top_score=context.top_score if context else None,
            error_kind=session.error_kind,
            latency_ms=latency_ms,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self.capacity:
            del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> QueryTrace:
        try:
            return self._records[trace_id]
        except KeyError:
            raise KeyError(f"Trace not found: {trace_id}") from None

    def list_recent(self, limit: int = 20) -> list[QueryTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate latency, outcome and grounding metrics for dashboard display."""
        traces = list(self._records.values())
        states = Counter(trace.state for trace in traces)
        grounded = [trace for trace in traces if trace.mode == "rag"]
        latencies = sorted(trace.latency_ms for trace in traces)

        metrics: dict[str, float | int] = {
            "total_requests": len(traces),
            "avg_latency_ms": sum(latencies) / len(latencies) if latencies else 0.0,
            "p95_latency_ms": _percentile(latencies, 0.95),
            "total_tokens_emitted": sum(trace.tokens_emitted for trace in traces),
            "empty_context_rate": (
                sum(1 for trace in grounded if not trace.context_ids) / len(grounded)
                if grounded
                else 0.0
            ),
        }
        for state in (StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED):
            metrics[f"{state.value}_streams"] = states.get(state.value, 0)
        return metrics


def _percentile(ordered: list[float], fraction: float) -> float:
    if not ordered:
        return 0.0
    return ordered[max(0, int(len(ordered) * fraction) - 1)]


class Timer:
    """Wall-clock timer for one streamed answer, in milliseconds."""

    def __init__(self) -> None:
        self.started_at: float | None = None
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self.started_at = time.perf_counter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.started_at is not None:
            self.elapsed_ms = (time.perf_counter() - self.started_at) * 1000.0
