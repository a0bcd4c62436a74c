import pytest

from rag_stream.config import RetrievalConfig
from rag_stream.errors import DimensionMismatch
from rag_stream.retrieval.retriever import Retriever
from rag_stream.types import IndexDescription, IndexRecord, RetrievalResult


class ScriptedIndex:
    """Returns fixed results and counts how often it is queried."""

    def __init__(self, scored: list[tuple[str, float]], dimension: int = 3) -> None:
        self.dimension = dimension
        self.queries = 0
        self._results = [
            RetrievalResult(
                record=IndexRecord(
                    id=record_id,
                    vector=[0.0] * dimension,
                    text=f"text of {record_id}",
                    metadata={},
                ),
                score=score,
            )
            for record_id, score in scored
        ]

    async def upsert(self, records: list[IndexRecord]) -> None:
        raise AssertionError("retrieval never writes")

    async def query(self, vector: list[float], k: int) -> list[RetrievalResult]:
        self.queries += 1
        return self._results[:k]

    async def describe(self) -> IndexDescription:
        return IndexDescription(dimension=self.dimension)


@pytest.mark.asyncio
async def test_retrieve_filters_below_threshold() -> None:
    index = ScriptedIndex([("policy#0", 0.82), ("policy#1", 0.25)])
    retriever = Retriever(index, dimension=3, config=RetrievalConfig(top_k=2, score_threshold=0.3))

    context = await retriever.retrieve([0.1, 0.2, 0.3])

    assert len(context.entries) == 1
    assert context.entries[0].record.id == "policy#0"
    assert context.top_score == pytest.approx(0.82)
    assert context.text == "(0.8200) text of policy#0"


@pytest.mark.asyncio
async def test_retrieve_returns_empty_marker_when_nothing_passes() -> None:
    index = ScriptedIndex([("a", 0.1), ("b", 0.05)])
    retriever = Retriever(index, dimension=3)

    context = await retriever.retrieve([1.0, 0.0, 0.0])

    assert context.is_empty
    assert context.text == ""
    assert context.top_score is None


@pytest.mark.asyncio
async def test_retrieve_rejects_wrong_dimension_before_querying() -> None:
    index = ScriptedIndex([("a", 0.9)])
    retriever = Retriever(index, dimension=3)

    with pytest.raises(DimensionMismatch):
        await retriever.retrieve([1.0, 0.0])

    assert index.queries == 0


@pytest.mark.asyncio
async def test_retrieve_orders_by_score_then_record_id() -> None:
    index = ScriptedIndex([("c", 0.5), ("b", 0.9), ("a", 0.5), ("d", 0.7)])
    retriever = Retriever(index, dimension=3, config=RetrievalConfig(top_k=4, score_threshold=0.3))

    context = await retriever.retrieve([1.0, 1.0, 1.0])

    assert [entry.record.id for entry in context.entries] == ["b", "d", "a", "c"]
    assert context.text.split("\n---\n") == [
        "(0.9000) text of b",
        "(0.7000) text of d",
        "(0.5000) text of a",
        "(0.5000) text of c",
    ]


@pytest.mark.asyncio
async def test_search_call_overrides_take_precedence() -> None:
    index = ScriptedIndex([("a", 0.95), ("b", 0.6), ("c", 0.4)])
    retriever = Retriever(index, dimension=3, config=RetrievalConfig(top_k=3, score_threshold=0.3))

    hits = await retriever.search([1.0, 0.0, 0.0], k=2, score_threshold=0.7)

    assert [hit.record.id for hit in hits] == ["a"]

    with pytest.raises(ValueError):
        await retriever.search([1.0, 0.0, 0.0], k=0)
