from rag_stream.config import StreamingConfig
from rag_stream.generation.prompts import (
    build_answer_prompt,
    build_direct_prompt,
    compose_question,
    extract_context,
)
from rag_stream.types import ContextWindow, IndexRecord, RetrievalResult


def _context() -> ContextWindow:
    return ContextWindow(
        entries=(
            RetrievalResult(
                record=IndexRecord(
                    id="policy#0", vector=[], text="Encrypt customer data at rest.", metadata={}
                ),
                score=0.87654,
            ),
            RetrievalResult(
                record=IndexRecord(
                    id="policy#1", vector=[], text="Rotate keys monthly.", metadata={}
                ),
                score=0.5,
            ),
        )
    )


def test_answer_prompt_grounds_question_in_scored_context() -> None:
    prompt = build_answer_prompt(_context(), "What must happen to customer data?")

    assert prompt == (
        "Use the context to answer. If context is irrelevant say so.\n\n"
        "Context:\n"
        "(0.8765) Encrypt customer data at rest.\n---\n(0.5000) Rotate keys monthly."
        "\n\nQuestion:\n"
        "What must happen to customer data?"
    )
    assert extract_context(prompt) == _context().text


def test_direct_prompt_has_no_context_block() -> None:
    prompt = build_direct_prompt("What is RAG?")

    assert prompt == "Answer the following question:\nWhat is RAG?"
    assert extract_context(prompt) == ""


def test_label_prefixes_question() -> None:
    assert compose_question(" Is it ripe? ", "banana") == "banana. Is it ripe?"
    assert compose_question("Is it ripe?", "  ") == "Is it ripe?"
    assert compose_question("Is it ripe?") == "Is it ripe?"


def test_fixed_messages_are_stable_user_text() -> None:
    config = StreamingConfig()

    assert config.not_found_message == (
        "I couldn't find anything relevant to that question in the knowledge base."
    )
    assert config.generation_failed_message.startswith("\n[error]")
    assert "Traceback" not in config.internal_error_message
