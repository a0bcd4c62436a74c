"""Prompt templates for grounded and direct answers."""

from __future__ import annotations

from langchain_core.prompts import PromptTemplate

from rag_stream.types import ContextWindow

CONTEXT_HEADER = "Context:\n"
QUESTION_HEADER = "\n\nQuestion:\n"

_ANSWER_TEMPLATE = (
    "Use the context to answer. If context is irrelevant say so.\n\n"
    + CONTEXT_HEADER
    + "{context}"
    + QUESTION_HEADER
    + "{question}"
)

_DIRECT_TEMPLATE = "Answer the following question:\n{question}"

ANSWER_PROMPT = PromptTemplate.from_template(_ANSWER_TEMPLATE)
DIRECT_PROMPT = PromptTemplate.from_template(_DIRECT_TEMPLATE)


def compose_question(question: str, label: str | None = None) -> str:
    """Prefix an image-classification label to the question, if present."""

    question = question.strip()
    if label and label.strip():
        return f"{label.strip()}. {question}"
    return question


def build_answer_prompt(context: ContextWindow, question: str) -> str:
    return ANSWER_PROMPT.format(context=context.text, question=question)


def build_direct_prompt(question: str) -> str:
    return DIRECT_PROMPT.format(question=question)


def extract_context(prompt: str) -> str:
    """Recover the context block from a prompt built by `build_answer_prompt`."""

    start = prompt.find(CONTEXT_HEADER)
    if start < 0:
        return ""
    start += len(CONTEXT_HEADER)
    end = prompt.find(QUESTION_HEADER, start)
    return prompt[start:] if end < 0 else prompt[start:end]
