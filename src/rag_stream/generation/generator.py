"""Streaming text generators."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from typing import Any, Protocol

from rag_stream.errors import GenerationFailure
from rag_stream.generation.prompts import extract_context

logger = logging.getLogger(__name__)

_SCORE_PREFIX = re.compile(r"^\(-?[0-9.]+\)\s*")
_WORDS = re.compile(r"\S+\s*")


class Generator(Protocol):
    """Produces answer text incrementally for a prompt.

    The returned iterator is finite and not restartable. It may raise
    `GenerationFailure` at any point.
    """

    def stream_complete(self, prompt: str) -> AsyncIterator[str]:
        """Stream the completion of `prompt` token by token."""


class LangChainGenerator:
    """Adapter over a LangChain chat model's `astream`."""

    mode = "langchain"

    def __init__(self, model: Any) -> None:
        self._model = model
        self.model_name = str(
            getattr(model, "model_name", None) or getattr(model, "model", None) or type(model).__name__
        )

    async def stream_complete(self, prompt: str) -> AsyncIterator[str]:
        try:
            async for chunk in self._model.astream(prompt):
                token = _content_text(getattr(chunk, "content", chunk))
                if token:
                    yield token
        except GenerationFailure:
            raise
        except Exception as exc:
            raise GenerationFailure(f"{self.model_name} stream failed: {exc}") from exc


class ExtractiveGenerator:
    """Deterministic generator that needs no language model.

    Streams the highest-ranked passage from the prompt's context block word
    by word, and nothing for prompts without context. Used when no model
    credentials are configured.
    """

    mode = "extractive"
    model_name = "extractive"

    def __init__(self, *, separator: str = "\n---\n", delay_seconds: float = 0.0) -> None:
        self.separator = separator
        self.delay_seconds = delay_seconds

    async def stream_complete(self, prompt: str) -> AsyncIterator[str]:
        context = extract_context(prompt)
        if not context.strip():
            return
        passage = _SCORE_PREFIX.sub("", context.split(self.separator, 1)[0].strip())
        for word in _WORDS.findall(passage):
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield word


def create_openai_generator(model: str) -> LangChainGenerator:
    from langchain_openai import ChatOpenAI

    return LangChainGenerator(ChatOpenAI(model=model, temperature=0, streaming=True))


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content) if content is not None else ""
