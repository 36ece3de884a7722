from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Protocol

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from flowsynth.services.errors import UpstreamError

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Stateless, single-shot text generation: one prompt in, one text out."""

    def generate(self, prompt: str) -> str: ...


@lru_cache(maxsize=4)
def make_llm(model: str | None = None) -> ChatOpenAI:
    model_name = model or os.getenv("CHAT_OPENAI_MODEL", "gpt-4o-mini")
    max_out = int(os.getenv("CHAT_OPENAI_MAX_OUTPUT_TOKENS", "4000"))
    temperature = float(os.getenv("CHAT_OPENAI_TEMPERATURE", "0.2"))
    return ChatOpenAI(model=model_name, max_tokens=max_out, temperature=temperature)


def _content_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text") or ""))
        return "".join(parts)
    return str(content or "")


class ChatTextGenerator:
    """TextGenerator backed by a chat model. No retries; a failure is a failure."""

    def __init__(self, llm: Any = None, *, model: str | None = None) -> None:
        self._llm = llm
        self._model = model

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = make_llm(model=self._model)
        return self._llm

    def generate(self, prompt: str) -> str:
        try:
            msg = self.llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            logger.exception("Text generation call failed")
            raise UpstreamError(f"generation service failed: {exc}") from exc
        return _content_to_text(getattr(msg, "content", msg))


@lru_cache(maxsize=1)
def get_text_generator() -> TextGenerator:
    return ChatTextGenerator()


def call_generator(generator: TextGenerator, prompt: str) -> str:
    """Invoke any TextGenerator, normalising its failures to UpstreamError."""
    try:
        text = generator.generate(prompt)
    except UpstreamError:
        raise
    except Exception as exc:
        logger.exception("Text generation call failed")
        raise UpstreamError(f"generation service failed: {exc}") from exc
    if not isinstance(text, str):
        raise UpstreamError("generation service returned no text")
    return text
