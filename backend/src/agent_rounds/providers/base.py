"""Abstract LLM provider interface for the agent rounds."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from ..models import Message, ToolDefinition


@dataclass(frozen=True)
class ToolCallFragment:
    """Part of a tool call; fragments with the same index belong together."""

    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class StreamEvent:
    """One event from a model stream: a text delta, a tool-call fragment, or usage."""

    text: str = ""
    tool_call: ToolCallFragment | None = None
    usage: TokenUsage | None = None


class LLMProvider(ABC):
    """
    Abstract LLM provider. Implement this to plug in any backend (Ollama, OpenAI, etc.).

    The round executor only depends on this interface.
    """

    @abstractmethod
    def stream(
        self,
        prompt: str,
        history: list[Message],
        tools: list[ToolDefinition],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one model response to ``prompt`` (the system instruction) and ``history``.

        Ends when the model is done. Errors are raised from the iterator.
        """
        ...


def chat_messages(prompt: str, history: list[Message]) -> list[dict[str, Any]]:
    """System prompt plus history in role/content form."""
    out: list[dict[str, Any]] = []
    if prompt:
        out.append({"role": "system", "content": prompt})
    for m in history:
        out.append({"role": m.chat_role, "content": m.content or ""})
    return out
