"""OpenAI LLM provider implementation."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from ..models import Message, ToolDefinition
from .base import LLMProvider, StreamEvent, TokenUsage, ToolCallFragment, chat_messages


class OpenAIProvider(LLMProvider):
    """OpenAI-backed LLM provider using the Chat Completions API.

    Works with any OpenAI-compatible endpoint through ``base_url``.
    """

    def __init__(
        self,
        default_model: str = "gpt-4.1-nano",
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self.default_model = default_model
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or ""
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._client:
            kwargs: dict[str, Any] = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def stream(
        self,
        prompt: str,
        history: list[Message],
        tools: list[ToolDefinition],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming chat; yields text deltas, raw tool-call fragments, and usage."""
        client = self._get_client()
        params: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": chat_messages(prompt, history),
            "stream": True,
            "stream_options": {"include_usage": True},
            **kwargs,
        }
        if max_tokens:
            params["max_tokens"] = max_tokens
        if tools:
            params["tools"] = [t.to_tool_schema() for t in tools]
            params["tool_choice"] = "auto"

        stream = await client.chat.completions.create(**params)
        async for chunk in stream:
            usage = getattr(chunk, "usage", None)
            if usage is not None:
                yield StreamEvent(
                    usage=TokenUsage(
                        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                    )
                )
            for choice in chunk.choices or []:
                delta = getattr(choice, "delta", None)
                if delta is None:
                    continue
                if getattr(delta, "content", None):
                    yield StreamEvent(text=delta.content)
                for tc in getattr(delta, "tool_calls", None) or []:
                    fn = getattr(tc, "function", None)
                    yield StreamEvent(
                        tool_call=ToolCallFragment(
                            index=getattr(tc, "index", 0) or 0,
                            id=getattr(tc, "id", "") or "",
                            name=(getattr(fn, "name", "") or "") if fn is not None else "",
                            arguments=(getattr(fn, "arguments", "") or "") if fn is not None else "",
                        )
                    )
