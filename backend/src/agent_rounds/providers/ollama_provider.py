"""Ollama LLM provider implementation."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from ollama import AsyncClient

from ..models import Message, ToolDefinition
from .base import LLMProvider, StreamEvent, TokenUsage, ToolCallFragment, chat_messages


class OllamaProvider(LLMProvider):
    """Ollama-backed LLM provider.

    Ollama delivers each tool call whole, so every call becomes a single
    fragment with JSON-encoded arguments.
    """

    def __init__(self, default_model: str = "llama3.2", base_url: str | None = None):
        self.default_model = default_model
        self.base_url = base_url or "http://localhost:11434"

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
        client = AsyncClient(host=self.base_url)
        options = dict(kwargs.pop("options", None) or {})
        if max_tokens:
            options["num_predict"] = max_tokens
        tool_index = 0

        stream = await client.chat(
            model=model or self.default_model,
            messages=chat_messages(prompt, history),
            tools=[t.to_tool_schema() for t in tools] if tools else None,
            stream=True,
            options=options or None,
        )
        async for chunk in stream:
            msg = getattr(chunk, "message", None)
            if msg is not None:
                delta = getattr(msg, "content", None) or ""
                if delta:
                    yield StreamEvent(text=delta)
                for tc in getattr(msg, "tool_calls", None) or []:
                    fn = getattr(tc, "function", None)
                    if fn is None:
                        continue
                    args = getattr(fn, "arguments", None)
                    yield StreamEvent(
                        tool_call=ToolCallFragment(
                            index=tool_index,
                            id=f"call_{tool_index}",
                            name=getattr(fn, "name", "") or "",
                            arguments=args if isinstance(args, str) else json.dumps(args or {}),
                        )
                    )
                    tool_index += 1
            if getattr(chunk, "done", False):
                yield StreamEvent(
                    usage=TokenUsage(
                        input_tokens=getattr(chunk, "prompt_eval_count", 0) or 0,
                        output_tokens=getattr(chunk, "eval_count", 0) or 0,
                    )
                )
