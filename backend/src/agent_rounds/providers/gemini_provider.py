"""Google Gemini LLM provider implementation."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types as genai_types

from ..models import Message, ToolDefinition
from .base import LLMProvider, StreamEvent, TokenUsage, ToolCallFragment


class GeminiProvider(LLMProvider):
    """Gemini provider using the google-genai SDK."""

    def __init__(
        self,
        default_model: str = "gemini-2.5-flash",
        api_key: str | None = None,
    ) -> None:
        self.default_model = default_model
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY") or os.getenv(
            "GEMINI_API_KEY",
            "",
        )
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if not self._client:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options={"api_version": "v1beta"},
            )
        return self._client

    @staticmethod
    def _to_gemini_contents(history: list[Message]) -> list[genai_types.Content]:
        """Convert messages into Gemini contents (assistant turns become ``model``)."""
        contents: list[genai_types.Content] = []
        for m in history:
            if not m.content:
                continue
            role = "model" if m.chat_role == "assistant" else "user"
            # Construct Part directly to avoid signature issues with from_text()
            contents.append(genai_types.Content(role=role, parts=[genai_types.Part(text=m.content)]))
        return contents

    @staticmethod
    def _to_gemini_tools(tools: list[ToolDefinition]) -> list[genai_types.Tool] | None:
        """Convert tool definitions into Gemini Tool declarations."""
        declarations = [
            genai_types.FunctionDeclaration(
                name=t.name,
                description=t.description,
                parameters=t.parameters or None,
            )
            for t in tools
        ]
        if not declarations:
            return None
        return [genai_types.Tool(function_declarations=declarations)]

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
        """Streaming chat for Gemini; function calls arrive whole, one fragment each."""
        client = self._get_client()
        config_args: dict[str, Any] = dict(kwargs)
        gemini_tools = self._to_gemini_tools(tools)
        if gemini_tools:
            config_args["tools"] = gemini_tools
            config_args["tool_config"] = genai_types.ToolConfig(
                function_calling_config=genai_types.FunctionCallingConfig(
                    mode=genai_types.FunctionCallingConfigMode.AUTO
                )
            )
        if prompt:
            config_args["system_instruction"] = prompt
        if max_tokens:
            config_args["max_output_tokens"] = max_tokens

        stream = await client.aio.models.generate_content_stream(
            model=model or self.default_model,
            contents=self._to_gemini_contents(history),
            config=genai_types.GenerateContentConfig(**config_args),
        )

        tool_index = 0
        usage: TokenUsage | None = None
        async for chunk in stream:
            for cand in getattr(chunk, "candidates", None) or []:
                content = getattr(cand, "content", None)
                for part in getattr(content, "parts", None) or []:
                    if getattr(part, "text", None):
                        yield StreamEvent(text=part.text)
                    fc = getattr(part, "function_call", None)
                    if fc:
                        yield StreamEvent(
                            tool_call=ToolCallFragment(
                                index=tool_index,
                                id=f"call_{fc.name}_{tool_index}",
                                name=fc.name or "",
                                arguments=json.dumps(dict(fc.args) if fc.args else {}),
                            )
                        )
                        tool_index += 1
            meta = getattr(chunk, "usage_metadata", None)
            if meta is not None:
                # Gemini reports running totals; keep the last one.
                usage = TokenUsage(
                    input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
                    output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
                )
        if usage is not None:
            yield StreamEvent(usage=usage)
