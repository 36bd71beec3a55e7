"""LLM providers: pluggable backends for the round executor."""

from .base import LLMProvider, StreamEvent, TokenUsage, ToolCallFragment
from .gemini_provider import GeminiProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "LLMProvider",
    "StreamEvent",
    "TokenUsage",
    "ToolCallFragment",
    "OllamaProvider",
    "OpenAIProvider",
    "GeminiProvider",
]
