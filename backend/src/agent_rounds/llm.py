"""Provider resolution from ``provider:model`` strings."""

from __future__ import annotations

from .config import DEFAULT_MODEL, AgentModelConfig
from .providers import GeminiProvider, LLMProvider, OllamaProvider, OpenAIProvider

_PROVIDER_ALIASES = {
    "openai": "openai",
    "gemini": "gemini",
    "google": "gemini",
    "ollama": "ollama",
}

_provider_cache: dict[tuple[str, str | None, str | None], LLMProvider] = {}


def parse_model(model: str | None) -> tuple[str, str]:
    """
    Split a model string into (provider_name, model_name).

    Expected formats:
    - "provider:model_name" (e.g. "openai:gpt-4.1-nano", "gemini:gemini-2.5-flash")
    - anything else (e.g. "llama3.2", "qwen2.5:7b") → treated as an Ollama model.
    """
    effective = (model or DEFAULT_MODEL).strip()
    if ":" in effective:
        prefix, raw_model = effective.split(":", 1)
        provider_name = _PROVIDER_ALIASES.get(prefix.strip().lower())
        if provider_name is not None:
            return provider_name, raw_model.strip()
    return "ollama", effective


def get_provider(config: AgentModelConfig) -> tuple[LLMProvider, str]:
    """Resolve (cached) provider and underlying model name for a model config."""
    provider_name, model_name = parse_model(config.model)
    key = (provider_name, config.api_key, config.base_url)
    if key not in _provider_cache:
        if provider_name == "openai":
            _provider_cache[key] = OpenAIProvider(api_key=config.api_key, base_url=config.base_url)
        elif provider_name == "gemini":
            _provider_cache[key] = GeminiProvider(api_key=config.api_key)
        else:
            _provider_cache[key] = OllamaProvider(base_url=config.base_url)
    return _provider_cache[key], model_name
