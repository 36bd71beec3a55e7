"""Agent configuration: paths and defaults."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from main_config import (
    DB_DIR as _DB_DIR,
    DEFAULT_SYSTEM_PROMPT_PATH as _DEFAULT_SYSTEM_PROMPT_PATH,
    MESSAGES_DB_PATH as _MESSAGES_DB_PATH,
    MESSAGES_DIR as _MESSAGES_DIR,
    SETTINGS_DIR as _SETTINGS_DIR,
    SETTINGS_PATH as _SETTINGS_PATH,
    WORKSPACE_DIR as _WORKSPACE_DIR,
)

load_dotenv()

# Path objects for use in this package (main_config uses os.path strings)
DB_DIR = Path(_DB_DIR)
SETTINGS_DIR = Path(_SETTINGS_DIR)
MESSAGES_DIR = Path(_MESSAGES_DIR)
SETTINGS_PATH = Path(_SETTINGS_PATH)
MESSAGES_DB_PATH = Path(_MESSAGES_DB_PATH)
WORKSPACE_DIR = Path(os.getenv("AGENT_WORKSPACE_DIR") or _WORKSPACE_DIR)
DEFAULT_SYSTEM_PROMPT_PATH = Path(_DEFAULT_SYSTEM_PROMPT_PATH)

DEFAULT_MODEL = "openai:gpt-4.1-nano"
DEFAULT_MAX_ITERATIONS = 25
DEFAULT_MAX_TOKENS = 4096
DEFAULT_CONTEXT_WINDOW = 128000
CONTEXT_SUMMARY_THRESHOLD = 0.8


class AgentModelConfig(BaseModel):
    """Model settings for one agent worker."""

    model: str = Field(
        default=DEFAULT_MODEL,
        description="Model in 'provider:model' format; bare names are served by Ollama.",
    )
    api_key: str | None = Field(default=None, description="Overrides the provider's environment key.")
    base_url: str | None = Field(default=None, description="Custom endpoint for OpenAI-compatible or Ollama servers.")
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)


def ensure_dirs() -> None:
    """Create db, settings, and messages directories if they do not exist."""
    DB_DIR.mkdir(parents=True, exist_ok=True)
    SETTINGS_DIR.mkdir(parents=True, exist_ok=True)
    MESSAGES_DIR.mkdir(parents=True, exist_ok=True)
