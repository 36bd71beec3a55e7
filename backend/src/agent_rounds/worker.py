"""Caller-facing agent worker: one round, or many."""

from __future__ import annotations

import logging

from .config import DEFAULT_MAX_ITERATIONS, DEFAULT_MAX_TOKENS, AgentModelConfig
from .control import Execution
from .executor import SingleRoundExecutor
from .llm import get_provider
from .models import ExecutionParameters
from .orchestrator import IterationOrchestrator
from .permissions import PermissionGate
from .providers import LLMProvider
from .settings_store import InMemorySettingsStore, SettingsStore
from .tools import Toolbox

logger = logging.getLogger(__name__)


class AgentWorker:
    """Wires the permission gate, the single-round executor and the orchestrator.

    Both entry points return an :class:`Execution`; nothing runs until the
    caller resumes it.
    """

    def __init__(
        self,
        name: str,
        provider: LLMProvider,
        toolbox: Toolbox | None = None,
        settings_store: SettingsStore | None = None,
        *,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.name = name
        self.toolbox = toolbox if toolbox is not None else Toolbox()
        self.settings_store = settings_store if settings_store is not None else InMemorySettingsStore()
        self.gate = PermissionGate(self.toolbox, self.settings_store)
        self.executor = SingleRoundExecutor(
            name,
            provider,
            self.gate,
            model=model,
            max_tokens=max_tokens,
        )
        self.orchestrator = IterationOrchestrator(self.executor, max_iterations=max_iterations)

    def run_single_round(self, params: ExecutionParameters) -> Execution:
        return self.executor.run(params)

    def run_iterations(self, params: ExecutionParameters, max_iterations: int | None = None) -> Execution:
        return self.orchestrator.run(params, max_iterations=max_iterations)


def create_worker(
    name: str,
    config: AgentModelConfig | None = None,
    toolbox: Toolbox | None = None,
    settings_store: SettingsStore | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> AgentWorker:
    """Build a worker whose provider is resolved from ``config.model``."""
    config = config or AgentModelConfig()
    provider, model_name = get_provider(config)
    logger.info("Creating worker %s with %s (%s)", name, model_name, type(provider).__name__)
    return AgentWorker(
        name,
        provider,
        toolbox,
        settings_store,
        model=model_name,
        max_tokens=config.max_tokens,
        max_iterations=max_iterations,
    )
