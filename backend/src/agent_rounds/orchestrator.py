"""Iteration orchestrator: repeated single rounds with shared working history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .config import DEFAULT_MAX_ITERATIONS
from .control import (
    CONTINUE,
    CompletionReason,
    ControlSignal,
    Execution,
    ExecutionResult,
    StepSource,
    Usage,
)
from .executor import SingleRoundExecutor
from .models import (
    ErrorMessage,
    ExecutionParameters,
    Message,
    UserInputMessage,
    UserMessage,
    new_message_id,
)

logger = logging.getLogger(__name__)

ITERATION_INSTRUCTIONS = """

## Iterative Mode Instructions

You are working in iterative mode: this is iteration {iteration} of {max_iterations}.
Each iteration you may reply and call tools; the results are shown to you in the
next iteration. Keep working toward the goal step by step. When the task is done,
give your final answer without calling any more tools and the run will end."""

FINAL_ITERATION_INSTRUCTIONS = """

FINAL ITERATION: this is your last chance to respond. Do not start new work or call
tools. Summarize what was done and give your final answer now."""


def frame_prompt(base: str, iteration: int, max_iterations: int) -> str:
    """Base prompt plus the iteration framing for round ``iteration`` (1-indexed)."""
    framed = base + ITERATION_INSTRUCTIONS.format(iteration=iteration, max_iterations=max_iterations)
    if iteration >= max_iterations:
        framed += FINAL_ITERATION_INSTRUCTIONS
    return framed


@dataclass
class _HistoryChanges:
    """Mutations requested by the controls received during one round."""

    queued: list[Message] = field(default_factory=list)
    replacement: list[Message] | None = None
    responses: list[Message] = field(default_factory=list)

    def collect(self, control: ControlSignal) -> None:
        self.queued.extend(control.queued_messages)
        if control.replacement_history is not None:
            self.replacement = list(control.replacement_history)
        if control.response_message is not None:
            self.responses.append(control.response_message)

    def apply(self, history: list[Message], produced: list[Message], sender: str) -> list[Message]:
        """History for the next round.

        A replacement takes the place of the old history and any queued
        messages; this round's output and response payloads follow it either way.
        """
        if self.replacement is not None:
            updated = list(self.replacement)
        else:
            updated = history + self.queued
        updated.extend(produced)
        for response in self.responses:
            text = _response_text(response)
            if text:
                updated.append(UserMessage(id=new_message_id("user"), content=text, sender=sender))
        return updated


def _response_text(response: Message) -> str | None:
    if isinstance(response, UserMessage):
        return response.content or None
    if isinstance(response, UserInputMessage):
        return response.metadata.input or None
    return None


def _made_progress(result: ExecutionResult) -> bool:
    """Whether a round produced output or used a tool.

    The error message of a failed backend call does not count as output.
    """
    if result.usage.tools_used:
        return True
    if result.backend_failed:
        return any(not isinstance(m, ErrorMessage) for m in result.messages)
    return bool(result.messages)


class IterationOrchestrator:
    """Runs an executor round after round until the model settles.

    A run stops after ``max_iterations`` rounds, after a round that produced
    nothing and used no tools, or as soon as a round aborts.
    """

    def __init__(self, executor: SingleRoundExecutor, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.executor = executor
        self.max_iterations = max_iterations

    @property
    def name(self) -> str:
        return self.executor.name

    def run(self, params: ExecutionParameters, max_iterations: int | None = None) -> Execution:
        limit = self.max_iterations if max_iterations is None else max_iterations
        if limit < 1:
            raise ValueError("max_iterations must be at least 1")
        return Execution(lambda control: self._run(params, limit, control), name=f"iterations:{self.name}")

    async def _run(self, params: ExecutionParameters, max_iterations: int, control: ControlSignal) -> StepSource:
        history = list(params.messages)
        produced: list[Message] = []
        usage = Usage()
        reason = CompletionReason.COMPLETED

        for iteration in range(1, max_iterations + 1):
            logger.info("%s: starting iteration %d/%d", self.name, iteration, max_iterations)
            round_params = ExecutionParameters(
                prompt=frame_prompt(params.prompt, iteration, max_iterations),
                messages=list(history),
            )
            changes = _HistoryChanges()
            changes.collect(control)
            execution = self.executor.run(round_params)
            step = await execution.resume(control)
            while not step.done:
                control = yield step.message
                changes.collect(control)
                step = await execution.resume(control)
            # mutations are consumed once; the next round starts clean
            control = CONTINUE

            result = step.result
            produced.extend(result.messages)
            usage += result.usage
            if result.aborted:
                logger.info("%s: aborted in iteration %d", self.name, iteration)
                reason = CompletionReason.ABORTED
                break

            history = changes.apply(history, result.messages, self.name)
            if not _made_progress(result):
                logger.info("%s: iteration %d produced nothing, stopping", self.name, iteration)
                break

        logger.info(
            "%s: run finished (%s), %d messages, %d tools used",
            self.name,
            reason.value,
            len(produced),
            usage.tools_used,
        )
        yield ExecutionResult(messages=produced, completion_reason=reason, usage=usage)
