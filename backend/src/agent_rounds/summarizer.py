"""Conversation summarization for shrinking the working history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .config import CONTEXT_SUMMARY_THRESHOLD
from .control import Usage
from .executor import SingleRoundExecutor
from .models import (
    AgentMessage,
    ExecutionParameters,
    Message,
    SummaryMessage,
    SummaryMetadata,
    new_message_id,
)

logger = logging.getLogger(__name__)

# Chars per token estimate
CHARS_PER_TOKEN = 4

SUMMARIZER_INSTRUCTIONS = """

## Summarization Instructions

You are a conversation summarizer. Compress the conversation so far into key points
while preserving important information and context: what the user asked for, what was
decided, which tools were used and with what outcome, and what is still open. Be
concise. Output plain text only and do not call any tools."""


def estimate_tokens(messages: list[Message]) -> int:
    """Rough token count for a message list."""
    total = 0
    for m in messages:
        total += len(m.content or "") // CHARS_PER_TOKEN
        total += 50  # overhead per message (role, structure)
    return total


def should_summarize(
    messages: list[Message],
    context_window: int,
    threshold: float = CONTEXT_SUMMARY_THRESHOLD,
) -> bool:
    """True once the estimated history size reaches ``threshold`` of the window."""
    if not messages:
        return False
    return estimate_tokens(messages) >= int(context_window * threshold)


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    message_count: int
    time_span: tuple[datetime, datetime] | None
    usage: Usage


def _time_span(messages: list[Message]) -> tuple[datetime, datetime] | None:
    if not messages:
        return None
    stamps = [m.timestamp for m in messages]
    return min(stamps), max(stamps)


class ConversationSummarizer:
    """Runs one tool-free round that condenses the given history."""

    def __init__(self, executor: SingleRoundExecutor) -> None:
        self.executor = executor

    async def summarize(self, params: ExecutionParameters) -> SummaryResult:
        messages = list(params.messages)
        result = await self.executor.run(
            ExecutionParameters(prompt=params.prompt + SUMMARIZER_INSTRUCTIONS, messages=messages)
        ).run_to_completion()
        summary = "\n".join(m.content for m in result.messages if isinstance(m, AgentMessage)).strip()
        logger.info(
            "Summarized %d messages into %d chars (%d output tokens)",
            len(messages),
            len(summary),
            result.usage.output_tokens,
        )
        return SummaryResult(
            summary=summary,
            message_count=len(messages),
            time_span=_time_span(messages),
            usage=result.usage,
        )


def summary_message(result: SummaryResult, sender: str = "summarizer") -> SummaryMessage:
    """The ``summary`` message to install as replacement history."""
    start, end = result.time_span or (None, None)
    content = (
        f"[Summary of earlier conversation]\n{result.summary}"
        if result.summary
        else "[Earlier messages omitted.]"
    )
    return SummaryMessage(
        id=new_message_id("summary"),
        content=content,
        sender=sender,
        metadata=SummaryMetadata(message_count=result.message_count, start=start, end=end),
    )
