"""Single-round executor: one streamed model exchange plus its tool calls."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone

from .config import DEFAULT_MAX_TOKENS
from .control import ControlSignal, Execution, ExecutionResult, StepSource, Usage
from .models import (
    AgentMessage,
    ExecutionParameters,
    Message,
    ToolInvocationRequest,
    collapse_by_id,
    error_message,
    new_message_id,
)
from .providers import LLMProvider, ToolCallFragment
from .tools import ToolCatalog, Toolbox

logger = logging.getLogger(__name__)


@dataclass
class _ToolCallBuffer:
    id: str = ""
    name: str = ""
    arguments: str = ""

    def extend(self, fragment: ToolCallFragment) -> None:
        if fragment.id and not self.id:
            self.id = fragment.id
        if fragment.name:
            self.name = fragment.name
        self.arguments += fragment.arguments


def parse_tool_calls(buffers: dict[int, _ToolCallBuffer]) -> list[ToolInvocationRequest]:
    """Turn accumulated fragments into requests, in index order.

    Calls without a name, or whose arguments are not a JSON object, are
    dropped. An empty argument string means no arguments.
    """
    requests: list[ToolInvocationRequest] = []
    for index in sorted(buffers):
        buf = buffers[index]
        if not buf.name:
            logger.warning("Dropping tool call %d without a name", index)
            continue
        raw = buf.arguments.strip() or "{}"
        try:
            params = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping tool call %s: arguments are not valid JSON: %r", buf.name, raw[:200])
            continue
        if not isinstance(params, dict):
            logger.warning("Dropping tool call %s: arguments are not an object", buf.name)
            continue
        requests.append(ToolInvocationRequest(name=buf.name, parameters=params))
    return requests


class SingleRoundExecutor:
    """Conducts one exchange with the model backend and resolves its tool calls.

    Text fragments are yielded as one growing ``agent`` message (same id,
    cumulative content). Tool calls are dispatched after the stream ends,
    through ``tools`` (normally a :class:`PermissionGate`), whose pauses are
    forwarded to the caller unchanged.
    """

    def __init__(
        self,
        name: str,
        provider: LLMProvider,
        tools: ToolCatalog | None = None,
        *,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.name = name
        self.provider = provider
        self.tools: ToolCatalog = tools if tools is not None else Toolbox()
        self.model = model
        self.max_tokens = max_tokens

    def run(self, params: ExecutionParameters) -> Execution:
        return Execution(lambda control: self._run(params, control), name=f"round:{self.name}")

    def _text_message(self, message_id: str, text: str, started: datetime) -> AgentMessage:
        return AgentMessage(id=message_id, content=text, sender=self.name, timestamp=started)

    async def _run(self, params: ExecutionParameters, control: ControlSignal) -> StepSource:
        if control.is_abort:
            yield ExecutionResult.abort()
            return

        # same id for every fragment so the caller knows they are one message
        message_id = new_message_id(self.name)
        started = datetime.now(timezone.utc)
        text = ""
        buffers: dict[int, _ToolCallBuffer] = {}
        usage = Usage()
        messages: list[Message] = []

        try:
            stream = self.provider.stream(
                params.prompt,
                list(params.messages),
                self.tools.definitions,
                model=self.model,
                max_tokens=self.max_tokens,
            )
            async with aclosing(stream):
                async for event in stream:
                    if event.usage is not None:
                        usage += Usage(
                            input_tokens=event.usage.input_tokens,
                            output_tokens=event.usage.output_tokens,
                        )
                    if event.tool_call is not None:
                        buffers.setdefault(event.tool_call.index, _ToolCallBuffer()).extend(event.tool_call)
                    if event.text:
                        text += event.text
                        control = yield self._text_message(message_id, text, started)
                        if control.is_abort:
                            logger.info("Round for %s aborted while streaming", self.name)
                            yield ExecutionResult.abort([self._text_message(message_id, text, started)], usage)
                            return
        except Exception as e:
            logger.warning("Model backend failed for %s: %s", self.name, e)
            if text:
                messages.append(self._text_message(message_id, text, started))
            failure = error_message(
                self.name,
                f"Model backend error: {e}",
                error=type(e).__name__,
                detail=str(e),
            )
            messages.append(failure)
            control = yield failure
            if control.is_abort:
                yield ExecutionResult.abort(messages, usage)
                return
            yield ExecutionResult(messages=messages, usage=usage, backend_failed=True)
            return

        if text:
            messages.append(self._text_message(message_id, text, started))

        for request in parse_tool_calls(buffers):
            logger.debug("Dispatching tool %s for %s", request.name, self.name)
            execution = self.tools.call(request)
            step = await execution.resume(control)
            while not step.done:
                control = yield step.message
                step = await execution.resume(control)
            result = step.result
            messages.extend(result.messages)
            usage += result.usage
            if result.aborted:
                logger.info("Round for %s aborted during tool %s", self.name, request.name)
                yield ExecutionResult.abort(messages, usage)
                return

        logger.debug(
            "Round for %s finished: %d messages, %d tools used",
            self.name,
            len(messages),
            usage.tools_used,
        )
        yield ExecutionResult(messages=collapse_by_id(messages), usage=usage)
