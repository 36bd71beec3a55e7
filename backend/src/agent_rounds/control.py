"""Control channel: signals, results, and the resumable execution wrapper.

Every long-running operation (a tool call, a permission prompt, a model round,
a multi-round run) is an :class:`Execution`. The caller drives it with
``await execution.resume(control)``; each call returns a :class:`Step` holding
either the next produced message (the computation is suspended and waits for
the next control) or the terminal :class:`ExecutionResult`.

Internally an execution wraps an async generator that yields ``Message``
values and, as its final item, one ``ExecutionResult``. The generator receives
each control through ``asend``; the first control is passed to the factory
that creates it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .models import Message, collapse_by_id


class ProtocolError(RuntimeError):
    """Raised when an execution is resumed out of turn or after it finished."""


class ControlKind(str, Enum):
    CONTINUE = "continue"
    ABORT = "abort"


class CompletionReason(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ControlSignal:
    """Sent into a suspended execution to resume it.

    ``queued_messages`` are appended to the working history between rounds;
    ``replacement_history`` replaces it wholesale and wins when both are set.
    """

    kind: ControlKind = ControlKind.CONTINUE
    response_message: Message | None = None
    queued_messages: tuple[Message, ...] = ()
    replacement_history: tuple[Message, ...] | None = None

    @property
    def is_abort(self) -> bool:
        return self.kind == ControlKind.ABORT

    @classmethod
    def respond(cls, message: Message) -> ControlSignal:
        return cls(response_message=message)

    @classmethod
    def queue(cls, messages: list[Message]) -> ControlSignal:
        return cls(queued_messages=tuple(messages))

    @classmethod
    def replace_history(cls, messages: list[Message]) -> ControlSignal:
        return cls(replacement_history=tuple(messages))


CONTINUE = ControlSignal()
ABORT = ControlSignal(kind=ControlKind.ABORT)


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    tools_used: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            tools_used=self.tools_used + other.tools_used,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal value of an execution."""

    messages: list[Message] = field(default_factory=list)
    completion_reason: CompletionReason = CompletionReason.COMPLETED
    usage: Usage = field(default_factory=Usage)
    # set when the model backend failed and its error message ended the round
    backend_failed: bool = False

    @property
    def aborted(self) -> bool:
        return self.completion_reason == CompletionReason.ABORTED

    @classmethod
    def abort(cls, messages: list[Message] | None = None, usage: Usage | None = None) -> ExecutionResult:
        return cls(
            messages=collapse_by_id(list(messages or [])),
            completion_reason=CompletionReason.ABORTED,
            usage=usage or Usage(),
        )


@dataclass(frozen=True)
class Step:
    """What one ``resume`` produced: a message, or the final result."""

    message: Message | None = None
    result: ExecutionResult | None = None

    @property
    def done(self) -> bool:
        return self.result is not None


StepSource = AsyncGenerator[Union[Message, ExecutionResult], ControlSignal]


class Execution:
    """A resumable computation producing messages and one final result."""

    def __init__(self, start: Callable[[ControlSignal], StepSource], name: str = "execution") -> None:
        self.name = name
        self._start = start
        self._source: StepSource | None = None
        self._in_flight = False
        self._result: ExecutionResult | None = None

    @property
    def done(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> ExecutionResult | None:
        return self._result

    async def resume(self, control: ControlSignal | None = None) -> Step:
        """Advance to the next suspension point or to completion."""
        if self._result is not None:
            raise ProtocolError(f"{self.name}: resumed after it finished")
        if self._in_flight:
            raise ProtocolError(f"{self.name}: resumed while a previous resume is still running")
        control = control or CONTINUE
        self._in_flight = True
        try:
            if self._source is None:
                self._source = self._start(control)
                item = await self._source.__anext__()
            else:
                item = await self._source.asend(control)
        except StopAsyncIteration:
            raise ProtocolError(f"{self.name}: ended without a result") from None
        finally:
            self._in_flight = False

        if isinstance(item, ExecutionResult):
            self._result = item
            await self._source.aclose()
            return Step(result=item)
        return Step(message=item)

    async def run_to_completion(
        self,
        respond: Callable[[Message], Awaitable[ControlSignal]] | None = None,
    ) -> ExecutionResult:
        """Drive to the end, answering each message with ``respond`` (default: continue)."""
        step = await self.resume(CONTINUE)
        while not step.done:
            control = await respond(step.message) if respond is not None else CONTINUE
            step = await self.resume(control)
        return step.result

    async def aclose(self) -> None:
        """Release the underlying computation without waiting for a result."""
        if self._source is not None:
            await self._source.aclose()
