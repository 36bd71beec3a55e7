"""Data models for messages, tools, and execution parameters."""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def new_message_id(prefix: str) -> str:
    """Return an id like ``<prefix>-<millis>-<random>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class BaseMessage(BaseModel):
    """Fields shared by every message variant.

    Messages are immutable. A later message with the same ``id`` supersedes an
    earlier one (progressive update), so stores must upsert by ``id``.
    """

    model_config = ConfigDict(frozen=True)

    # Role used when the message is replayed to a model backend.
    chat_role: ClassVar[str] = "user"

    id: str
    content: str = ""
    sender: str
    timestamp: datetime = Field(default_factory=_utc_now)


class UserMessage(BaseMessage):
    type: Literal["user"] = "user"


class SystemMessage(BaseMessage):
    type: Literal["system"] = "system"


class AgentMessage(BaseMessage):
    chat_role: ClassVar[str] = "assistant"

    type: Literal["agent"] = "agent"


class ToolMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolMessage(BaseMessage):
    type: Literal["tool"] = "tool"
    metadata: ToolMetadata


class ErrorMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: str
    detail: str | None = None


class ErrorMessage(BaseMessage):
    type: Literal["error"] = "error"
    metadata: ErrorMetadata


class PromptMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str


class PromptMessage(BaseMessage):
    """Sent by the system to ask the user for free text."""

    type: Literal["prompt"] = "prompt"
    metadata: PromptMetadata


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str


class ChoiceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    choices: list[Choice]


class ChoiceMessage(BaseMessage):
    """Sent by the system to ask the user to pick one of ``metadata.choices``."""

    type: Literal["choice"] = "choice"
    metadata: ChoiceMetadata


class UserChoiceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    choice: int
    choices: list[Choice]


class UserChoiceMessage(BaseMessage):
    """Sent by the user; ``metadata.choice`` indexes ``metadata.choices``."""

    type: Literal["user-choice"] = "user-choice"
    metadata: UserChoiceMetadata

    @property
    def selected_value(self) -> str | None:
        """Value of the selected choice, or None when the index is out of range."""
        index = self.metadata.choice
        if 0 <= index < len(self.metadata.choices):
            return self.metadata.choices[index].value
        return None


class UserInputMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    input: str


class UserInputMessage(BaseMessage):
    type: Literal["user-input"] = "user-input"
    metadata: UserInputMetadata


class FileDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_number: int
    type: Literal["unchanged", "added", "removed", "modified"]
    old_text: str | None = None
    new_text: str | None = None


class FileOperationMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    diffs: list[FileDiff] = Field(default_factory=list)


class FileOperationMessage(BaseMessage):
    type: Literal["file_operation"] = "file_operation"
    metadata: FileOperationMetadata


class SummaryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_count: int
    start: datetime | None = None
    end: datetime | None = None


class SummaryMessage(BaseMessage):
    """Condensed replacement for the conversation that preceded it."""

    chat_role: ClassVar[str] = "assistant"

    type: Literal["summary"] = "summary"
    metadata: SummaryMetadata


Message = Annotated[
    Union[
        UserMessage,
        SystemMessage,
        AgentMessage,
        ToolMessage,
        ErrorMessage,
        PromptMessage,
        ChoiceMessage,
        UserChoiceMessage,
        UserInputMessage,
        FileOperationMessage,
        SummaryMessage,
    ],
    Field(discriminator="type"),
]

MessageType = Literal[
    "user",
    "system",
    "agent",
    "tool",
    "error",
    "prompt",
    "choice",
    "user-choice",
    "user-input",
    "file_operation",
    "summary",
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)
_MESSAGE_LIST_ADAPTER: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def parse_message(data: dict[str, Any] | str) -> Message:
    """Build the right message variant from a dict or JSON string."""
    if isinstance(data, str):
        return _MESSAGE_ADAPTER.validate_json(data)
    return _MESSAGE_ADAPTER.validate_python(data)


def parse_messages(data: list[dict[str, Any]]) -> list[Message]:
    return _MESSAGE_LIST_ADAPTER.validate_python(data)


def error_message(sender: str, content: str, error: str, detail: str | None = None) -> ErrorMessage:
    """Shortcut for an ``error`` message with a fresh id."""
    return ErrorMessage(
        id=new_message_id("error"),
        content=content,
        sender=sender,
        metadata=ErrorMetadata(error=error, detail=detail),
    )


def upsert_by_id(messages: list[Message], message: Message) -> None:
    """Replace the message with the same id in place, or append it."""
    for index, existing in enumerate(messages):
        if existing.id == message.id:
            messages[index] = message
            return
    messages.append(message)


def collapse_by_id(messages: list[Message]) -> list[Message]:
    """Apply upsert semantics to a sequence: one entry per id, latest content wins,
    first-seen position kept."""
    collapsed: list[Message] = []
    for message in messages:
        upsert_by_id(collapsed, message)
    return collapsed


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class TrustLevel(str, Enum):
    """How much permission gating a tool needs."""

    NONE = "none"
    LOOSE = "loose"
    STRICT = "strict"


@dataclass
class ToolDefinition:
    """Tool definition for the model backend and the permission gate."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema
    trust_level: TrustLevel = TrustLevel.NONE

    def to_tool_schema(self) -> dict[str, Any]:
        """Standard function-calling schema (OpenAI-style) for any LLM provider."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A parsed tool call from model output."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result of a single tool execution."""

    success: bool
    content: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass
class ExecutionParameters:
    """Prompt and prior conversation for one run."""

    prompt: str
    messages: list[Message] = field(default_factory=list)
