"""Tool protocol, toolbox dispatch, and built-in tools."""

from __future__ import annotations

import asyncio
import difflib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .control import ControlSignal, Execution, ExecutionResult, StepSource, Usage
from .models import (
    FileDiff,
    FileOperationMessage,
    FileOperationMetadata,
    Message,
    ToolDefinition,
    ToolInvocationRequest,
    ToolMessage,
    ToolMetadata,
    ToolResult,
    TrustLevel,
    error_message,
    new_message_id,
)

logger = logging.getLogger(__name__)


class ToolCatalog(Protocol):
    """Anything that lists tool definitions and runs invocations as executions."""

    @property
    def definitions(self) -> list[ToolDefinition]:
        ...

    def call(self, request: ToolInvocationRequest) -> Execution:
        ...


class BaseTool(ABC):
    """Base class for agent tools."""

    trust_level: TrustLevel = TrustLevel.NONE

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for parameters."""
        ...

    @abstractmethod
    async def execute(self, params: dict[str, Any]) -> ToolResult:
        ...

    def permission_prompt(self, params: dict[str, Any]) -> str:
        """Question shown to the human before a gated call runs."""
        return f"Allow agent to execute {self.name}?"

    def result_message(self, params: dict[str, Any], result: ToolResult) -> Message:
        """Render a result as the message returned to the model."""
        if not result.success:
            return error_message(
                self.name,
                f"Error: {result.error}",
                error=result.error or "tool failed",
            )
        return ToolMessage(
            id=new_message_id(self.name),
            content=result.content or "",
            sender=self.name,
            metadata=ToolMetadata(tool_name=self.name, parameters=params),
        )

    def to_def(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            trust_level=self.trust_level,
        )


class Toolbox:
    """Registry of tools; each call runs as a one-step execution."""

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self._tools: dict[str, BaseTool] = {t.name: t for t in tools or []}

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [t.to_def() for t in self._tools.values()]

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def add(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def call(self, request: ToolInvocationRequest) -> Execution:
        return Execution(lambda control: self._call(request, control), name=f"tool:{request.name}")

    async def _call(self, request: ToolInvocationRequest, control: ControlSignal) -> StepSource:
        if control.is_abort:
            yield ExecutionResult.abort()
            return

        tool = self._tools.get(request.name)
        if tool is None:
            message = error_message("toolbox", f"Unknown tool: {request.name}", error="unknown_tool")
            control = yield message
            if control.is_abort:
                yield ExecutionResult.abort([message])
                return
            yield ExecutionResult(messages=[message])
            return

        try:
            result = await tool.execute(request.parameters)
        except Exception as e:
            logger.warning("Tool %s failed: %s", request.name, e)
            result = ToolResult(success=False, error=str(e))
        message = tool.result_message(request.parameters, result)
        usage = Usage(tools_used=1)

        control = yield message
        if control.is_abort:
            yield ExecutionResult.abort([message], usage)
            return
        yield ExecutionResult(messages=[message], usage=usage)


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------


class GetTimeTool(BaseTool):
    """Returns current UTC time as ISO string."""

    @property
    def name(self) -> str:
        return "get_time"

    @property
    def description(self) -> str:
        return "Get the current UTC date and time in ISO format."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        now = datetime.now(timezone.utc).isoformat()
        return ToolResult(success=True, content=now)


class _WorkspaceTool(BaseTool):
    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    def _resolve(self, relative: str) -> Path:
        path = (self._root / relative).resolve()
        if path != self._root and self._root not in path.parents:
            raise ValueError(f"Path escapes the workspace: {relative}")
        return path


class ReadFileTool(_WorkspaceTool):
    """Reads a UTF-8 text file inside the workspace."""

    trust_level = TrustLevel.LOOSE

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read a text file from the workspace. Paths are relative to the workspace root."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "File path relative to the workspace"}},
            "required": ["path"],
        }

    def permission_prompt(self, params: dict[str, Any]) -> str:
        return f"Allow agent to read {params.get('path', '?')}?"

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        relative = (params.get("path") or "").strip()
        if not relative:
            return ToolResult(success=False, error="path is required")
        path = self._resolve(relative)
        if not path.is_file():
            return ToolResult(success=False, error=f"File not found: {relative}")
        text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return ToolResult(success=True, content=text, metadata={"path": relative})


class WriteFileTool(_WorkspaceTool):
    """Writes a UTF-8 text file inside the workspace and reports a line diff."""

    trust_level = TrustLevel.STRICT

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Create or overwrite a text file in the workspace with the given content."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace"},
                "content": {"type": "string", "description": "Full new file content"},
            },
            "required": ["path", "content"],
        }

    def permission_prompt(self, params: dict[str, Any]) -> str:
        return f"Allow agent to write {params.get('path', '?')}?"

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        relative = (params.get("path") or "").strip()
        if not relative:
            return ToolResult(success=False, error="path is required")
        content = params.get("content")
        if not isinstance(content, str):
            return ToolResult(success=False, error="content must be a string")
        path = self._resolve(relative)
        old = await asyncio.to_thread(_replace_text, path, content)
        diffs = line_diffs(old, content)
        changed = sum(1 for d in diffs if d.type != "unchanged")
        return ToolResult(
            success=True,
            content=f"{relative} successfully written ({changed} changed lines)",
            metadata={"path": relative, "diffs": diffs},
        )

    def result_message(self, params: dict[str, Any], result: ToolResult) -> Message:
        if not result.success:
            return super().result_message(params, result)
        return FileOperationMessage(
            id=new_message_id(self.name),
            content=result.content or "",
            sender=self.name,
            metadata=FileOperationMetadata(
                file_path=result.metadata["path"],
                diffs=result.metadata["diffs"],
            ),
        )


def _replace_text(path: Path, content: str) -> str:
    """Write ``content`` to ``path`` and return what the file held before."""
    old = path.read_text(encoding="utf-8") if path.is_file() else ""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return old


def line_diffs(old: str, new: str) -> list[FileDiff]:
    """Line-level diff of two texts; line numbers refer to the new text."""
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    diffs: list[FileDiff] = []
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for offset in range(j2 - j1):
                diffs.append(FileDiff(line_number=j1 + offset + 1, type="unchanged", new_text=new_lines[j1 + offset]))
        elif tag == "replace":
            for offset in range(max(i2 - i1, j2 - j1)):
                old_text = old_lines[i1 + offset] if i1 + offset < i2 else None
                new_text = new_lines[j1 + offset] if j1 + offset < j2 else None
                if old_text is None:
                    kind = "added"
                elif new_text is None:
                    kind = "removed"
                else:
                    kind = "modified"
                line_number = j1 + min(offset, j2 - j1 - 1) + 1
                diffs.append(FileDiff(line_number=line_number, type=kind, old_text=old_text, new_text=new_text))
        elif tag == "delete":
            for offset in range(i2 - i1):
                diffs.append(FileDiff(line_number=j1 + 1, type="removed", old_text=old_lines[i1 + offset]))
        elif tag == "insert":
            for offset in range(j2 - j1):
                diffs.append(FileDiff(line_number=j1 + offset + 1, type="added", new_text=new_lines[j1 + offset]))
    return diffs


def get_default_tools(workspace: Path) -> list[BaseTool]:
    """Return the built-in tool list bound to a workspace directory."""
    return [
        GetTimeTool(),
        ReadFileTool(workspace),
        WriteFileTool(workspace),
    ]
