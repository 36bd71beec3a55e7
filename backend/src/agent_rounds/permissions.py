"""Tool permission gate: execute, deny, or ask the human first."""

from __future__ import annotations

import logging

from .control import ControlSignal, Execution, ExecutionResult, StepSource, Usage
from .models import (
    Choice,
    ChoiceMessage,
    ChoiceMetadata,
    Message,
    ToolDefinition,
    ToolInvocationRequest,
    TrustLevel,
    UserChoiceMessage,
    error_message,
    new_message_id,
)
from .settings_store import SettingsStore
from .tools import Toolbox

logger = logging.getLogger(__name__)

ALLOW = "allow"
ALWAYS_ALLOW = "always_allow"
DENY = "deny"
ALWAYS_DENY = "always_deny"

PERMISSION_CHOICES: list[Choice] = [
    Choice(label="Allow", value=ALLOW),
    Choice(label="Always Allow", value=ALWAYS_ALLOW),
    Choice(label="Deny", value=DENY),
    Choice(label="Always Deny", value=ALWAYS_DENY),
]

PERMISSION_DENIED = "Permission denied to execute tool"


def permission_choice_message(prompt: str, sender: str) -> ChoiceMessage:
    """The four-option question shown before a gated tool runs."""
    lines = [f"- {c.label} ({c.value})" for c in PERMISSION_CHOICES]
    return ChoiceMessage(
        id=new_message_id("permission-choice"),
        content="Asking user for choices:\n" + prompt + "\n" + "\n".join(lines),
        sender=sender,
        metadata=ChoiceMetadata(prompt=prompt, choices=list(PERMISSION_CHOICES)),
    )


def selected_permission(response: Message | None) -> str | None:
    """Permission value picked in a ``user-choice`` response, or None if unusable."""
    if not isinstance(response, UserChoiceMessage):
        return None
    value = response.selected_value
    if value in (ALLOW, ALWAYS_ALLOW, DENY, ALWAYS_DENY):
        return value
    return None


class PermissionGate:
    """Wraps a toolbox and decides, per invocation, whether the tool runs.

    Trust level ``none`` runs immediately. ``loose`` and ``strict`` consult the
    settings store by tool name: denied tools get an error message, allowed
    tools run, and anything else pauses on a ``choice`` message until the
    caller resumes with the human's ``user-choice`` response. Only the
    "always" answers change the store.
    """

    def __init__(self, toolbox: Toolbox, settings_store: SettingsStore) -> None:
        self.toolbox = toolbox
        self.settings_store = settings_store

    @property
    def definitions(self) -> list[ToolDefinition]:
        return self.toolbox.definitions

    def call(self, request: ToolInvocationRequest) -> Execution:
        return Execution(lambda control: self._call(request, control), name=f"gate:{request.name}")

    async def _call(self, request: ToolInvocationRequest, control: ControlSignal) -> StepSource:
        if control.is_abort:
            yield ExecutionResult.abort()
            return

        tool = self.toolbox.get(request.name)
        if tool is None:
            message = error_message("permission-gate", f"Unknown tool: {request.name}", error="unknown_tool")
            control = yield message
            yield _finish([message], control)
            return

        if tool.trust_level != TrustLevel.NONE:
            try:
                denied = await self.settings_store.is_denied(tool.name)
                allowed = not denied and await self.settings_store.is_allowed(tool.name)
            except Exception as e:
                logger.exception("Permission lookup failed for %s", tool.name)
                message = error_message(tool.name, f"Could not check permissions for {tool.name}", error=str(e))
                control = yield message
                yield _finish([message], control)
                return

            if denied:
                message = error_message(tool.name, PERMISSION_DENIED, error="permission_denied")
                control = yield message
                yield _finish([message], control)
                return

            if not allowed:
                choice = permission_choice_message(tool.permission_prompt(request.parameters), tool.name)
                control = yield choice
                if control.is_abort:
                    yield ExecutionResult.abort()
                    return
                message = await self._apply_decision(tool.name, control.response_message)
                if message is not None:
                    control = yield message
                    yield _finish([message], control)
                    return

        execution = self.toolbox.call(request)
        step = await execution.resume(control)
        while not step.done:
            control = yield step.message
            step = await execution.resume(control)
        yield step.result

    async def _apply_decision(self, name: str, response: Message | None) -> Message | None:
        """Record the human's answer; return the denial message, or None to run the tool."""
        decision = selected_permission(response)
        if decision is None:
            logger.warning("Unrecognized permission response for %s; denying", name)
            return error_message(
                name,
                f"Unrecognized permission response; {name} was not executed",
                error="invalid_permission_response",
            )
        try:
            if decision == ALWAYS_ALLOW:
                await self.settings_store.add_allowed(name)
                logger.info("Tool %s added to allow-list", name)
            elif decision == ALWAYS_DENY:
                await self.settings_store.add_denied(name)
                logger.info("Tool %s added to deny-list", name)
        except Exception as e:
            logger.exception("Could not persist permission for %s", name)
            return error_message(name, f"Could not save permission for {name}", error=str(e))
        if decision in (DENY, ALWAYS_DENY):
            return error_message(name, PERMISSION_DENIED, error="permission_denied")
        return None


def _finish(messages: list[Message], control: ControlSignal) -> ExecutionResult:
    if control.is_abort:
        return ExecutionResult.abort(messages)
    return ExecutionResult(messages=messages, usage=Usage())
