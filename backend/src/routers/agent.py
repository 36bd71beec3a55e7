"""Agent router: WebSocket sessions driving multi-round runs, plus permission admin."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from src.agent_rounds.config import DEFAULT_MAX_ITERATIONS, WORKSPACE_DIR, AgentModelConfig
from src.agent_rounds.control import ABORT, CONTINUE, ControlSignal, Execution
from src.agent_rounds.executor import SingleRoundExecutor
from src.agent_rounds.message_store import MessageStore, SQLiteMessageStore
from src.agent_rounds.models import (
    ChoiceMessage,
    ExecutionParameters,
    Message,
    UserChoiceMessage,
    UserChoiceMetadata,
    UserMessage,
    new_message_id,
)
from src.agent_rounds.settings_store import JsonSettingsStore, PermissionRecord, SettingsStore
from src.agent_rounds.summarizer import ConversationSummarizer, summary_message
from src.agent_rounds.system_prompt_loader import get_default_system_prompt
from src.agent_rounds.tools import Toolbox, get_default_tools
from src.agent_rounds.worker import AgentWorker, create_worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])

WorkerFactory = Callable[[SettingsStore, str | None], AgentWorker]
MessageStoreFactory = Callable[[str], MessageStore]


@lru_cache
def get_settings_store() -> SettingsStore:
    return JsonSettingsStore()


def get_message_store_factory() -> MessageStoreFactory:
    return SQLiteMessageStore


def _default_worker(settings_store: SettingsStore, model: str | None) -> AgentWorker:
    config = AgentModelConfig(model=model) if model else AgentModelConfig()
    return create_worker(
        "agent",
        config,
        toolbox=Toolbox(get_default_tools(WORKSPACE_DIR)),
        settings_store=settings_store,
    )


def get_worker_factory() -> WorkerFactory:
    return _default_worker


class StartFrame(BaseModel):
    """First frame of a session run."""

    type: Literal["start"] = "start"
    message: str = Field(..., description="User message that starts the run")
    system_prompt: str | None = Field(None, description="Optional system prompt")
    model: str | None = Field(
        None,
        description="LLM model in 'provider:model' format; bare names are served by Ollama.",
    )
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=1)


class ClientFrame(BaseModel):
    """Frames accepted while a run is in progress."""

    type: Literal["choice", "abort", "message", "summarize"]
    choice: int | None = None
    content: str | None = None


class PermissionsResponse(BaseModel):
    allow: list[str]
    deny: list[str]


def _message_frame(message: Message) -> dict[str, Any]:
    return {"event": "message", "message": message.model_dump(mode="json")}


class _SessionRun:
    """One run over a socket: forwards produced messages and turns client frames into controls.

    ``frames`` holds raw JSON frames from the socket reader; ``None`` marks a
    closed socket, after which the run aborts and nothing more is sent.
    """

    def __init__(
        self,
        websocket: WebSocket,
        worker: AgentWorker,
        store: MessageStore,
        frames: asyncio.Queue,
        prompt: str,
    ) -> None:
        self.websocket = websocket
        self.worker = worker
        self.store = store
        self.frames = frames
        self.prompt = prompt
        self.closed = False
        self.deferred: list[ClientFrame] = []

    async def emit(self, message: Message) -> None:
        await self.store.store_message(message)
        if not self.closed:
            await self.websocket.send_json(_message_frame(message))

    async def _frame(self, data: dict[str, Any] | None) -> ClientFrame | None:
        if data is None:
            self.closed = True
            return None
        try:
            return ClientFrame.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid client frame: %s", e)
            await self.websocket.send_json({"event": "error", "detail": "Invalid frame during a run"})
            return None

    async def answer_choice(self, choice: ChoiceMessage) -> ControlSignal:
        """Block until the client picks an option or aborts.

        ``message`` and ``summarize`` frames sent meanwhile are kept for the
        next :meth:`pending_control`.
        """
        while True:
            frame = await self._frame(await self.frames.get())
            if self.closed or (frame is not None and frame.type == "abort"):
                return ABORT
            if frame is None:
                continue
            if frame.type == "choice" and frame.choice is not None:
                response = UserChoiceMessage(
                    id=new_message_id("user-choice"),
                    sender="user",
                    metadata=UserChoiceMetadata(choice=frame.choice, choices=choice.metadata.choices),
                )
                await self.emit(response)
                return ControlSignal.respond(response)
            if frame.type in ("message", "summarize"):
                self.deferred.append(frame)
                continue
            await self.websocket.send_json(
                {"event": "error", "detail": "Waiting for a choice; send 'choice' or 'abort'"}
            )

    async def pending_control(self) -> ControlSignal:
        """Fold frames that arrived while the run was busy into one control."""
        frames, self.deferred = self.deferred, []
        while not self.frames.empty():
            frame = await self._frame(self.frames.get_nowait())
            if self.closed or (frame is not None and frame.type == "abort"):
                return ABORT
            if frame is not None:
                frames.append(frame)
        queued: list[Message] = []
        summarize = False
        for frame in frames:
            if frame.type == "message" and frame.content:
                message = UserMessage(id=new_message_id("user"), content=frame.content, sender="user")
                await self.emit(message)
                queued.append(message)
            elif frame.type == "summarize":
                summarize = True
        if summarize:
            return ControlSignal.replace_history([await self.summarize()])
        if queued:
            return ControlSignal.queue(queued)
        return CONTINUE

    async def summarize(self) -> Message:
        executor = SingleRoundExecutor(
            f"{self.worker.name}-summarizer",
            self.worker.executor.provider,
            model=self.worker.executor.model,
        )
        history = await self.store.get_message_history()
        result = await ConversationSummarizer(executor).summarize(
            ExecutionParameters(prompt=self.prompt, messages=history)
        )
        message = summary_message(result)
        await self.emit(message)
        return message

    async def drive(self, execution: Execution) -> None:
        step = await execution.resume(await self.pending_control())
        while not step.done:
            await self.emit(step.message)
            if isinstance(step.message, ChoiceMessage):
                control = await self.answer_choice(step.message)
            else:
                control = await self.pending_control()
            step = await execution.resume(control)
        result = step.result
        if self.closed:
            return
        await self.websocket.send_json(
            {
                "event": "result",
                "completion_reason": result.completion_reason.value,
                "usage": {
                    "input_tokens": result.usage.input_tokens,
                    "output_tokens": result.usage.output_tokens,
                    "tools_used": result.usage.tools_used,
                },
                "message_count": len(result.messages),
            }
        )


async def _read_frames(websocket: WebSocket, frames: asyncio.Queue) -> None:
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frames.put_nowait(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame: %r", raw[:200])
    except WebSocketDisconnect:
        frames.put_nowait(None)


@router.websocket("/sessions/{session_id}")
async def session_socket(
    websocket: WebSocket,
    session_id: str,
    settings_store: SettingsStore = Depends(get_settings_store),
    store_factory: MessageStoreFactory = Depends(get_message_store_factory),
    worker_factory: WorkerFactory = Depends(get_worker_factory),
) -> None:
    """Run the agent for each ``start`` frame; stream messages until the run's result."""
    await websocket.accept()
    store = store_factory(session_id)
    frames: asyncio.Queue = asyncio.Queue()
    reader = asyncio.create_task(_read_frames(websocket, frames))
    try:
        while True:
            data = await frames.get()
            if data is None:
                logger.info("Session %s disconnected", session_id)
                return
            try:
                start = StartFrame.model_validate(data)
            except ValidationError as e:
                await websocket.send_json({"event": "error", "detail": str(e)})
                continue

            prompt = start.system_prompt or get_default_system_prompt()
            history = await store.get_message_history()
            user_message = UserMessage(id=new_message_id("user"), content=start.message, sender="user")
            await store.store_message(user_message)
            worker = worker_factory(settings_store, start.model)
            execution = worker.run_iterations(
                ExecutionParameters(prompt=prompt, messages=history + [user_message]),
                max_iterations=start.max_iterations,
            )
            run = _SessionRun(websocket, worker, store, frames, prompt)
            try:
                await run.drive(execution)
            finally:
                await execution.aclose()
            if run.closed:
                logger.info("Session %s closed by client during a run", session_id)
                return
    finally:
        reader.cancel()


@router.get("/sessions/{session_id}/messages")
async def session_messages(
    session_id: str,
    limit: int | None = None,
    store_factory: MessageStoreFactory = Depends(get_message_store_factory),
) -> list[dict[str, Any]]:
    """Working history of a session (from the latest summary on)."""
    store = store_factory(session_id)
    messages = await store.get_message_history(limit=limit)
    return [m.model_dump(mode="json") for m in messages]


@router.get("/permissions", response_model=PermissionsResponse)
async def get_permissions(settings_store: SettingsStore = Depends(get_settings_store)) -> PermissionsResponse:
    record: PermissionRecord = await settings_store.fetch_record()
    return PermissionsResponse(allow=record.allow, deny=record.deny)


@router.delete("/permissions/{kind}/{tool_name}", response_model=PermissionsResponse)
async def remove_permission(
    kind: str,
    tool_name: str,
    settings_store: SettingsStore = Depends(get_settings_store),
) -> PermissionsResponse:
    """Forget an "always" decision so the tool asks again."""
    if kind == "allow":
        await settings_store.remove_allowed(tool_name)
    elif kind == "deny":
        await settings_store.remove_denied(tool_name)
    else:
        raise HTTPException(status_code=404, detail=f"Unknown permission list: {kind}")
    record = await settings_store.fetch_record()
    return PermissionsResponse(allow=record.allow, deny=record.deny)
