"""Agent rounds: resumable model/tool rounds with human-in-the-loop permissions."""

from .control import (
    ABORT,
    CONTINUE,
    CompletionReason,
    ControlKind,
    ControlSignal,
    Execution,
    ExecutionResult,
    ProtocolError,
    Step,
    Usage,
)
from .executor import SingleRoundExecutor
from .message_store import InMemoryMessageStore, MessageStore, SQLiteMessageStore
from .models import ExecutionParameters, Message, ToolDefinition, ToolInvocationRequest, ToolResult, TrustLevel
from .orchestrator import IterationOrchestrator
from .permissions import PermissionGate
from .settings_store import InMemorySettingsStore, JsonSettingsStore, SettingsStore
from .summarizer import ConversationSummarizer, SummaryResult
from .tools import BaseTool, Toolbox
from .worker import AgentWorker, create_worker

__all__ = [
    "ABORT",
    "CONTINUE",
    "CompletionReason",
    "ControlKind",
    "ControlSignal",
    "Execution",
    "ExecutionResult",
    "ProtocolError",
    "Step",
    "Usage",
    "SingleRoundExecutor",
    "IterationOrchestrator",
    "PermissionGate",
    "AgentWorker",
    "create_worker",
    "ExecutionParameters",
    "Message",
    "ToolDefinition",
    "ToolInvocationRequest",
    "ToolResult",
    "TrustLevel",
    "BaseTool",
    "Toolbox",
    "MessageStore",
    "InMemoryMessageStore",
    "SQLiteMessageStore",
    "SettingsStore",
    "InMemorySettingsStore",
    "JsonSettingsStore",
    "ConversationSummarizer",
    "SummaryResult",
]
