"""Execution: backends, their event stream, and the Tool Executor."""

from backbone.execution.backends import AgenticCliBackend, ExecutionBackend, ModelBackend
from backbone.execution.events import ExecutionEvent, ExecutionEventType
from backbone.execution.executor import ExecutionOutcome, ToolExecutor

__all__ = [
    "AgenticCliBackend",
    "ExecutionBackend",
    "ExecutionEvent",
    "ExecutionEventType",
    "ExecutionOutcome",
    "ModelBackend",
    "ToolExecutor",
]
