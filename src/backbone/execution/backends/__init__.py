"""Execution backends."""

from backbone.execution.backends.agentic_cli import AgenticCliBackend
from backbone.execution.backends.base import ExecutionBackend
from backbone.execution.backends.model_backend import ModelBackend

__all__ = ["AgenticCliBackend", "ExecutionBackend", "ModelBackend"]
