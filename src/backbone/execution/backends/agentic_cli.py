"""Agentic CLI backend — runs a tool-using agent CLI as a subprocess.

The prompt is written to stdin and the CLI streams one JSON message per line
(``--output-format stream-json``). Each message is mapped to an
ExecutionEvent as it arrives. The backend enforces its own wall-clock timeout
by killing the process; nothing above it cancels a run.
"""

import asyncio
import contextlib
import json
import logging
import os
import shutil
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from backbone.core.errors import is_rate_limit_message
from backbone.execution.events import ExecutionEvent

if TYPE_CHECKING:
    from backbone.actions.models import Action

logger = logging.getLogger(__name__)

DEFAULT_ARGS: tuple[str, ...] = ("--print", "--output-format", "stream-json", "--verbose")

# Keep stderr tails short in error messages
_STDERR_TAIL = 500

# stream-json puts whole tool results (file contents) on a single line
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024


@dataclass(slots=True)
class _RunState:
    texts: list[str] = field(default_factory=list)
    final_result: str | None = None
    final_error: str | None = None
    session_id: str | None = None


@dataclass
class AgenticCliBackend:
    """Execution backend over an agent CLI (``claude`` by default).

    Example:
        >>> backend = AgenticCliBackend(timeout=120)
        >>> if backend.is_available():
        ...     async for event in backend.execute(action):
        ...         print(event.type, event.payload)
    """

    command: str = "claude"
    args: tuple[str, ...] = DEFAULT_ARGS
    extra_args: tuple[str, ...] = ()
    timeout: float = 300.0
    """Seconds before the subprocess is killed."""

    cwd: str | None = None
    line_limit: int = DEFAULT_LINE_LIMIT
    """Longest stream-json line accepted, in bytes."""

    id: str = "agentic-cli"

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def _build_env(self) -> dict[str, str]:
        env = {**os.environ, "FORCE_COLOR": "0"}
        # The CLI should use its own login rather than the API key
        env.pop("ANTHROPIC_API_KEY", None)
        return env

    async def execute(self, action: "Action") -> AsyncIterator[ExecutionEvent]:
        cmd = [self.command, *self.args, *self.extra_args]
        yield ExecutionEvent.start(backend=self.id, command=self.command)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self._build_env(),
                limit=self.line_limit,
            )
        except OSError as e:
            yield ExecutionEvent.error(f"Failed to start {self.command}: {e}")
            return

        stderr_task = asyncio.create_task(proc.stderr.read())
        state = _RunState()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            proc.stdin.write(action.execution_plan.prompt.encode())
            await asyncio.wait_for(proc.stdin.drain(), timeout=self.timeout)
            proc.stdin.close()

            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                line = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
                if not line:
                    break
                for event in _map_line(line.decode("utf-8", errors="replace"), state):
                    yield event

            await asyncio.wait_for(proc.wait(), timeout=max(0.1, deadline - loop.time()))
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            await _discard(stderr_task)
            logger.warning("%s timed out after %ss for action %s", self.command, self.timeout, action.id)
            yield ExecutionEvent.error(f"Task timed out after {self.timeout:g}s", timeout=True)
            return
        except (BrokenPipeError, ConnectionResetError) as e:
            # CLI exited before reading the prompt; report via exit status below
            logger.debug("stdin closed early: %s", e)
            await proc.wait()
        finally:
            if proc.returncode is None:
                _kill(proc)
                await _discard(stderr_task)

        stderr = (await stderr_task).decode("utf-8", errors="replace").strip()

        if state.final_error is not None:
            yield ExecutionEvent.error(
                state.final_error,
                rate_limited=is_rate_limit_message(state.final_error),
                session_id=state.session_id,
            )
        elif proc.returncode != 0:
            detail = stderr[-_STDERR_TAIL:] or f"exit code {proc.returncode}"
            yield ExecutionEvent.error(
                f"{self.command} failed: {detail}",
                rate_limited=is_rate_limit_message(detail),
                exit_code=proc.returncode,
            )
        else:
            result = state.final_result if state.final_result is not None else "".join(state.texts)
            yield ExecutionEvent.end(result=result, session_id=state.session_id)


def _map_line(line: str, state: _RunState) -> list[ExecutionEvent]:
    """Translate one stream-json line into zero or more events."""
    line = line.strip()
    if not line:
        return []
    try:
        msg = json.loads(line)
    except json.JSONDecodeError:
        state.texts.append(line + "\n")
        return [ExecutionEvent.text(line + "\n")]
    if not isinstance(msg, dict):
        return []

    msg_type = msg.get("type")
    if msg_type == "assistant":
        return _map_content(msg, state)
    if msg_type == "user":
        return [
            ExecutionEvent.tool_result(block.get("content"))
            for block in _content_blocks(msg)
            if block.get("type") == "tool_result"
        ]
    if msg_type == "tool_use":
        tool = msg.get("tool") or {}
        name = tool.get("name") or msg.get("name") or "unknown"
        return [ExecutionEvent.tool_call(name, tool.get("input") or msg.get("input"))]
    if msg_type == "tool_result":
        return [ExecutionEvent.tool_result(msg.get("content") or msg.get("result"))]
    if msg_type == "result":
        state.session_id = msg.get("session_id") or msg.get("sessionId")
        result = msg.get("result") or msg.get("content")
        if msg.get("is_error") or str(msg.get("subtype", "")).startswith("error"):
            state.final_error = str(result or msg.get("subtype") or "agent reported an error")
        else:
            state.final_result = result if isinstance(result, str) else None
        return []
    if msg_type == "error":
        error = msg.get("error") or msg.get("message") or "unknown error"
        if isinstance(error, dict):
            error = error.get("message") or json.dumps(error)
        state.final_error = str(error)
        return []

    # system/init and unknown message types carry nothing for the action
    return []


def _content_blocks(msg: dict[str, Any]) -> list[dict[str, Any]]:
    content = (msg.get("message") or {}).get("content") or msg.get("content") or []
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return [block for block in content if isinstance(block, dict)]


def _map_content(msg: dict[str, Any], state: _RunState) -> list[ExecutionEvent]:
    events = []
    for block in _content_blocks(msg):
        if block.get("type") == "text" and block.get("text"):
            state.texts.append(block["text"])
            events.append(ExecutionEvent.text(block["text"]))
        elif block.get("type") == "tool_use":
            events.append(ExecutionEvent.tool_call(block.get("name", "unknown"), block.get("input")))
    return events


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def _discard(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
