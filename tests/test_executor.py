"""Tests for the Tool Executor's backend selection and stream normalization."""

import pytest

from backbone.core.errors import ERROR_MESSAGES, ErrorCode
from backbone.execution import ExecutionEvent, ExecutionEventType, ToolExecutor

from conftest import NOON, ScriptedBackend, make_action


def _types(events: list[ExecutionEvent]) -> list[ExecutionEventType]:
    return [e.type for e in events]


async def _collect(executor: ToolExecutor, action) -> list[ExecutionEvent]:
    return [event async for event in executor.execute(action)]


class _ExplodingBackend:
    id = "exploding"

    def __init__(self, after_start: bool = True):
        self.after_start = after_start

    def is_available(self) -> bool:
        return True

    async def execute(self, action):
        if self.after_start:
            yield ExecutionEvent.start()
        raise RuntimeError("429 Too Many Requests")


class _BrokenAvailability(ScriptedBackend):
    def is_available(self) -> bool:
        raise OSError("probe failed")


class TestBackendSelection:
    """Priority order with availability fallback."""

    def test_lower_priority_number_first(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        fallback = ScriptedBackend(id="model")
        primary = ScriptedBackend(id="agentic-cli")
        executor.register(fallback, priority=10)
        executor.register(primary, priority=0)
        assert [b.id for b in executor.backends] == ["agentic-cli", "model"]
        assert executor.select_backend() is primary

    def test_unavailable_backend_is_skipped(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(ScriptedBackend(id="agentic-cli", available=False), priority=0)
        executor.register(ScriptedBackend(id="model"), priority=10)
        assert executor.select_backend().id == "model"
        assert executor.availability() == {"agentic-cli": False, "model": True}

    def test_failing_availability_check_counts_as_unavailable(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(_BrokenAvailability(id="flaky"), priority=0)
        executor.register(ScriptedBackend(id="model"), priority=10)
        assert executor.select_backend().id == "model"

    def test_plan_preference_wins_when_available(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(ScriptedBackend(id="agentic-cli"), priority=0)
        executor.register(ScriptedBackend(id="model"), priority=10)
        action = make_action(backend_id="model")
        assert executor.select_backend(action).id == "model"

    def test_unregister(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(ScriptedBackend(id="model"))
        assert executor.unregister("model")
        assert not executor.unregister("model")
        assert executor.select_backend() is None


class TestStreamNormalization:
    """Every run yields one start, then progress, then one terminal event."""

    @pytest.mark.asyncio
    async def test_missing_start_is_synthesized(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.text("hi"), ExecutionEvent.end()]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)
        action = make_action()

        events = await _collect(executor, action)
        assert _types(events) == [
            ExecutionEventType.START,
            ExecutionEventType.TEXT,
            ExecutionEventType.END,
        ]
        assert all(e.action_id == action.id for e in events)
        assert all(e.timestamp == NOON for e in events)
        assert action.execution_plan.backend_id == "scripted"

    @pytest.mark.asyncio
    async def test_duplicate_start_and_trailing_events_dropped(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[
            ExecutionEvent.start(),
            ExecutionEvent.start(),
            ExecutionEvent.text("a"),
            ExecutionEvent.end(result="done"),
            ExecutionEvent.text("after the end"),
            ExecutionEvent.error("late"),
        ]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        events = await _collect(executor, make_action())
        assert _types(events) == [
            ExecutionEventType.START,
            ExecutionEventType.TEXT,
            ExecutionEventType.END,
        ]

    @pytest.mark.asyncio
    async def test_stream_without_terminal_becomes_error(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.text("partial")]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        events = await _collect(executor, make_action())
        assert _types(events)[-1] == ExecutionEventType.ERROR
        assert "ended without a result" in events[-1].payload["error"]

    @pytest.mark.asyncio
    async def test_backend_exception_becomes_error(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(_ExplodingBackend())

        events = await _collect(executor, make_action())
        assert _types(events) == [ExecutionEventType.START, ExecutionEventType.ERROR]
        assert events[-1].payload["rate_limited"] is True

    @pytest.mark.asyncio
    async def test_exception_before_start(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(_ExplodingBackend(after_start=False))

        events = await _collect(executor, make_action())
        assert _types(events) == [ExecutionEventType.START, ExecutionEventType.ERROR]

    @pytest.mark.asyncio
    async def test_no_backend(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(ScriptedBackend(available=False))

        events = await _collect(executor, make_action())
        assert _types(events) == [ExecutionEventType.START, ExecutionEventType.ERROR]
        assert events[-1].payload["error"] == ERROR_MESSAGES[ErrorCode.EXECUTION_NO_BACKEND]


class TestRun:
    """run() summaries."""

    @pytest.mark.asyncio
    async def test_success_accumulates_text(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[
            ExecutionEvent.text("Hello "),
            ExecutionEvent.tool_call("search", {"q": "funds"}),
            ExecutionEvent.text("world"),
            ExecutionEvent.end(result="ignored"),
        ]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)
        seen = []

        outcome = await executor.run(make_action(), on_event=seen.append)
        assert outcome.success
        assert outcome.result == "Hello world"
        assert outcome.backend_id == "scripted"
        assert outcome.event_count == 5
        assert len(seen) == 5

    @pytest.mark.asyncio
    async def test_end_result_used_without_text(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.end(result="final answer")]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        outcome = await executor.run(make_action())
        assert outcome.result == "final answer"

    @pytest.mark.asyncio
    async def test_async_callback(self, clock) -> None:
        executor = ToolExecutor(clock=clock)
        executor.register(ScriptedBackend())
        seen = []

        async def on_event(event):
            seen.append(event.type)

        await executor.run(make_action(), on_event=on_event)
        assert seen[0] == ExecutionEventType.START
        assert seen[-1] == ExecutionEventType.END

    @pytest.mark.asyncio
    async def test_rate_limit_flag(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.error("quota", rate_limited=True)]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        outcome = await executor.run(make_action())
        assert not outcome.success
        assert outcome.rate_limited
        assert outcome.error == "quota"

    @pytest.mark.asyncio
    async def test_rate_limit_detected_from_message(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.error("Claude usage limit reached")]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        outcome = await executor.run(make_action())
        assert outcome.rate_limited

    @pytest.mark.asyncio
    async def test_plain_failure(self, clock) -> None:
        backend = ScriptedBackend(scripts=[[ExecutionEvent.error("file not found")]])
        executor = ToolExecutor(clock=clock)
        executor.register(backend)

        outcome = await executor.run(make_action())
        assert not outcome.success
        assert not outcome.rate_limited
