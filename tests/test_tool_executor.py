"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import asyncio

import pytest
from pydantic import BaseModel

from threadwise.agent.tool_executor import (
    dispatch,
    execute_tool,
)
from threadwise.core.errors import (
    ToolExecutionError,
    ToolTimeoutError,
    UnknownIntentError,
)
from threadwise.core.schema import (
    TOOL_ERROR,
    TOOL_RESPONSE,
    NextStep,
    ToolErrorPayload,
)
from threadwise.core.thread import Thread
from threadwise.tools import ToolRegistry
from threadwise.tools.calculator import CalculationResult


class _Pair(BaseModel):
    a: int
    b: int


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    # This is a stub tool for testing purposes.
    @registry.register("add", params=_Pair)
    def _add(step: _Pair) -> int:
        """Return the sum of two integers (used only for tests)."""

        return step.a + step.b

    @registry.register("nap")
    async def _nap(step: NextStep) -> str:
        await asyncio.sleep(1)
        return "rested"

    @registry.register("socket_read")
    async def _socket_read(step: NextStep) -> str:
        raise TimeoutError("read timed out")

    return registry


@pytest.mark.asyncio
async def test_execute_tool_success() -> None:
    """Executor should return the correct value when the tool is valid."""

    assert await execute_tool(NextStep(intent="add", a=2, b=3), _registry()) == 5


@pytest.mark.asyncio
async def test_execute_tool_missing() -> None:
    """Executor should raise *UnknownIntentError* for an unknown tool."""

    with pytest.raises(UnknownIntentError) as info:
        await execute_tool(NextStep(intent="not_a_tool"), _registry())
    assert str(info.value) == "No handler found for intent: not_a_tool"


@pytest.mark.asyncio
async def test_execute_tool_bad_args() -> None:
    """Executor should raise *ToolExecutionError* for wrong arguments."""

    with pytest.raises(ToolExecutionError) as info:
        await execute_tool(NextStep(intent="add", a=2), _registry())  # missing 'b'
    assert "Invalid arguments" in str(info.value)


@pytest.mark.asyncio
async def test_execute_tool_timeout() -> None:
    """Async executors that overrun their deadline raise *ToolTimeoutError*."""

    with pytest.raises(ToolTimeoutError):
        await execute_tool(NextStep(intent="nap"), _registry(), timeout=0.01)


@pytest.mark.asyncio
async def test_timeout_inside_executor_is_not_the_deadline() -> None:
    """A TimeoutError raised by the tool itself is reported as a tool failure, not a deadline."""

    with pytest.raises(ToolExecutionError) as info:
        await execute_tool(NextStep(intent="socket_read"), _registry(), timeout=5)
    assert not isinstance(info.value, ToolTimeoutError)
    assert str(info.value) == "Tool 'socket_read' raised an error: read timed out"


@pytest.mark.asyncio
async def test_dispatch_unknown_intent_appends_one_error() -> None:
    """An unregistered intent produces exactly one tool_error event and no exception."""

    thread = Thread()
    event = await dispatch(NextStep(intent="foo"), thread, _registry())

    assert thread.events == [event]
    assert event.type == TOOL_ERROR
    assert event.data == ToolErrorPayload(
        tool_intent="foo", message="No handler found for intent: foo"
    )


@pytest.mark.asyncio
async def test_dispatch_executor_failure_is_recorded(registry: ToolRegistry) -> None:
    """Exceptions raised by an executor become a tool_error naming the intent."""

    thread = Thread()
    event = await dispatch(NextStep(intent="divide", a=1, b=0), thread, registry)

    assert event.type == TOOL_ERROR
    assert event.data.tool_intent == "divide"
    assert "Division by zero is not allowed." in event.data.message


@pytest.mark.asyncio
async def test_dispatch_success_appends_response(registry: ToolRegistry) -> None:
    """A successful call appends the executor's result unchanged."""

    thread = Thread()
    event = await dispatch(NextStep(intent="multiply", a=3, b=4), thread, registry)

    assert event.type == TOOL_RESPONSE
    assert event.data == CalculationResult(operation="multiply", result=12.0)
    assert thread.serialize_for_llm() == "<tool_response>\n12\n</tool_response>"


def test_registry_rejects_duplicates_and_terminal_intents() -> None:
    """Intents are unique and terminal intents never get a handler."""

    registry = _registry()
    with pytest.raises(ValueError):
        registry.register("add")(lambda step: None)
    with pytest.raises(ValueError):
        registry.register("done_for_now")(lambda step: None)


def test_registry_schemas_describe_parameters(registry: ToolRegistry) -> None:
    """Schemas list each parameter with its type and whether it is required."""

    schema = registry.schemas()["add"]
    assert schema["description"] == "Add b to a."
    assert schema["parameters"]["a"] == {"type": "float", "required": True}
    assert "fetch_inpi_data" in registry
    assert registry.names()[:4] == ["add", "subtract", "multiply", "divide"]
