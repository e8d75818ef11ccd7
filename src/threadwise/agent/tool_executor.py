"""Dispatches tool intents registered in a ``ToolRegistry`` and records the outcome in the thread."""

import asyncio
import contextlib
import inspect
import logging
from typing import (
    Any,
    Awaitable,
)

from pydantic import ValidationError

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
from threadwise.core.thread import (
    Event,
    Thread,
)
from threadwise.tools import ToolRegistry

logger = logging.getLogger(__name__)


async def execute_tool(step: NextStep, registry: ToolRegistry, timeout: float | None = None) -> Any:
    """
    Look up ``step.intent`` in *registry* and invoke its executor.

    Parameters
    ----------
    step:
        The oracle's decision.  Its fields are validated against the tool's parameter model.
    registry:
        Where executors are looked up.
    timeout:
        Deadline in seconds for asynchronous executors; *None* waits indefinitely.

    Returns
    -------
    Any
        Whatever the executor returns.

    Raises
    ------
    ToolExecutionError
        If the intent is not registered, its fields are invalid, the executor raises or the
        deadline passes.
    """
    tool = registry.get(step.intent)
    if tool is None:
        raise UnknownIntentError(step.intent)

    try:
        args = tool.parse(step)
    except ValidationError as exc:
        raise ToolExecutionError(f"Invalid arguments for tool '{step.intent}': {exc}") from exc

    try:
        logger.debug("Executing tool '%s' with args=%s", step.intent, args)
        result = tool.fn(args)
        if inspect.isawaitable(result):
            result = await _await_with_deadline(step.intent, result, timeout)
        return result
    except ToolExecutionError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", step.intent)
        raise ToolExecutionError(f"Tool '{step.intent}' raised an error: {exc}") from exc


async def _await_with_deadline(intent: str, awaitable: Awaitable[Any], timeout: float | None) -> Any:
    """
    Await *awaitable* for at most *timeout* seconds.

    Only the deadline itself raises :class:`ToolTimeoutError`; a ``TimeoutError`` raised by the
    executor propagates unchanged.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not done:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise ToolTimeoutError(f"Tool '{intent}' timed out after {timeout} seconds")
    return task.result()


async def dispatch(
    step: NextStep, thread: Thread, registry: ToolRegistry, timeout: float | None = None
) -> Event:
    """
    Run the tool for *step* and append exactly one event to *thread*.

    Success appends a ``tool_response`` carrying the result; any failure appends a ``tool_error``
    naming the intent.  Nothing is raised, so the oracle gets to see the error and recover.
    """
    try:
        result = await execute_tool(step, registry, timeout)
    except ToolExecutionError as exc:
        logger.warning("Tool failure for intent '%s': %s", step.intent, exc)
        return thread.append(
            TOOL_ERROR, ToolErrorPayload(tool_intent=step.intent, message=str(exc))
        )

    logger.info("tool_response for intent [%s]: %s", step.intent, result)
    return thread.append(TOOL_RESPONSE, result)
