"""
Main orchestration loop for threadwise.

Each iteration serializes the thread, asks the oracle for the next step, records the step as a
``tool_call`` event and then either returns (terminal intent) or dispatches the step to its tool,
which appends a ``tool_response`` or ``tool_error`` event.  Tool failures never end the loop; oracle
failures (:class:`~threadwise.core.errors.OracleError`) propagate to the caller.
"""

from __future__ import annotations

import logging
from typing import (
    AsyncIterator,
    Union,
)

from threadwise.agent.oracle import BaseOracle
from threadwise.agent.tool_executor import dispatch
from threadwise.config import settings
from threadwise.core.errors import (
    IterationLimitError,
    OracleError,
)
from threadwise.core.events import (
    CompleteEvent,
    LoopDone,
    LoopEvent,
    PartialEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
    ToolStartEvent,
)
from threadwise.core.schema import (
    TOOL_CALL,
    TOOL_ERROR,
    NextStep,
)
from threadwise.core.thread import Thread
from threadwise.tools import ToolRegistry

logger = logging.getLogger(__name__)


class _Budget:
    """Counts oracle decisions in one pass against an optional cap."""

    def __init__(self, max_iterations: int | None) -> None:
        self.max_iterations = max_iterations
        self.used = 0

    def spend(self) -> None:
        if self.max_iterations is not None and self.used >= self.max_iterations:
            raise IterationLimitError(
                f"Agent loop stopped after {self.used} iterations without a terminal intent"
            )
        self.used += 1


def _context_for(thread: Thread) -> str:
    context = thread.serialize_for_llm()
    logger.debug("--- Sending to oracle ---\n%s\n-------------------------", context)
    return context


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
async def agent_loop(
    thread: Thread,
    oracle: BaseOracle,
    registry: ToolRegistry,
    max_iterations: int | None = None,
    tool_timeout: float | None = None,
) -> Thread:
    """
    Run the loop until the oracle picks a terminal intent and return *thread*.

    The caller reads the outcome from the last event: a ``tool_call`` whose step has intent
    ``done_for_now`` (final answer) or ``request_more_information`` (question for the human).

    *max_iterations* and *tool_timeout* default to ``settings.MAX_ITERATIONS`` and
    ``settings.TOOL_TIMEOUT``.
    """
    budget = _Budget(settings.MAX_ITERATIONS if max_iterations is None else max_iterations)
    timeout = settings.TOOL_TIMEOUT if tool_timeout is None else tool_timeout

    while True:
        budget.spend()
        step = await oracle.decide(_context_for(thread))

        # Record the decision *before* executing it
        thread.append(TOOL_CALL, step)

        if step.is_terminal:
            return thread
        await dispatch(step, thread, registry, timeout)


async def agent_loop_stream(
    thread: Thread,
    oracle: BaseOracle,
    registry: ToolRegistry,
    max_iterations: int | None = None,
    tool_timeout: float | None = None,
) -> AsyncIterator[Union[LoopEvent, LoopDone]]:
    """
    Streaming variant of :func:`agent_loop`.

    Yields the progress events of every iteration and finally a :class:`LoopDone` carrying the
    updated thread.  A consumer that stops iterating abandons the pass; side effects already made
    by tools are kept.
    """
    budget = _Budget(settings.MAX_ITERATIONS if max_iterations is None else max_iterations)
    timeout = settings.TOOL_TIMEOUT if tool_timeout is None else tool_timeout

    while True:
        budget.spend()
        step: NextStep | None = None
        async for chunk in oracle.stream(_context_for(thread)):
            if chunk.step is not None:
                step = chunk.step
            elif chunk.partial is not None:
                yield PartialEvent(message=chunk.partial)
        if step is None:
            raise OracleError("Oracle stream ended without a next step")

        thread.append(TOOL_CALL, step)

        if step.is_terminal:
            yield CompleteEvent(data=step)
            yield LoopDone(thread=thread)
            return

        yield ToolStartEvent(intent=step.intent, step=step)
        event = await dispatch(step, thread, registry, timeout)
        if event.type == TOOL_ERROR:
            yield ToolErrorEvent(intent=step.intent, message=event.data.message)
        else:
            yield ToolCompleteEvent(intent=step.intent, result=event.data)
        yield CompleteEvent(data=step, outcome=event.data)
