"""
Interactive command-line front end.

Each line typed by the user becomes a ``user_input`` event and drives one streaming loop pass.  The
final answer is printed as the oracle produces it.  If the agent asks for more information, the
question is shown and the next line is recorded as a ``human_response``.  ``/exit`` (or ``exit`` /
``quit``, any case) ends the session at either prompt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Tuple

from threadwise.agent.agent_loop import agent_loop_stream
from threadwise.agent.oracle import (
    BaseOracle,
    load_oracle,
)
from threadwise.common import (
    AnsiColors,
    colored_print,
)
from threadwise.config import settings
from threadwise.core.errors import (
    IterationLimitError,
    OracleError,
)
from threadwise.core.events import (
    LoopDone,
    PartialDiffer,
)
from threadwise.core.schema import (
    HUMAN_RESPONSE,
    REQUEST_MORE_INFORMATION,
    USER_INPUT,
    NextStep,
)
from threadwise.core.thread import Thread
from threadwise.memory.result_cache import ResultCache
from threadwise.tools import ToolRegistry
from threadwise.tools.defaults import default_registry

logger = logging.getLogger(__name__)

EXIT_TOKENS = frozenset({"/exit", "exit", "quit"})


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message(prompt: str = "> ") -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input(prompt).strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def is_exit(line: str) -> bool:
    """True when *line* is one of the exit tokens."""
    return line.strip().lower() in EXIT_TOKENS


def last_step(thread: Thread) -> NextStep | None:
    """The step recorded by the last event, if it is one."""
    last = thread.last_event
    if last is not None and isinstance(last.data, NextStep):
        return last.data
    return None


async def run_pass(thread: Thread, oracle: BaseOracle, registry: ToolRegistry) -> Thread:
    """
    Drive one streaming pass, printing the oracle's message as it grows.

    Only the final answer or the clarification question is printed; tool activity goes to the log.
    """
    differ = PartialDiffer()
    async for item in agent_loop_stream(thread, oracle, registry):
        if isinstance(item, LoopDone):
            return item.thread
        if item.type == "partial":
            colored_print(differ.feed(item.message), AnsiColors.YELLOW, end="", flush=True)
        elif item.type == "tool_start":
            logger.info("Running tool '%s'", item.intent)
        elif item.type == "tool_error":
            logger.info("Tool '%s' failed: %s", item.intent, item.message)
        elif item.type == "complete":
            if item.data.is_terminal:
                message = item.data.params().get("message", "")
                if differ.emitted:
                    # Print whatever the partials did not cover, then end the line.
                    colored_print(differ.feed(str(message)), AnsiColors.YELLOW)
                else:
                    colored_print(str(message), AnsiColors.YELLOW)
            differ.reset()
    return thread


def run_cli(oracle: BaseOracle | None = None, registry: ToolRegistry | None = None) -> None:
    """Run the interactive session until the user exits."""
    if registry is None:
        registry = default_registry(ResultCache(ttl=settings.CACHE_TTL_SECONDS))
    if oracle is None:
        oracle = load_oracle(tool_schemas=registry.schemas())

    thread = Thread()
    colored_print("🧵 threadwise shell - type '/exit' (or Ctrl+C) to quit.", AnsiColors.GREEN)
    while True:
        user_msg, ok = get_user_message("\n🧑 You: ")
        if not ok or is_exit(user_msg):
            break
        if not user_msg:
            continue

        thread.append(USER_INPUT, user_msg)
        try:
            thread = asyncio.run(run_pass(thread, oracle, registry))
            step = last_step(thread)
            while step is not None and step.intent == REQUEST_MORE_INFORMATION:
                answer, ok = get_user_message("> ")
                if not ok or is_exit(answer):
                    colored_print("Goodbye!", AnsiColors.GREEN)
                    return
                thread.append(HUMAN_RESPONSE, answer)
                thread = asyncio.run(run_pass(thread, oracle, registry))
                step = last_step(thread)
        except (OracleError, IterationLimitError) as exc:
            colored_print(f"⚠️ {exc}", AnsiColors.RED)

    colored_print("Goodbye!", AnsiColors.GREEN)


if __name__ == "__main__":
    run_cli()
