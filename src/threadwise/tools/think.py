"""The ``think`` tool: lets the oracle record a reasoning step in the thread."""

import logging
from typing import Literal

from pydantic import BaseModel

from threadwise.core.schema import ToolResult
from threadwise.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ThinkStep(BaseModel):
    """Parameters of the ``think`` intent."""

    thought: str


class ThinkResult(ToolResult):
    """Acknowledges a thought; the thought itself is already in the ``tool_call`` event."""

    kind: Literal["think_result"] = "think_result"
    thought: str

    def render_for_context(self) -> str:
        return "Thinking complete!"


def think(step: ThinkStep) -> ThinkResult:
    """Write down a reasoning step before acting."""
    logger.info("Thinking: %s", step.thought)
    return ThinkResult(thought=step.thought)


def register_think_tool(registry: ToolRegistry) -> None:
    """Register ``think`` on *registry*."""
    registry.register("think", params=ThinkStep)(think)
