"""
Schema definitions for oracle <-> loop <-> tool messages.

These data models serve as the contract between the decision oracle, the orchestration loop, and
individual tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

from abc import abstractmethod
from typing import (
    Any,
    Dict,
    Protocol,
    runtime_checkable,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

# ---------------------------------------------------------------------------
# Event types and intents with loop-level meaning
# ---------------------------------------------------------------------------
USER_INPUT = "user_input"
HUMAN_RESPONSE = "human_response"
TOOL_CALL = "tool_call"
TOOL_RESPONSE = "tool_response"
TOOL_ERROR = "tool_error"

RESERVED_EVENT_TYPES = frozenset({USER_INPUT, HUMAN_RESPONSE, TOOL_CALL, TOOL_RESPONSE, TOOL_ERROR})

DONE_FOR_NOW = "done_for_now"
REQUEST_MORE_INFORMATION = "request_more_information"

TERMINAL_INTENTS = frozenset({DONE_FOR_NOW, REQUEST_MORE_INFORMATION})


class NextStep(BaseModel):
    """
    A decision returned by the oracle.

    Only ``intent`` is declared; intent-specific fields are kept as extras in the order the oracle
    produced them, so they serialize back in declaration order.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    intent: str = Field(..., description="Tool intent or terminal intent")

    @property
    def is_terminal(self) -> bool:
        """True for ``done_for_now`` and ``request_more_information``."""
        return self.intent in TERMINAL_INTENTS

    def params(self) -> Dict[str, Any]:
        """Return the intent-specific fields, without ``intent`` itself."""
        return dict(self.__pydantic_extra__ or {})


@runtime_checkable
class ContextRenderable(Protocol):
    """Anything that knows how to present itself inside the oracle context."""

    def render_for_context(self) -> str:
        """Return the text inserted into the serialized thread."""


class ToolResult(BaseModel):
    """Base class for structured tool results."""

    kind: str

    @abstractmethod
    def render_for_context(self) -> str:
        """Return the text inserted into the serialized thread."""


class ToolErrorPayload(BaseModel):
    """Payload of a ``tool_error`` event."""

    model_config = ConfigDict(frozen=True)

    tool_intent: str
    message: str
