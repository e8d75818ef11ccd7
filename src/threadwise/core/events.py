"""
Progress events produced by the streaming agent loop.

For one loop iteration the stream is a run of ``partial`` events, then optionally ``tool_start``
followed by exactly one of ``tool_complete`` / ``tool_error``, then exactly one ``complete``.  When a
terminal intent is reached the stream ends with a :class:`LoopDone` sentinel carrying the thread.
"""

from dataclasses import dataclass
from typing import (
    Any,
    Literal,
    Union,
)

from pydantic import BaseModel

from threadwise.core.schema import NextStep
from threadwise.core.thread import Thread


class PartialEvent(BaseModel):
    """The oracle's in-progress message so far (a growing prefix)."""

    type: Literal["partial"] = "partial"
    message: str


class ToolStartEvent(BaseModel):
    """Dispatch is about to run the executor for *intent*."""

    type: Literal["tool_start"] = "tool_start"
    intent: str
    step: NextStep


class ToolCompleteEvent(BaseModel):
    """The executor returned *result*."""

    type: Literal["tool_complete"] = "tool_complete"
    intent: str
    result: Any = None


class ToolErrorEvent(BaseModel):
    """The executor failed, or no executor exists for *intent*."""

    type: Literal["tool_error"] = "tool_error"
    intent: str
    message: str


class CompleteEvent(BaseModel):
    """The iteration is fully resolved and recorded in the thread."""

    type: Literal["complete"] = "complete"
    data: NextStep
    outcome: Any = None


LoopEvent = Union[PartialEvent, ToolStartEvent, ToolCompleteEvent, ToolErrorEvent, CompleteEvent]


@dataclass
class LoopDone:
    """Final value of a streaming pass: the updated thread."""

    thread: Thread


class PartialDiffer:
    """
    Turns a series of growing partial messages into the new text of each one.

    >>> differ = PartialDiffer()
    >>> differ.feed("Hel"), differ.feed("Hello")
    ('Hel', 'lo')
    """

    def __init__(self) -> None:
        self._seen = ""

    def feed(self, message: str) -> str:
        """Return the part of *message* not emitted before."""
        if message.startswith(self._seen):
            delta = message[len(self._seen) :]
        else:
            # The producer restarted its message; emit it whole.
            delta = message
        self._seen = message
        return delta

    def reset(self) -> None:
        """Forget the previous message (start of a new iteration)."""
        self._seen = ""

    @property
    def emitted(self) -> bool:
        """True when something was emitted since the last reset."""
        return bool(self._seen)
