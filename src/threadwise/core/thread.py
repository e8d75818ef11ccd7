"""
Append-only event log for one conversation.

A :class:`Thread` is the only record of what has happened in a conversation.  It is rendered for the
oracle by :meth:`Thread.serialize_for_llm`, one ``<tag>...</tag>`` block per event:

* the tag is the payload's ``intent``, except for responses, errors and human/user messages, which
  keep their event type;
* the body comes from ``render_for_context()`` when the payload has one, otherwise from the payload
  fields (``name: value`` per line) or a plain string conversion.

Serialization never raises and depends only on the event list, so it is safe to call on every
iteration of the loop.
"""

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from threadwise.common import stringify
from threadwise.core.schema import (
    RESERVED_EVENT_TYPES,
    TOOL_CALL,
    ContextRenderable,
)

logger = logging.getLogger(__name__)

NO_DETAILS = "(No details)"
UNSERIALIZABLE = "[Unserializable Object]"
UNRENDERABLE = "[Unrenderable Result]"

# A tool_call renders under its intent; these keep their own name even when the payload has one.
STRUCTURAL_EVENT_TYPES = RESERVED_EVENT_TYPES - {TOOL_CALL}


class Event(BaseModel):
    """One immutable record in a thread."""

    model_config = ConfigDict(frozen=True)

    type: str
    data: Any = None


class Thread(BaseModel):
    """Ordered, append-only sequence of events."""

    events: List[Event] = Field(default_factory=list)

    def append(self, event_type: str, data: Any) -> Event:
        """Append a new event and return it."""
        event = Event(type=event_type, data=data)
        self.events.append(event)
        return event

    @property
    def last_event(self) -> Event | None:
        """The most recent event, or *None* for an empty thread."""
        return self.events[-1] if self.events else None

    def serialize_for_llm(self) -> str:
        """Render the whole thread as the oracle's context block."""
        return serialize_events(self.events)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def serialize_events(events: Sequence[Event]) -> str:
    """Render *events* in order, separated by a blank line."""
    return "\n\n".join(serialize_event(event) for event in events)


def serialize_event(event: Event) -> str:
    """Render a single event as a ``<tag>`` block."""
    data = event.data
    fields = _structured_fields(data)
    tag = event.type

    intent = fields.get("intent") if fields is not None else None
    if isinstance(intent, str) and event.type not in STRUCTURAL_EVENT_TYPES:
        tag = intent

    if isinstance(data, ContextRenderable):
        body = _render(data)
    elif fields is not None:
        lines = [
            f"{name}: {_field_value(value)}" for name, value in fields.items() if name != "intent"
        ]
        body = "\n".join(lines)
        if not lines and isinstance(intent, str):
            body = f"(No parameters for intent: {intent})"
    else:
        body = _plain(data)

    if not body.strip():
        body = NO_DETAILS

    lines = [line.strip() for line in body.splitlines()]
    return "\n".join([f"<{tag}>", *lines, f"</{tag}>"])


def _structured_fields(data: Any) -> Dict[str, Any] | None:
    """Return the payload's fields in declaration order, or *None* for primitives."""
    if isinstance(data, BaseModel):
        # Iterating a model yields declared fields first, then extras, both in order.
        return dict(data)
    if isinstance(data, dict):
        return {str(key): value for key, value in data.items()}
    return None


def _render(data: ContextRenderable) -> str:
    try:
        return str(data.render_for_context())
    except Exception:  # pylint: disable=broad-except
        logger.warning("render_for_context() failed for %s", type(data).__name__, exc_info=True)
        return UNRENDERABLE


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _field_value(value: Any) -> str:
    """Scalars render as plain text, nested structures as compact JSON."""
    if isinstance(value, (dict, list, tuple, BaseModel)):
        try:
            return json.dumps(value, separators=(",", ":"), default=_json_default, ensure_ascii=False)
        except (TypeError, ValueError):
            return UNSERIALIZABLE
    return _plain(value)


def _plain(value: Any) -> str:
    try:
        return stringify(value)
    except Exception:  # pylint: disable=broad-except
        logger.warning("Could not convert %s to text", type(value).__name__, exc_info=True)
        return UNSERIALIZABLE
