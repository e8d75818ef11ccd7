"""
Pydantic models for threadwise API requests and responses.
This module defines the request and response schemas used by the threadwise API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from threadwise.core.thread import Event


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class MessageRequest(BaseModel):
    """Incoming user message, or a human answer to a clarification request."""

    message: str = Field(..., description="Text from the human")


class ThreadResponse(BaseModel):
    """A thread and, when the agent is waiting on the human, where to answer."""

    thread_id: str
    events: List[Event]
    response_url: Optional[str] = Field(
        None, description="POST the human's answer here when the agent asked for more information"
    )
