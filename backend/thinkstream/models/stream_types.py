"""
Type definitions for structured generation streaming.

Provides strong typing for the thinking/response split that is pushed to
the UI after every fragment.
"""

from enum import Enum
from typing import Any, Literal, TypedDict

from pydantic import BaseModel, ConfigDict


class ExtractionState(Enum):
    """Delimiter scanner states. Transitions only move forward."""

    SCANNING = "scanning"
    IN_THINKING = "in_thinking"
    CLOSED = "closed"


class MessageSnapshot(BaseModel):
    """
    Immutable view of the in-progress assistant message.

    A new snapshot is produced for every fragment; readers hold the latest
    one by reference and never mutate it.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str
    conversation_id: str
    version: int
    visible_response: str = ""
    visible_thinking: str | None = None
    is_thinking: bool = False
    extraction_state: ExtractionState = ExtractionState.SCANNING


class StreamEvent(TypedDict, total=False):
    """
    A single server-sent event frame.

    Fields:
        type: Frame kind (absent on control frames such as done/cancelled)
        snapshot: Serialized MessageSnapshot for "snapshot" frames
        message/outcome/analytics: Serialized final result for "final" frames
    """

    type: Literal["snapshot", "final"]
    snapshot: dict[str, Any]
    message: dict[str, Any]
    outcome: dict[str, Any] | None
    analytics: dict[str, Any]
