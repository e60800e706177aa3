"""
Session lifecycle types.

Defines the GenerationSession state machine states and the final
message/result pair handed to callers at termination.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from .analytics_types import GenerationAnalytics
from .outcome_types import GenerationOutcome


class SessionState(Enum):
    """GenerationSession states; the last four are terminal"""

    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    TRUNCATED = "truncated"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        SessionState.COMPLETED,
        SessionState.TRUNCATED,
        SessionState.FAILED,
        SessionState.CANCELLED,
    }
)


class FinalMessage(BaseModel):
    """Assistant message as it should be displayed and stored"""

    model_config = ConfigDict(frozen=True)

    message_id: str
    conversation_id: str
    role: str = "assistant"
    content: str
    thinking_content: str | None = None
    terminal_state: SessionState
    error: str | None = None


class SessionResult(BaseModel):
    """
    Final output of one GenerationSession.

    outcome is None when the session failed or was cancelled, since those
    paths bypass outcome resolution.
    """

    model_config = ConfigDict(frozen=True)

    message: FinalMessage
    outcome: GenerationOutcome | None = None
    analytics: GenerationAnalytics
