"""
Generation Analytics Type Models

Pydantic models for per-message generation analytics and the
conversation-level summary built from them.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CompletionStatus(str, Enum):
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"
    FAILED = "failed"
    TIMEOUT = "timeout"


class GenerationMode(str, Enum):
    STREAMING = "streaming"
    NON_STREAMING = "non_streaming"


class GenerationParameters(BaseModel):
    """Sampling parameters snapshot taken when a session starts"""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)


class GenerationAnalytics(BaseModel):
    """
    Sealed analytics record for one generation.

    Timestamps (started_at, first_token_at, ...) are readings of the
    session clock in seconds; created_at is wall-clock time for display
    and persistence. Token counts are estimates unless
    token_counts_estimated is False.
    """

    model_config = ConfigDict(frozen=True)

    # Identifiers
    message_id: str
    conversation_id: str
    model_name: str | None = None
    created_at: datetime

    # Lifecycle timestamps
    started_at: float
    first_token_at: float | None = None
    thinking_started_at: float | None = None
    thinking_ended_at: float | None = None
    ended_at: float

    # Timing metrics
    time_to_first_token: float | None = None
    total_duration: float
    thinking_duration: float | None = None
    response_duration: float | None = None

    # Token metrics
    tokens_per_second_history: tuple[float, ...] = ()
    average_tokens_per_second: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int | None = None
    response_tokens: int = 0
    token_counts_estimated: bool = True

    # Quality metrics
    message_length: int = 0
    was_thinking_mode: bool = False
    completion_status: CompletionStatus
    generation_mode: GenerationMode = GenerationMode.STREAMING
    generation_parameters: GenerationParameters = Field(
        default_factory=GenerationParameters
    )


class ConversationAnalytics(BaseModel):
    """Aggregate metrics across every sealed record of a conversation"""

    conversation_id: str
    message_count: int
    average_time_to_first_token: float | None = None
    average_tokens_per_second: float
    total_tokens_used: int
    models_used: list[str]
    thinking_mode_usage: float  # fraction of messages with a thinking span
    completion_rate: float  # fraction with status "complete"
    average_message_length: int
