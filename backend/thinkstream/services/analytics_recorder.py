"""
Session Analytics Recorder

Write-only observer of a generation session's lifecycle. Records
timestamps as they happen and derives every metric once, when the
record is sealed. It never influences the session's control flow.

Token counts are estimated at ~4 characters per token. This is a rough
approximation for English text with no precision guarantee; when a
backend reports exact counts, pass them to on_end() instead.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from thinkstream.models.analytics_types import (
    CompletionStatus,
    GenerationAnalytics,
    GenerationMode,
    GenerationParameters,
)
from thinkstream.models.outcome_types import (
    CompleteOutcome,
    GenerationOutcome,
)

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Rough token estimate: ~4 characters per token"""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class _AnalyticsDraft:
    """Mutable in-progress record, owned by a single recorder"""

    message_id: str
    conversation_id: str
    model_name: str | None = None
    generation_mode: GenerationMode = GenerationMode.STREAMING
    created_at: datetime | None = None
    started_at: float | None = None
    first_token_at: float | None = None
    thinking_started_at: float | None = None
    thinking_ended_at: float | None = None
    input_tokens: int = 0
    parameters: GenerationParameters = field(default_factory=GenerationParameters)
    speed_history: list[float] = field(default_factory=list)


class SessionAnalyticsRecorder:
    """
    Observer producing a GenerationAnalytics record for one session.

    Each lifecycle event is recorded at most once; repeats are no-ops.
    After on_end() the record is sealed and every further call is ignored.
    Not thread-safe: the session's own task is the only writer.
    """

    def __init__(
        self,
        message_id: str,
        conversation_id: str,
        model_name: str | None = None,
        generation_mode: GenerationMode = GenerationMode.STREAMING,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._draft = _AnalyticsDraft(
            message_id=message_id,
            conversation_id=conversation_id,
            model_name=model_name,
            generation_mode=generation_mode,
        )
        self._sealed: GenerationAnalytics | None = None

    @property
    def is_sealed(self) -> bool:
        return self._sealed is not None

    @property
    def record(self) -> GenerationAnalytics | None:
        """The sealed record, or None while the session is still running"""
        return self._sealed

    @property
    def started_at(self) -> float | None:
        return self._draft.started_at

    @property
    def first_token_at(self) -> float | None:
        return self._draft.first_token_at

    @property
    def thinking_started_at(self) -> float | None:
        return self._draft.thinking_started_at

    @property
    def thinking_ended_at(self) -> float | None:
        return self._draft.thinking_ended_at

    @property
    def speed_history(self) -> tuple[float, ...]:
        return tuple(self._draft.speed_history)

    def _accepting(self, event: str) -> bool:
        if self._sealed is not None:
            logger.warning(
                f"[Analytics] Ignoring {event} for sealed record "
                f"{self._draft.message_id}"
            )
            return False
        return True

    def on_start(
        self, parameters: GenerationParameters | None = None, prompt: str = ""
    ) -> None:
        """Record the session start and snapshot the generation parameters"""
        if not self._accepting("on_start") or self._draft.started_at is not None:
            return
        self._draft.started_at = self._clock()
        self._draft.created_at = datetime.now()
        self._draft.parameters = parameters or GenerationParameters()
        self._draft.input_tokens = estimate_token_count(prompt)
        logger.debug(f"[Analytics] Started record {self._draft.message_id}")

    def on_first_token(self) -> None:
        if not self._accepting("on_first_token") or self._draft.first_token_at is not None:
            return
        self._draft.first_token_at = self._clock()

    def on_thinking_enter(self) -> None:
        if (
            not self._accepting("on_thinking_enter")
            or self._draft.thinking_started_at is not None
        ):
            return
        self._draft.thinking_started_at = self._clock()

    def on_thinking_exit(self) -> None:
        if (
            not self._accepting("on_thinking_exit")
            or self._draft.thinking_ended_at is not None
        ):
            return
        self._draft.thinking_ended_at = self._clock()

    def on_token_milestone(self, total_tokens_so_far: int) -> None:
        """
        Append an instantaneous tokens/second sample.

        Args:
            total_tokens_so_far: Tokens received since the stream started
        """
        if not self._accepting("on_token_milestone"):
            return
        reference = self._draft.first_token_at
        if reference is None:
            reference = self._draft.started_at
        if reference is None:
            return
        elapsed = self._clock() - reference
        if elapsed > 0:
            self._draft.speed_history.append(total_tokens_so_far / elapsed)

    def on_end(
        self,
        outcome: GenerationOutcome | None = None,
        *,
        response_text: str = "",
        thinking_text: str | None = None,
        status: CompletionStatus | None = None,
        reported_output_tokens: int | None = None,
    ) -> GenerationAnalytics:
        """
        Seal the record.

        Args:
            outcome: Resolved outcome; None when the session failed or was cancelled
            response_text: Final visible response
            thinking_text: Final reasoning trace, if any
            status: Explicit completion status; derived from outcome when omitted
            reported_output_tokens: Exact completion token count from the backend

        Returns:
            The sealed GenerationAnalytics. Repeated calls return the same record.
        """
        if self._sealed is not None:
            logger.warning(
                f"[Analytics] Record {self._draft.message_id} already sealed"
            )
            return self._sealed

        draft = self._draft
        ended_at = self._clock()
        started_at = draft.started_at if draft.started_at is not None else ended_at
        total_duration = max(ended_at - started_at, 0.0)

        if status is None:
            if outcome is None:
                raise ValueError("on_end needs either an outcome or a status")
            status = (
                CompletionStatus.COMPLETE
                if isinstance(outcome, CompleteOutcome)
                else CompletionStatus.INTERRUPTED
            )

        time_to_first_token = None
        if draft.first_token_at is not None:
            time_to_first_token = draft.first_token_at - started_at

        thinking_duration = None
        response_duration = None
        if draft.thinking_started_at is not None and draft.thinking_ended_at is not None:
            thinking_duration = draft.thinking_ended_at - draft.thinking_started_at
            response_duration = total_duration - thinking_duration

        thinking_tokens = (
            estimate_token_count(thinking_text) if thinking_text else None
        )
        response_tokens = estimate_token_count(response_text)
        if reported_output_tokens is not None:
            output_tokens = reported_output_tokens
        else:
            output_tokens = response_tokens + (thinking_tokens or 0)

        average_speed = output_tokens / total_duration if total_duration > 0 else 0.0

        self._sealed = GenerationAnalytics(
            message_id=draft.message_id,
            conversation_id=draft.conversation_id,
            model_name=draft.model_name,
            created_at=draft.created_at or datetime.now(),
            started_at=started_at,
            first_token_at=draft.first_token_at,
            thinking_started_at=draft.thinking_started_at,
            thinking_ended_at=draft.thinking_ended_at,
            ended_at=ended_at,
            time_to_first_token=time_to_first_token,
            total_duration=total_duration,
            thinking_duration=thinking_duration,
            response_duration=response_duration,
            tokens_per_second_history=tuple(draft.speed_history),
            average_tokens_per_second=average_speed,
            input_tokens=draft.input_tokens,
            output_tokens=output_tokens,
            thinking_tokens=thinking_tokens,
            response_tokens=response_tokens,
            token_counts_estimated=reported_output_tokens is None,
            message_length=len(response_text),
            was_thinking_mode=draft.thinking_started_at is not None,
            completion_status=status,
            generation_mode=draft.generation_mode,
            generation_parameters=draft.parameters,
        )
        logger.info(
            f"[Analytics] Sealed {draft.message_id}: status={status.value}, "
            f"duration={total_duration:.3f}s, "
            f"tokens/sec={average_speed:.1f}"
        )
        return self._sealed
