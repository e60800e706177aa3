"""
Generation Session

Orchestrates one request/response exchange: consumes backend fragments,
keeps the thinking/response split current, drives the analytics
observer, and resolves the final message when the stream terminates.

State machine:
    IDLE -> STREAMING -> FINALIZING -> COMPLETED | TRUNCATED
    STREAMING -> FAILED      (backend error, partial buffer discarded)
    STREAMING -> CANCELLED   (user stop, last snapshot kept as-is)

A session is driven by exactly one task. The extractor and the analytics
recorder have no internal locking; other tasks only ever read the
immutable MessageSnapshot objects the session hands out.
"""

import asyncio
import inspect
import logging
import time
import uuid
from typing import AsyncGenerator, Awaitable, Callable

from thinkstream.models.analytics_types import (
    CompletionStatus,
    GenerationAnalytics,
    GenerationMode,
    GenerationParameters,
)
from thinkstream.models.outcome_types import CompleteOutcome
from thinkstream.models.session_types import FinalMessage, SessionResult, SessionState
from thinkstream.models.stream_types import ExtractionState, MessageSnapshot

from .analytics_recorder import SessionAnalyticsRecorder
from .errors import SessionStateError
from .outcome_resolver import ResponseSynthesizer, StreamOutcomeResolver
from .stream_parser import ThinkingDelimiters, ThinkingSegmentExtractor
from .stream_producers import StreamProducer
from .token_accumulator import TokenAccumulator

logger = logging.getLogger(__name__)

# Tokens between two tokens/second samples
SESSION_MILESTONE_INTERVAL = 10

_STATE_ORDER = {
    ExtractionState.SCANNING: 0,
    ExtractionState.IN_THINKING: 1,
    ExtractionState.CLOSED: 2,
}

SnapshotCallback = Callable[[MessageSnapshot], Awaitable[None] | None]


class GenerationSession:
    """
    One generation, from submission to a terminal outcome.

    Usage:
        session = GenerationSession(conversation_id, producer, parameters=params)
        async for snapshot in session.stream():
            push_to_ui(snapshot)
        store(session.result)
    """

    def __init__(
        self,
        conversation_id: str,
        producer: StreamProducer,
        *,
        parameters: GenerationParameters | None = None,
        prompt: str = "",
        delimiters: ThinkingDelimiters | None = None,
        response_synthesizer: ResponseSynthesizer | None = None,
        model_name: str | None = None,
        message_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        milestone_interval: int = SESSION_MILESTONE_INTERVAL,
    ):
        self.conversation_id = conversation_id
        self.message_id = message_id or str(uuid.uuid4())
        self.parameters = parameters or GenerationParameters()
        self.prompt = prompt
        self.milestone_interval = milestone_interval
        self.state = SessionState.IDLE
        self.result: SessionResult | None = None

        self._producer = producer
        self._accumulator = TokenAccumulator()
        self._extractor = ThinkingSegmentExtractor(delimiters)
        self._resolver = StreamOutcomeResolver(self._extractor, response_synthesizer)
        self._recorder = SessionAnalyticsRecorder(
            message_id=self.message_id,
            conversation_id=conversation_id,
            model_name=model_name,
            generation_mode=(
                GenerationMode.STREAMING
                if getattr(producer, "streaming", True)
                else GenerationMode.NON_STREAMING
            ),
            clock=clock,
        )
        self._extraction_state = ExtractionState.SCANNING
        self._token_count = 0
        self._snapshot = MessageSnapshot(
            message_id=self.message_id,
            conversation_id=conversation_id,
            version=0,
        )
        self._cancel_requested = False
        self._cancel_status = CompletionStatus.INTERRUPTED

    @property
    def snapshot(self) -> MessageSnapshot:
        """Latest view of the in-progress message"""
        return self._snapshot

    @property
    def extraction_state(self) -> ExtractionState:
        return self._extraction_state

    @property
    def analytics(self) -> GenerationAnalytics | None:
        return self._recorder.record

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal

    async def run(self, on_update: SnapshotCallback | None = None) -> SessionResult:
        """
        Consume the whole stream, passing each snapshot to on_update.

        Returns:
            The SessionResult of the terminal state
        """
        async for snapshot in self.stream():
            if on_update is not None:
                maybe_awaitable = on_update(snapshot)
                if inspect.isawaitable(maybe_awaitable):
                    await maybe_awaitable
        return self.result

    async def stream(self) -> AsyncGenerator[MessageSnapshot, None]:
        """
        Drive the session, yielding a new snapshot per fragment.

        Backend errors end the session as FAILED instead of propagating.
        When iteration finishes, self.result holds the final message and
        sealed analytics.

        Raises:
            SessionStateError: If the session is not IDLE
        """
        if self.state != SessionState.IDLE:
            raise SessionStateError(
                f"Session {self.message_id} cannot start from state {self.state.value}"
            )

        self.state = SessionState.STREAMING
        self._recorder.on_start(self.parameters, self.prompt)
        logger.info(
            f"[GenerationSession] Started {self.message_id} "
            f"for conversation {self.conversation_id}"
        )

        fragments = self._producer.fragments()
        try:
            async for fragment in fragments:
                if self._cancel_requested:
                    break
                if not fragment:
                    continue
                yield self._consume(fragment)
                if self._cancel_requested:
                    break
        except asyncio.CancelledError:
            logger.warning(f"[GenerationSession] {self.message_id} task cancelled")
            self._finish_cancelled()
            raise
        except GeneratorExit:
            # Consumer stopped iterating before the stream ended
            self._finish_cancelled()
            raise
        except Exception as e:
            if self._cancel_requested:
                # Producers may raise when torn down by cancel()
                logger.info(
                    f"[GenerationSession] {self.message_id} stream closed after cancel: {e}"
                )
                self._finish_cancelled()
                return
            logger.error(
                f"[GenerationSession] Backend failure in {self.message_id}: {e}",
                exc_info=True,
            )
            self._finish_failed(e)
            return
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

        if self._cancel_requested:
            self._finish_cancelled()
        else:
            self._finalize()

    def cancel(self, status: CompletionStatus = CompletionStatus.INTERRUPTED) -> bool:
        """
        Request cancellation.

        Fragment consumption stops at the next fragment boundary. The last
        snapshot is kept as the visible message.

        Args:
            status: INTERRUPTED for a user stop, TIMEOUT for a caller deadline

        Returns:
            False if the session had already terminated
        """
        if self.state.is_terminal:
            return False
        self._cancel_requested = True
        self._cancel_status = status
        self._producer.cancel()
        logger.info(
            f"[GenerationSession] Cancellation requested for {self.message_id} "
            f"({status.value})"
        )
        if self.state == SessionState.IDLE:
            self._finish_cancelled()
        return True

    def _consume(self, fragment: str) -> MessageSnapshot:
        buffer = self._accumulator.append(fragment)
        self._token_count += 1
        self._recorder.on_first_token()

        scan = self._extractor.rescan(buffer)
        self._advance_extraction_state(scan.state)

        if self._token_count % self.milestone_interval == 0:
            self._recorder.on_token_milestone(self._token_count)

        self._snapshot = MessageSnapshot(
            message_id=self.message_id,
            conversation_id=self.conversation_id,
            version=self._snapshot.version + 1,
            visible_response=scan.visible_response,
            visible_thinking=scan.visible_thinking,
            is_thinking=scan.is_thinking,
            extraction_state=scan.state,
        )
        logger.debug(
            f"[GenerationSession] {self.message_id} v{self._snapshot.version}: "
            f"{len(buffer)} chars buffered, state={scan.state.value}"
        )
        return self._snapshot

    def _advance_extraction_state(self, new_state: ExtractionState) -> None:
        old_state = self._extraction_state
        if _STATE_ORDER[new_state] <= _STATE_ORDER[old_state]:
            return

        if old_state == ExtractionState.SCANNING:
            self._recorder.on_thinking_enter()
            logger.info(f"[GenerationSession] {self.message_id} entered thinking")
        if new_state == ExtractionState.CLOSED:
            self._recorder.on_thinking_exit()
            logger.info(f"[GenerationSession] {self.message_id} thinking complete")
        self._extraction_state = new_state

    def _finalize(self) -> None:
        self.state = SessionState.FINALIZING
        outcome = self._resolver.finalize(
            self._accumulator.text,
            self._extraction_state,
            self._recorder.thinking_started_at,
        )
        terminal = (
            SessionState.COMPLETED
            if isinstance(outcome, CompleteOutcome)
            else SessionState.TRUNCATED
        )
        analytics = self._recorder.on_end(
            outcome,
            response_text=outcome.display_response,
            thinking_text=outcome.thinking_text,
            reported_output_tokens=getattr(
                self._producer, "reported_output_tokens", None
            ),
        )
        message = FinalMessage(
            message_id=self.message_id,
            conversation_id=self.conversation_id,
            content=outcome.display_response,
            thinking_content=outcome.thinking_text,
            terminal_state=terminal,
        )
        self._terminate(
            terminal, SessionResult(message=message, outcome=outcome, analytics=analytics)
        )

    def _finish_failed(self, error: BaseException) -> None:
        analytics = self._recorder.on_end(status=CompletionStatus.FAILED)
        message = FinalMessage(
            message_id=self.message_id,
            conversation_id=self.conversation_id,
            content=f"Generation failed: {error}",
            terminal_state=SessionState.FAILED,
            error=str(error),
        )
        self._terminate(
            SessionState.FAILED, SessionResult(message=message, analytics=analytics)
        )

    def _finish_cancelled(self) -> None:
        if self.state.is_terminal:
            return
        snapshot = self._snapshot
        analytics = self._recorder.on_end(
            response_text=snapshot.visible_response,
            thinking_text=snapshot.visible_thinking,
            status=self._cancel_status,
        )
        message = FinalMessage(
            message_id=self.message_id,
            conversation_id=self.conversation_id,
            content=snapshot.visible_response,
            thinking_content=snapshot.visible_thinking,
            terminal_state=SessionState.CANCELLED,
        )
        self._terminate(
            SessionState.CANCELLED, SessionResult(message=message, analytics=analytics)
        )

    def _terminate(self, terminal: SessionState, result: SessionResult) -> None:
        self._accumulator.clear()
        self.result = result
        self.state = terminal
        logger.info(
            f"[GenerationSession] {self.message_id} finished as {terminal.value}"
        )
