"""
Services Package

This package contains the generation session core (delimiter scanning,
outcome resolution, analytics) and the collaborators around it: the
OpenAI-compatible backend adapter, the per-conversation session registry
and the SQLite analytics store.
"""

from .analytics_recorder import SessionAnalyticsRecorder, estimate_token_count
from .analytics_store import AnalyticsStore
from .errors import (
    BackendFailureError,
    GenerationSessionError,
    SessionAlreadyActiveError,
    SessionStateError,
)
from .generation_session import GenerationSession
from .outcome_resolver import StreamOutcomeResolver, synthesize_truncated_response
from .session_registry import SessionRegistry, session_registry
from .stream_parser import ThinkingDelimiters, ThinkingSegmentExtractor
from .stream_producers import StaticStreamProducer, StreamProducer
from .token_accumulator import TokenAccumulator

__all__ = [
    "AnalyticsStore",
    "BackendFailureError",
    "GenerationSession",
    "GenerationSessionError",
    "SessionAlreadyActiveError",
    "SessionAnalyticsRecorder",
    "SessionRegistry",
    "SessionStateError",
    "StaticStreamProducer",
    "StreamOutcomeResolver",
    "StreamProducer",
    "ThinkingDelimiters",
    "ThinkingSegmentExtractor",
    "TokenAccumulator",
    "estimate_token_count",
    "session_registry",
    "synthesize_truncated_response",
]
