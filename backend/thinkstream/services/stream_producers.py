"""
Stream producer boundary.

A producer is a lazy, finite, non-restartable sequence of text fragments
that ends normally or by raising. Sessions call cancel() on it when the
user stops a generation.
"""

import logging
from typing import AsyncIterator, Iterable, Protocol, runtime_checkable

from .errors import SessionStateError

logger = logging.getLogger(__name__)


@runtime_checkable
class StreamProducer(Protocol):
    """What GenerationSession needs from a generation backend"""

    streaming: bool

    def fragments(self) -> AsyncIterator[str]:
        """Yield text fragments in arrival order"""
        ...

    def cancel(self) -> None:
        """Stop producing; pending iteration should end promptly"""
        ...

    @property
    def reported_output_tokens(self) -> int | None:
        """Exact completion token count, if the backend reported one"""
        ...


class StaticStreamProducer:
    """
    Producer over a fixed list of fragments.

    Used for replaying recorded generations and for the non-streaming
    path, where the whole completion arrives as one fragment.
    """

    def __init__(
        self,
        fragments: Iterable[str],
        streaming: bool = True,
        reported_output_tokens: int | None = None,
    ):
        self._fragments = list(fragments)
        self.streaming = streaming
        self._reported_output_tokens = reported_output_tokens
        self._consumed = False
        self.cancelled = False

    @classmethod
    def single(cls, text: str, reported_output_tokens: int | None = None):
        """Non-streaming completion delivered as a single fragment"""
        return cls([text], streaming=False, reported_output_tokens=reported_output_tokens)

    @property
    def reported_output_tokens(self) -> int | None:
        return self._reported_output_tokens

    async def fragments(self) -> AsyncIterator[str]:
        if self._consumed:
            raise SessionStateError("Stream producer cannot be restarted")
        self._consumed = True
        for fragment in self._fragments:
            if self.cancelled:
                logger.debug("[StaticProducer] Cancelled, stopping replay")
                return
            yield fragment

    def cancel(self) -> None:
        self.cancelled = True
