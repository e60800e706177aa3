"""
Stream parser for separating thinking blocks from response text.

The extractor classifies the accumulated generation buffer into a
reasoning trace and a user-visible response. It always scans the whole
buffer, so delimiters split across fragments are handled without any
per-chunk bookkeeping.

Model Assumptions:
- At most ONE thinking block per response
- If present, thinking block appears FIRST: <think>...</think>response
- An opening tag after the block is closed is plain response text
"""

import re
from dataclasses import dataclass

from thinkstream.models.stream_types import ExtractionState


DEFAULT_OPEN_TAG = "<think>"
DEFAULT_CLOSE_TAG = "</think>"


@dataclass(frozen=True)
class ThinkingDelimiters:
    """
    Open/close delimiter pair for the reasoning span.

    Attributes:
        open_tag: Literal that opens the thinking span
        close_tag: Literal that closes it
        ignore_case: Match the literals case-insensitively
        assume_open: Treat the buffer as already inside the span, for models
            that never emit the opening tag themselves
    """

    open_tag: str = DEFAULT_OPEN_TAG
    close_tag: str = DEFAULT_CLOSE_TAG
    ignore_case: bool = False
    assume_open: bool = False

    def __post_init__(self):
        if not self.open_tag or not self.close_tag:
            raise ValueError("Thinking delimiters must be non-empty strings")


@dataclass(frozen=True)
class ThinkingScan:
    """Result of scanning a buffer"""

    visible_response: str
    visible_thinking: str | None
    state: ExtractionState

    @property
    def is_thinking(self) -> bool:
        return self.state == ExtractionState.IN_THINKING


class ThinkingSegmentExtractor:
    """
    Split an accumulated generation buffer into thinking and response text.

    rescan() is a pure function of the buffer and the delimiter config, so
    calling it after every append gives the same answer as calling it once
    on the final buffer.

    Usage:
        extractor = ThinkingSegmentExtractor()
        for fragment in stream:
            scan = extractor.rescan(accumulator.append(fragment))
    """

    def __init__(self, delimiters: ThinkingDelimiters | None = None):
        self.delimiters = delimiters or ThinkingDelimiters()
        flags = re.IGNORECASE if self.delimiters.ignore_case else 0
        self._open_pattern = re.compile(re.escape(self.delimiters.open_tag), flags)
        self._close_pattern = re.compile(re.escape(self.delimiters.close_tag), flags)

    def rescan(self, buffer: str, final: bool = False) -> ThinkingScan:
        """
        Classify the buffer.

        While the stream is still running, a response ending in a partial
        close tag (e.g. "</thi") holds that suffix back until it either
        completes and is stripped or turns out to be ordinary text.

        Args:
            buffer: Full text received so far
            final: True once the stream has ended; nothing is held back

        Returns:
            ThinkingScan with the visible response, the visible thinking text
            (None before the span opens) and the extraction state
        """
        thinking_start = self._find_thinking_start(buffer)

        if thinking_start is None:
            # No open tag yet: everything is provisional response text
            return ThinkingScan(
                visible_response=buffer,
                visible_thinking=None,
                state=ExtractionState.SCANNING,
            )

        close_match = self._close_pattern.search(buffer, thinking_start)

        if close_match is None:
            # Unclosed span: nothing leaks into the response
            return ThinkingScan(
                visible_response="",
                visible_thinking=buffer[thinking_start:],
                state=ExtractionState.IN_THINKING,
            )

        thinking = buffer[thinking_start : close_match.start()].strip()
        response = self._close_pattern.sub("", buffer[close_match.end() :])
        if not final:
            held = self._partial_close_length(response)
            if held:
                response = response[:-held]
        return ThinkingScan(
            visible_response=response.strip(),
            visible_thinking=thinking,
            state=ExtractionState.CLOSED,
        )

    def thinking_text(self, buffer: str) -> str:
        """Raw text after the open tag up to the close tag or end of buffer"""
        thinking_start = self._find_thinking_start(buffer)
        if thinking_start is None:
            return ""
        close_match = self._close_pattern.search(buffer, thinking_start)
        end = close_match.start() if close_match else len(buffer)
        return buffer[thinking_start:end]

    def _partial_close_length(self, text: str) -> int:
        """Length of the longest suffix of text that is a proper prefix of the close tag"""
        close_tag = self.delimiters.close_tag
        if self.delimiters.ignore_case:
            text, close_tag = text.lower(), close_tag.lower()
        for length in range(min(len(close_tag) - 1, len(text)), 0, -1):
            if text.endswith(close_tag[:length]):
                return length
        return 0

    def _find_thinking_start(self, buffer: str) -> int | None:
        """Index right after the open tag, or None if the span has not opened"""
        open_match = self._open_pattern.search(buffer)
        if self.delimiters.assume_open:
            # An explicit open tag only counts if it precedes any close tag
            close_match = self._close_pattern.search(buffer)
            if open_match and (
                close_match is None or open_match.start() < close_match.start()
            ):
                return open_match.end()
            return 0
        if open_match:
            return open_match.end()
        return None
