"""
Stream Outcome Resolver

Decides how a finished stream becomes a final (response, thinking) pair.

A stream that ends inside an unclosed thinking span was cut off by the
token budget. That is a recoverable degradation: instead of an empty
answer, the user gets a short placeholder derived from the reasoning
text by a keyword heuristic. The placeholder is explicitly NOT model
output; the honest reasoning trace stays available alongside it.
"""

import logging
import re
from typing import Callable

from thinkstream.models.outcome_types import (
    CompleteOutcome,
    GenerationOutcome,
    TruncatedEmptyOutcome,
    TruncatedWithThinkingOutcome,
)
from thinkstream.models.stream_types import ExtractionState

from .stream_parser import ThinkingSegmentExtractor

logger = logging.getLogger(__name__)

TRUNCATED_EMPTY_RESPONSE = (
    "I need to think more about this. Could you rephrase your question?"
)
LONG_THINKING_FALLBACK = (
    "I was thinking through this carefully. "
    "Could you help me understand what you're looking for?"
)
SHORT_THINKING_FALLBACK = (
    "I'm processing your message. What would be most helpful for you?"
)

# Sentences opening with these are planning chatter, not content
META_THINKING_PREFIXES = ("i should", "let me", "i need to", "maybe i")

MIN_SENTENCE_LENGTH = 10
MAX_SENTENCE_LENGTH = 100
MAX_KEY_SENTENCES = 3
LONG_THINKING_THRESHOLD = 200

_SENTENCE_SPLIT = re.compile(r"[.!?]")

ResponseSynthesizer = Callable[[str], str]


def extract_key_sentences(
    thinking: str, limit: int = MAX_KEY_SENTENCES
) -> list[str]:
    """
    Pick substantive sentences out of a reasoning trace.

    A sentence qualifies when it is MIN..MAX_SENTENCE_LENGTH characters
    after trimming and does not start with a first-person planning phrase.

    Args:
        thinking: Reasoning text
        limit: Maximum number of sentences to return

    Returns:
        Up to `limit` qualifying sentences in order of appearance
    """
    sentences = []
    for raw in _SENTENCE_SPLIT.split(thinking):
        sentence = raw.strip()
        if not MIN_SENTENCE_LENGTH <= len(sentence) <= MAX_SENTENCE_LENGTH:
            continue
        if sentence.lower().startswith(META_THINKING_PREFIXES):
            continue
        sentences.append(sentence)
        if len(sentences) >= limit:
            break
    return sentences


def synthesize_truncated_response(thinking: str) -> str:
    """
    Default heuristic placeholder for a generation truncated mid-thinking.

    Never returns an empty string.
    """
    thinking = thinking.strip()
    key_sentences = extract_key_sentences(thinking)

    if key_sentences:
        first = key_sentences[0]
        lowered = thinking.lower()
        if "user" in lowered and "help" in lowered:
            return f"I'm here to help! {first}"
        if "question" in lowered:
            return f"That's a good question. {first}"
        return first

    if len(thinking) > LONG_THINKING_THRESHOLD:
        return LONG_THINKING_FALLBACK
    return SHORT_THINKING_FALLBACK


class StreamOutcomeResolver:
    """
    Turn the terminal buffer and extraction state into a GenerationOutcome.

    The response synthesizer is any callable from reasoning text to a
    placeholder response; the keyword heuristic is the default.
    """

    def __init__(
        self,
        extractor: ThinkingSegmentExtractor | None = None,
        response_synthesizer: ResponseSynthesizer | None = None,
    ):
        self.extractor = extractor or ThinkingSegmentExtractor()
        self.response_synthesizer = (
            response_synthesizer or synthesize_truncated_response
        )

    def finalize(
        self,
        final_buffer: str,
        final_state: ExtractionState,
        entered_thinking_at: float | None = None,
    ) -> GenerationOutcome:
        """
        Resolve the final outcome of a stream that ended normally.

        Args:
            final_buffer: Complete generated text
            final_state: Extraction state after the last fragment
            entered_thinking_at: Session clock reading when the thinking span
                opened, used for diagnostics only

        Returns:
            CompleteOutcome, TruncatedWithThinkingOutcome or TruncatedEmptyOutcome
        """
        if final_state != ExtractionState.IN_THINKING:
            scan = self.extractor.rescan(final_buffer, final=True)
            thinking = (scan.visible_thinking or "").strip() or None
            return CompleteOutcome(response=scan.visible_response, thinking=thinking)

        partial_thinking = self.extractor.thinking_text(final_buffer).strip()
        logger.warning(
            f"[OutcomeResolver] Stream ended inside thinking span "
            f"({len(partial_thinking)} chars buffered, "
            f"entered at {entered_thinking_at}) - handling as truncation"
        )

        if not partial_thinking:
            return TruncatedEmptyOutcome(fallback_response=TRUNCATED_EMPTY_RESPONSE)

        synthetic = self.response_synthesizer(partial_thinking)
        if not synthetic or not synthetic.strip():
            # Custom synthesizers may return nothing; keep the response non-empty
            logger.warning(
                "[OutcomeResolver] Synthesizer returned empty text, using default"
            )
            synthetic = synthesize_truncated_response(partial_thinking)

        logger.info(
            f"[OutcomeResolver] Synthesized {len(synthetic)} char placeholder response"
        )
        return TruncatedWithThinkingOutcome(
            partial_thinking=partial_thinking,
            synthetic_response=synthetic,
        )
