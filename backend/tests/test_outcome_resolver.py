"""Tests for StreamOutcomeResolver and the truncation response heuristic."""

import pytest

from thinkstream.models.outcome_types import (
    CompleteOutcome,
    TruncatedEmptyOutcome,
    TruncatedWithThinkingOutcome,
)
from thinkstream.models.stream_types import ExtractionState
from thinkstream.services.outcome_resolver import (
    LONG_THINKING_FALLBACK,
    SHORT_THINKING_FALLBACK,
    TRUNCATED_EMPTY_RESPONSE,
    StreamOutcomeResolver,
    extract_key_sentences,
    synthesize_truncated_response,
)


@pytest.fixture
def resolver() -> StreamOutcomeResolver:
    return StreamOutcomeResolver()


class TestCompleteOutcomes:
    def test_no_thinking_passthrough(self, resolver) -> None:
        outcome = resolver.finalize("Hello world", ExtractionState.SCANNING)
        assert outcome == CompleteOutcome(response="Hello world", thinking=None)

    def test_closed_block(self, resolver) -> None:
        outcome = resolver.finalize(
            "<think>I should check the facts.</think>The answer is 42.",
            ExtractionState.CLOSED,
        )
        assert isinstance(outcome, CompleteOutcome)
        assert outcome.response == "The answer is 42."
        assert outcome.thinking == "I should check the facts."
        assert outcome.display_response == "The answer is 42."

    def test_trailing_partial_close_tag_kept_in_final_response(self, resolver) -> None:
        outcome = resolver.finalize("<think>a</think>Use x</th", ExtractionState.CLOSED)
        assert outcome.response == "Use x</th"

    def test_empty_thinking_reported_as_absent(self, resolver) -> None:
        outcome = resolver.finalize("<think>  </think>answer", ExtractionState.CLOSED)
        assert outcome.thinking is None
        assert outcome.thinking_text is None


class TestTruncatedOutcomes:
    def test_truncated_with_thinking(self, resolver) -> None:
        outcome = resolver.finalize(
            "<think>Because the user asked about pricing",
            ExtractionState.IN_THINKING,
            entered_thinking_at=1.0,
        )
        assert isinstance(outcome, TruncatedWithThinkingOutcome)
        assert outcome.partial_thinking == "Because the user asked about pricing"
        assert "Because the user asked about pricing" in outcome.synthetic_response
        assert outcome.display_response == outcome.synthetic_response
        assert outcome.thinking_text == outcome.partial_thinking

    def test_truncated_empty(self, resolver) -> None:
        outcome = resolver.finalize("<think>", ExtractionState.IN_THINKING)
        assert outcome == TruncatedEmptyOutcome(fallback_response=TRUNCATED_EMPTY_RESPONSE)
        assert outcome.fallback_response == (
            "I need to think more about this. Could you rephrase your question?"
        )

    def test_whitespace_only_thinking_is_empty(self, resolver) -> None:
        outcome = resolver.finalize("<think>\n\n  ", ExtractionState.IN_THINKING)
        assert isinstance(outcome, TruncatedEmptyOutcome)

    @pytest.mark.parametrize(
        "thinking",
        [
            "a",
            "ok.",
            "I should look this up. Let me check.",
            "x" * 500,
            "Hmm",
            "!!!???...",
        ],
    )
    def test_truncation_never_yields_empty_response(self, resolver, thinking) -> None:
        outcome = resolver.finalize(f"<think>{thinking}", ExtractionState.IN_THINKING)
        assert isinstance(outcome, TruncatedWithThinkingOutcome)
        assert outcome.synthetic_response.strip()

    def test_custom_synthesizer_is_used(self) -> None:
        resolver = StreamOutcomeResolver(response_synthesizer=lambda t: f"[{len(t)}]")
        outcome = resolver.finalize("<think>abcd", ExtractionState.IN_THINKING)
        assert outcome.synthetic_response == "[4]"

    def test_empty_custom_synthesizer_falls_back(self) -> None:
        resolver = StreamOutcomeResolver(response_synthesizer=lambda t: "  ")
        outcome = resolver.finalize("<think>short", ExtractionState.IN_THINKING)
        assert outcome.synthetic_response == SHORT_THINKING_FALLBACK


class TestSynthesizeTruncatedResponse:
    def test_sentence_used_verbatim_by_default(self) -> None:
        assert (
            synthesize_truncated_response("The capital of France is Paris. More text")
            == "The capital of France is Paris"
        )

    def test_user_and_help_framing(self) -> None:
        response = synthesize_truncated_response(
            "The user wants help with a recipe. Pasta needs salted water"
        )
        assert response == "I'm here to help! The user wants help with a recipe"

    def test_question_framing(self) -> None:
        response = synthesize_truncated_response(
            "This question is about orbital mechanics. Gravity matters"
        )
        assert response == "That's a good question. This question is about orbital mechanics"

    def test_meta_sentences_are_skipped(self) -> None:
        response = synthesize_truncated_response(
            "Let me think about this carefully. I should be thorough here. "
            "Water boils at 100 degrees at sea level."
        )
        assert response == "Water boils at 100 degrees at sea level"

    def test_long_fallback_without_key_sentences(self) -> None:
        thinking = "I should " + "ponder " * 60
        assert len(thinking) > 200
        assert synthesize_truncated_response(thinking) == LONG_THINKING_FALLBACK

    def test_short_fallback_without_key_sentences(self) -> None:
        assert synthesize_truncated_response("Hmm. Ok.") == SHORT_THINKING_FALLBACK


class TestExtractKeySentences:
    def test_length_bounds(self) -> None:
        text = "Too short. " + "y" * 101 + ". This one fits nicely."
        assert extract_key_sentences(text) == ["This one fits nicely"]

    def test_at_most_three(self) -> None:
        text = ". ".join(f"Sentence number {i} is here" for i in range(6))
        assert len(extract_key_sentences(text)) == 3

    def test_meta_prefix_case_insensitive(self) -> None:
        assert extract_key_sentences("MAYBE I can reuse the cache here") == []
        assert extract_key_sentences("i need to check the docs first") == []
