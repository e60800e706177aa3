"""
Generation outcome variants.

Produced once per session when the stream ends normally. A stream that
stops inside an unclosed thinking span is modelled as data here, not as
an error.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class CompleteOutcome(BaseModel):
    """Delimiter pair closed normally, or never opened."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["complete"] = "complete"
    response: str
    thinking: str | None = None

    @property
    def display_response(self) -> str:
        return self.response

    @property
    def thinking_text(self) -> str | None:
        return self.thinking


class TruncatedWithThinkingOutcome(BaseModel):
    """
    Stream ended inside the thinking span with buffered reasoning.

    synthetic_response is a heuristic placeholder derived from the
    reasoning text. It is not model output.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["truncated_with_thinking"] = "truncated_with_thinking"
    partial_thinking: str
    synthetic_response: str

    @property
    def display_response(self) -> str:
        return self.synthetic_response

    @property
    def thinking_text(self) -> str | None:
        return self.partial_thinking


class TruncatedEmptyOutcome(BaseModel):
    """Stream ended inside the thinking span with nothing usable."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["truncated_empty"] = "truncated_empty"
    fallback_response: str

    @property
    def display_response(self) -> str:
        return self.fallback_response

    @property
    def thinking_text(self) -> str | None:
        return None


GenerationOutcome = Annotated[
    CompleteOutcome | TruncatedWithThinkingOutcome | TruncatedEmptyOutcome,
    Field(discriminator="kind"),
]
