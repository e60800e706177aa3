"""Conversation-level aggregation of sealed generation analytics."""

from collections.abc import Sequence

from thinkstream.models.analytics_types import (
    CompletionStatus,
    ConversationAnalytics,
    GenerationAnalytics,
)


def summarize_conversation(
    conversation_id: str, records: Sequence[GenerationAnalytics]
) -> ConversationAnalytics | None:
    """
    Aggregate the per-message records of one conversation.

    Time to first token is averaged only over records that have one.

    Returns:
        ConversationAnalytics, or None if there are no records
    """
    if not records:
        return None

    count = len(records)
    ttfts = [r.time_to_first_token for r in records if r.time_to_first_token is not None]
    average_ttft = sum(ttfts) / len(ttfts) if ttfts else None

    models_used = sorted({r.model_name for r in records if r.model_name})
    thinking_count = sum(1 for r in records if r.was_thinking_mode)
    completed = sum(
        1 for r in records if r.completion_status == CompletionStatus.COMPLETE
    )

    return ConversationAnalytics(
        conversation_id=conversation_id,
        message_count=count,
        average_time_to_first_token=average_ttft,
        average_tokens_per_second=sum(r.average_tokens_per_second for r in records)
        / count,
        total_tokens_used=sum(r.input_tokens + r.output_tokens for r in records),
        models_used=models_used,
        thinking_mode_usage=thinking_count / count,
        completion_rate=completed / count,
        average_message_length=sum(r.message_length for r in records) // count,
    )
