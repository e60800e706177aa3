import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..models.analytics_types import GenerationParameters
from ..models.session_types import SessionResult, SessionState
from ..models.stream_types import MessageSnapshot, StreamEvent
from ..services.analytics_store import AnalyticsStore
from ..services.chat_service import chat_service
from ..services.conversation_analytics import summarize_conversation
from ..services.errors import SessionAlreadyActiveError
from ..services.generation_session import GenerationSession
from ..services.session_registry import session_registry

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])

# Initialize services
analytics_store = AnalyticsStore()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    chat_history: list[dict[str, str]] | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)
    stream: bool = True


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _snapshot_event(snapshot: MessageSnapshot) -> StreamEvent:
    return {"type": "snapshot", "snapshot": snapshot.model_dump(mode="json")}


def _final_event(result: SessionResult) -> StreamEvent:
    return {
        "type": "final",
        "message": result.message.model_dump(mode="json"),
        "outcome": result.outcome.model_dump(mode="json") if result.outcome else None,
        "analytics": result.analytics.model_dump(mode="json"),
    }


@router.get("/chat/health")
async def health_check() -> dict[str, object]:
    """
    Check if the generation backend is reachable
    """
    try:
        return await chat_service.test_connection()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"AI service error: {str(e)}")


@router.post("/chat")
async def chat(request: ChatRequest) -> StreamingResponse:
    """
    Generate an assistant reply with a streaming response.
    Each frame carries the full current split of thinking and response text.

    Stream format:
        data: {"request_id": "...", "message_id": "..."}
        data: {"type": "snapshot", "snapshot": {"visible_response": "...", "visible_thinking": "...", ...}}
        data: {"cancelled": true}                      (only after a stop request)
        data: {"type": "final", "message": {...}, "outcome": {...}, "analytics": {...}}
        data: {"done": true}
    """
    parameters = GenerationParameters(
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        top_p=request.top_p,
        top_k=request.top_k,
    )
    producer = chat_service.create_producer(
        message=request.message,
        chat_history=request.chat_history,
        parameters=parameters,
        streaming=request.stream,
    )
    session = GenerationSession(
        request.conversation_id,
        producer,
        parameters=parameters,
        prompt=request.message,
        delimiters=chat_service.delimiters,
        model_name=chat_service.config.model_name or None,
    )

    try:
        session_registry.register(session)
    except SessionAlreadyActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))

    conversation_id = request.conversation_id
    logger.info(
        f"[Chat Router] Registered session {session.message_id} for {conversation_id}"
    )

    async def generate_response():
        snapshots = session.stream()
        saved = False
        session_registry.set_task(conversation_id, asyncio.current_task())
        try:
            # Send the identifiers first
            yield _sse({"request_id": session.message_id, "message_id": session.message_id})

            # A stop request can land before streaming starts
            if session.result is None:
                async for snapshot in snapshots:
                    yield _sse(_snapshot_event(snapshot))

            result = session.result
            saved = analytics_store.save_result(result)
            if result.message.terminal_state == SessionState.CANCELLED:
                logger.info(f"[Chat Router] Session {session.message_id} cancelled")
                yield _sse({"cancelled": True})
            yield _sse(_final_event(result))

            # Send end-of-stream marker
            yield _sse({"done": True})
            logger.info(f"[Chat Router] Completed session {session.message_id}")

        except asyncio.CancelledError:
            logger.warning(f"[Chat Router] Session {session.message_id} asyncio cancelled")
            raise
        except Exception as e:
            logger.error(f"[Chat Router] Error in chat stream: {str(e)}", exc_info=True)
            yield _sse({"error": str(e)})
        finally:
            # Seal and store the session even if the client went away
            await snapshots.aclose()
            if not saved and session.result is not None:
                analytics_store.save_result(session.result)
            session_registry.complete(conversation_id, session)

    return StreamingResponse(
        generate_response(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/chat/stop/{conversation_id}")
async def stop_chat(conversation_id: str) -> dict[str, str]:
    """
    Stop the active generation of a conversation
    """
    try:
        if session_registry.cancel(conversation_id):
            return {"message": f"Generation for {conversation_id} cancelled successfully"}
        raise HTTPException(
            status_code=404, detail="No active generation for this conversation"
        )
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error stopping chat: {str(e)}")


@router.get("/chat/analytics/{conversation_id}")
async def get_conversation_analytics(conversation_id: str) -> dict[str, object]:
    """
    Stored analytics records of a conversation plus the aggregate summary
    """
    try:
        records = analytics_store.get_conversation_analytics(conversation_id)
        summary = summarize_conversation(conversation_id, records)
        return {
            "conversation_id": conversation_id,
            "records": [record.model_dump(mode="json") for record in records],
            "summary": summary.model_dump(mode="json") if summary else None,
        }
    except Exception as e:
        raise HTTPException(
            status_code=500, detail=f"Error loading analytics: {str(e)}"
        )
