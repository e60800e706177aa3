"""
Session Registry Service

Tracks the active generation session of every conversation so that at
most one runs per conversation, and so that a stop request from the UI
can reach the task driving it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from thinkstream.models.analytics_types import CompletionStatus

from .errors import SessionAlreadyActiveError
from .generation_session import GenerationSession

logger = logging.getLogger(__name__)


@dataclass
class ActiveSession:
    """Represents a registered generation session"""

    conversation_id: str
    session: GenerationSession
    created_at: datetime = field(default_factory=datetime.now)
    task: asyncio.Task | None = None

    @property
    def message_id(self) -> str:
        return self.session.message_id


class SessionRegistry:
    """Registry enforcing one active GenerationSession per conversation"""

    def __init__(self, max_session_age: timedelta = timedelta(hours=2)):
        self._sessions: dict[str, ActiveSession] = {}
        self._max_session_age = max_session_age

    def register(self, session: GenerationSession) -> ActiveSession:
        """
        Register a session as the active one for its conversation.

        A terminal session left behind by a caller that never completed it
        is replaced silently.

        Args:
            session: Fresh session in IDLE state

        Returns:
            The registry entry for the session

        Raises:
            SessionAlreadyActiveError: If the conversation already has a
                session that has not reached a terminal state
        """
        conversation_id = session.conversation_id
        existing = self._sessions.get(conversation_id)
        if existing is not None and existing.session.is_active:
            logger.warning(
                f"[SessionRegistry] Rejected new session for {conversation_id}: "
                f"{existing.message_id} still {existing.session.state.value}"
            )
            raise SessionAlreadyActiveError(conversation_id)

        entry = ActiveSession(conversation_id=conversation_id, session=session)
        self._sessions[conversation_id] = entry
        logger.info(
            f"[SessionRegistry] Registered session {session.message_id} "
            f"for conversation {conversation_id}"
        )
        return entry

    def set_task(self, conversation_id: str, task: asyncio.Task) -> bool:
        """
        Associate the asyncio task driving a session with its entry

        Returns:
            True if task was set, False if no session is registered
        """
        if conversation_id in self._sessions:
            self._sessions[conversation_id].task = task
            logger.debug(f"[SessionRegistry] Set task for {conversation_id}")
            return True
        return False

    def get(self, conversation_id: str) -> GenerationSession | None:
        entry = self._sessions.get(conversation_id)
        return entry.session if entry else None

    def is_active(self, conversation_id: str) -> bool:
        entry = self._sessions.get(conversation_id)
        return entry is not None and entry.session.is_active

    def cancel(
        self,
        conversation_id: str,
        status: CompletionStatus = CompletionStatus.INTERRUPTED,
    ) -> bool:
        """
        Cancel the active session of a conversation

        Args:
            conversation_id: Conversation whose session should stop
            status: Completion status to seal the analytics with

        Returns:
            True if a running session was cancelled, False if none was active
        """
        entry = self._sessions.get(conversation_id)
        if entry is None:
            logger.warning(
                f"[SessionRegistry] No session for {conversation_id} to cancel"
            )
            return False

        cancelled = entry.session.cancel(status)
        if cancelled:
            logger.info(
                f"[SessionRegistry] Cancelled session {entry.message_id} "
                f"for {conversation_id}"
            )
        else:
            logger.info(
                f"[SessionRegistry] Session {entry.message_id} already finished"
            )
        return cancelled

    def complete(self, conversation_id: str, session: GenerationSession | None = None) -> bool:
        """
        Remove a finished session from tracking.

        Args:
            conversation_id: Conversation the session belongs to
            session: Only remove the entry if it still holds this session

        Returns:
            True if an entry was removed
        """
        entry = self._sessions.get(conversation_id)
        if entry is None:
            return False
        if session is not None and entry.session is not session:
            return False
        del self._sessions[conversation_id]
        logger.info(
            f"[SessionRegistry] Completed and removed session {entry.message_id}"
        )
        return True

    def get_active_sessions(self) -> dict[str, ActiveSession]:
        """Get all registered sessions (for debugging/monitoring)"""
        return self._sessions.copy()

    def cleanup_old_sessions(self) -> int:
        """
        Cancel and drop sessions that outlived the maximum age

        Returns:
            Number of sessions cleaned up
        """
        now = datetime.now()
        to_remove = [
            conversation_id
            for conversation_id, entry in self._sessions.items()
            if now - entry.created_at > self._max_session_age
        ]

        for conversation_id in to_remove:
            entry = self._sessions.pop(conversation_id)
            entry.session.cancel(CompletionStatus.TIMEOUT)
            if entry.task and not entry.task.done():
                entry.task.cancel()

        if to_remove:
            logger.info(f"[SessionRegistry] Cleaned up {len(to_remove)} old sessions")

        return len(to_remove)

    async def run_cleanup_loop(self, interval_seconds: float = 300.0) -> None:
        """
        Time out overdue sessions every interval_seconds until cancelled.

        Sessions removed here are sealed with CompletionStatus.TIMEOUT.
        """
        logger.info(
            f"[SessionRegistry] Cleanup loop started (every {interval_seconds}s, "
            f"max age {self._max_session_age})"
        )
        while True:
            await asyncio.sleep(interval_seconds)
            self.cleanup_old_sessions()


# Global instance
session_registry = SessionRegistry()
