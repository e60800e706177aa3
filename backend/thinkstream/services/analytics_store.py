"""
Analytics Store Module

SQLite persistence for finished generations: the final assistant message
and its sealed analytics record, keyed by conversation. The generation
core never touches this; the HTTP layer stores each SessionResult.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager

from thinkstream.models.analytics_types import GenerationAnalytics
from thinkstream.models.session_types import FinalMessage, SessionResult, SessionState

# Configure logger for this module
logger = logging.getLogger(__name__)


class AnalyticsStore:
    """
    Store for generation results.

    This service handles:
    - Creating the generations table on first use
    - Saving a SessionResult (message + analytics)
    - Reading analytics and messages back per conversation
    """

    def __init__(self, db_path: str = "data/generations.db"):
        """
        Initialize the store.

        Args:
            db_path (str): Path to the SQLite database file.
                          The directory will be created if it doesn't exist.
        """
        self.db_path = db_path
        self._ensure_data_dir()
        self.init_db()

    def _ensure_data_dir(self):
        data_dir = os.path.dirname(self.db_path)
        if data_dir and not os.path.exists(data_dir):
            os.makedirs(data_dir)

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Ensures proper connection handling and cleanup.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Create the generations table and index if missing"""
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    message_id TEXT PRIMARY KEY,
                    conversation_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    thinking_content TEXT,
                    terminal_state TEXT NOT NULL,
                    error TEXT,
                    outcome_kind TEXT,
                    completion_status TEXT NOT NULL,
                    analytics_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_generations_conversation
                ON generations (conversation_id, created_at)
            """)
            conn.commit()

    def save_result(self, result: SessionResult) -> bool:
        """
        Persist a finished generation. Saving the same message twice
        overwrites the earlier row.

        Args:
            result: SessionResult from a terminated GenerationSession

        Returns:
            bool: True if saved, False on database error
        """
        message = result.message
        analytics = result.analytics
        try:
            with self.get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO generations (
                        message_id, conversation_id, content, thinking_content,
                        terminal_state, error, outcome_kind, completion_status,
                        analytics_json, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.message_id,
                        message.conversation_id,
                        message.content,
                        message.thinking_content,
                        message.terminal_state.value,
                        message.error,
                        result.outcome.kind if result.outcome else None,
                        analytics.completion_status.value,
                        analytics.model_dump_json(),
                        analytics.created_at.isoformat(),
                    ),
                )
                conn.commit()
            logger.info(
                f"Saved generation {message.message_id} "
                f"for conversation {message.conversation_id}"
            )
            return True
        except sqlite3.Error as e:
            logger.error(f"Error saving generation {message.message_id}: {e}")
            return False

    def get_analytics(self, message_id: str) -> GenerationAnalytics | None:
        """
        Get the sealed analytics record of one message.

        Returns:
            GenerationAnalytics or None if not stored
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT analytics_json FROM generations WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        if row is None:
            return None
        return GenerationAnalytics.model_validate_json(row["analytics_json"])

    def get_conversation_analytics(
        self, conversation_id: str
    ) -> list[GenerationAnalytics]:
        """All analytics records of a conversation, oldest first"""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT analytics_json FROM generations
                WHERE conversation_id = ?
                ORDER BY created_at ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [GenerationAnalytics.model_validate_json(row["analytics_json"]) for row in rows]

    def get_conversation_messages(self, conversation_id: str) -> list[FinalMessage]:
        """All stored assistant messages of a conversation, oldest first"""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT message_id, conversation_id, content, thinking_content,
                       terminal_state, error
                FROM generations
                WHERE conversation_id = ?
                ORDER BY created_at ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [
            FinalMessage(
                message_id=row["message_id"],
                conversation_id=row["conversation_id"],
                content=row["content"],
                thinking_content=row["thinking_content"],
                terminal_state=SessionState(row["terminal_state"]),
                error=row["error"],
            )
            for row in rows
        ]

    def delete_conversation(self, conversation_id: str) -> int:
        """
        Delete every stored generation of a conversation

        Returns:
            int: Number of rows deleted
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM generations WHERE conversation_id = ?",
                (conversation_id,),
            )
            conn.commit()
            deleted = cursor.rowcount
        logger.info(f"Deleted {deleted} generations for {conversation_id}")
        return deleted
