"""Tests for SessionRegistry"""

import asyncio
from datetime import datetime, timedelta

import pytest

from thinkstream.models.analytics_types import CompletionStatus
from thinkstream.models.session_types import SessionState
from thinkstream.services.errors import SessionAlreadyActiveError
from thinkstream.services.generation_session import GenerationSession
from thinkstream.services.session_registry import SessionRegistry
from thinkstream.services.stream_producers import StaticStreamProducer


def new_session(conversation_id: str = "conv-1", fragments=("a", "b")):
    return GenerationSession(conversation_id, StaticStreamProducer(fragments))


@pytest.fixture
def registry():
    return SessionRegistry()


class TestRegister:
    def test_register_and_get(self, registry):
        session = new_session()
        entry = registry.register(session)
        assert entry.session is session
        assert entry.message_id == session.message_id
        assert registry.get("conv-1") is session
        assert registry.is_active("conv-1")

    def test_second_active_session_rejected(self, registry):
        first = new_session()
        registry.register(first)
        second = new_session()

        with pytest.raises(SessionAlreadyActiveError) as exc_info:
            registry.register(second)

        assert exc_info.value.conversation_id == "conv-1"
        assert registry.get("conv-1") is first
        assert first.state == SessionState.IDLE
        assert second.state == SessionState.IDLE

    def test_other_conversations_unaffected(self, registry):
        registry.register(new_session("conv-1"))
        registry.register(new_session("conv-2"))
        assert set(registry.get_active_sessions()) == {"conv-1", "conv-2"}

    @pytest.mark.asyncio
    async def test_terminal_leftover_replaced(self, registry):
        first = new_session()
        registry.register(first)
        await first.run()
        assert not registry.is_active("conv-1")

        second = new_session()
        registry.register(second)
        assert registry.get("conv-1") is second


class TestCancelAndComplete:
    def test_cancel_active_session(self, registry):
        session = new_session()
        registry.register(session)
        assert registry.cancel("conv-1") is True
        assert session.state == SessionState.CANCELLED
        assert session.result.analytics.completion_status == CompletionStatus.INTERRUPTED

    def test_cancel_unknown_conversation(self, registry):
        assert registry.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_cancel_finished_session(self, registry):
        session = new_session()
        registry.register(session)
        await session.run()
        assert registry.cancel("conv-1") is False
        assert session.state == SessionState.COMPLETED

    def test_complete_removes_entry(self, registry):
        session = new_session()
        registry.register(session)
        assert registry.complete("conv-1", session) is True
        assert registry.get("conv-1") is None
        assert registry.complete("conv-1") is False

    def test_complete_ignores_replaced_session(self, registry):
        stale = new_session()
        registry.register(stale)
        stale.cancel()
        current = new_session()
        registry.register(current)

        assert registry.complete("conv-1", stale) is False
        assert registry.get("conv-1") is current

    def test_set_task(self, registry):
        registry.register(new_session())
        sentinel = object()
        assert registry.set_task("conv-1", sentinel) is True
        assert registry.get_active_sessions()["conv-1"].task is sentinel
        assert registry.set_task("missing", sentinel) is False


class TestCleanup:
    def test_old_sessions_timed_out(self):
        registry = SessionRegistry(max_session_age=timedelta(minutes=5))
        old = new_session("old")
        fresh = new_session("fresh")
        registry.register(old).created_at = datetime.now() - timedelta(minutes=10)
        registry.register(fresh)

        assert registry.cleanup_old_sessions() == 1
        assert registry.get("old") is None
        assert registry.get("fresh") is fresh
        assert old.state == SessionState.CANCELLED
        assert old.result.analytics.completion_status == CompletionStatus.TIMEOUT

    def test_nothing_to_clean(self, registry):
        registry.register(new_session())
        assert registry.cleanup_old_sessions() == 0

    @pytest.mark.asyncio
    async def test_cleanup_stops_running_task(self):
        class HangingProducer:
            streaming = True
            reported_output_tokens = None

            async def fragments(self):
                yield "Still going"
                await asyncio.Event().wait()

            def cancel(self) -> None:
                pass

        registry = SessionRegistry(max_session_age=timedelta(minutes=5))
        session = GenerationSession("conv-1", HangingProducer())
        registry.register(session).created_at = datetime.now() - timedelta(hours=1)
        started = asyncio.Event()
        task = asyncio.create_task(session.run(lambda s: started.set()))
        registry.set_task("conv-1", task)
        await started.wait()

        assert registry.cleanup_old_sessions() == 1
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state == SessionState.CANCELLED
        assert session.result.message.content == "Still going"
        assert session.result.analytics.completion_status == CompletionStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_cleanup_loop_runs_periodically(self):
        registry = SessionRegistry(max_session_age=timedelta(0))
        session = new_session()
        registry.register(session)

        loop_task = asyncio.create_task(registry.run_cleanup_loop(0.01))
        for _ in range(100):
            if registry.get("conv-1") is None:
                break
            await asyncio.sleep(0.01)
        loop_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await loop_task

        assert registry.get("conv-1") is None
        assert session.result.analytics.completion_status == CompletionStatus.TIMEOUT
