"""
Tests for the chat router.

The chat service is replaced with a fake that replays fixed fragments,
and the analytics store points at a temporary database.
"""

import asyncio
import json
import os
import tempfile
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from thinkstream.models.llm_types import LLMConfiguration
from thinkstream.routers import chat
from thinkstream.services.analytics_store import AnalyticsStore
from thinkstream.services.generation_session import GenerationSession
from thinkstream.services.session_registry import SessionRegistry
from thinkstream.services.stream_parser import ThinkingDelimiters
from thinkstream.services.stream_producers import StaticStreamProducer


def parse_sse(body: str) -> list[dict]:
    return [
        json.loads(frame[len("data: ") :])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


@pytest.fixture
def fragments():
    return ["<think>Add them.", "</think>", "2 + 2 = 4"]


@pytest.fixture
def fake_service(fragments):
    def create_producer(message, chat_history=None, parameters=None, streaming=True):
        if streaming:
            return StaticStreamProducer(fragments)
        return StaticStreamProducer.single("".join(fragments))

    return SimpleNamespace(
        create_producer=create_producer,
        delimiters=ThinkingDelimiters(),
        config=LLMConfiguration(model_name="fake-model"),
        test_connection=AsyncMock(return_value={"status": "connected"}),
    )


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(monkeypatch, fake_service, registry):
    with tempfile.TemporaryDirectory() as data_dir:
        store = AnalyticsStore(db_path=os.path.join(data_dir, "test.db"))
        monkeypatch.setattr(chat, "chat_service", fake_service)
        monkeypatch.setattr(chat, "analytics_store", store)
        monkeypatch.setattr(chat, "session_registry", registry)

        app = FastAPI()
        app.include_router(chat.router)
        yield TestClient(app)


class TestChatStream:
    def test_frames(self, client, registry):
        response = client.post(
            "/chat", json={"message": "What is 2 + 2?", "conversation_id": "conv-1"}
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = parse_sse(response.text)
        assert events[0]["request_id"] == events[0]["message_id"]

        snapshots = [e["snapshot"] for e in events if e.get("type") == "snapshot"]
        assert [s["version"] for s in snapshots] == [1, 2, 3]
        assert snapshots[0]["is_thinking"] is True
        assert snapshots[0]["visible_response"] == ""
        assert snapshots[-1]["visible_response"] == "2 + 2 = 4"

        final = next(e for e in events if e.get("type") == "final")
        assert final["message"]["content"] == "2 + 2 = 4"
        assert final["message"]["thinking_content"] == "Add them."
        assert final["message"]["terminal_state"] == "completed"
        assert final["outcome"]["kind"] == "complete"
        assert final["analytics"]["completion_status"] == "complete"
        assert final["analytics"]["model_name"] == "fake-model"
        assert events[-1] == {"done": True}

        assert not registry.is_active("conv-1")
        assert registry.get("conv-1") is None

    def test_non_streaming_request(self, client):
        response = client.post(
            "/chat",
            json={"message": "Sum?", "conversation_id": "conv-1", "stream": False},
        )
        events = parse_sse(response.text)
        final = next(e for e in events if e.get("type") == "final")
        assert final["analytics"]["generation_mode"] == "non_streaming"
        assert final["message"]["content"] == "2 + 2 = 4"

    @pytest.mark.parametrize("fragments", [["<think>Only reasoning about the user"]])
    def test_truncated_generation(self, client, fragments):
        events = parse_sse(
            client.post("/chat", json={"message": "Hi", "conversation_id": "conv-1"}).text
        )
        final = next(e for e in events if e.get("type") == "final")
        assert final["message"]["terminal_state"] == "truncated"
        assert final["outcome"]["kind"] == "truncated_with_thinking"
        assert final["message"]["content"]

    def test_rejects_second_active_session(self, client, registry):
        registry.register(GenerationSession("conv-1", StaticStreamProducer(["x"])))
        response = client.post(
            "/chat", json={"message": "Hi", "conversation_id": "conv-1"}
        )
        assert response.status_code == 409

    @pytest.mark.parametrize(
        "extra",
        [
            {"message": ""},
            {"top_p": 1.5},
            {"top_k": 0},
            {"temperature": 2.5},
            {"max_tokens": 0},
        ],
    )
    def test_validation(self, client, registry, extra):
        payload = {"message": "Hi", "conversation_id": "conv-1", **extra}
        response = client.post("/chat", json=payload)
        assert response.status_code == 422
        assert registry.get("conv-1") is None


class TestStopAndAnalytics:
    def test_stop_before_streaming_starts(self, client, registry, monkeypatch):
        register = registry.register

        def register_then_stop(session):
            entry = register(session)
            registry.cancel(session.conversation_id)
            return entry

        monkeypatch.setattr(registry, "register", register_then_stop)
        events = parse_sse(
            client.post("/chat", json={"message": "Hi", "conversation_id": "conv-1"}).text
        )

        assert not any(e.get("type") == "snapshot" for e in events)
        assert not any("error" in e for e in events)
        assert {"cancelled": True} in events
        final = next(e for e in events if e.get("type") == "final")
        assert final["message"]["terminal_state"] == "cancelled"
        assert final["analytics"]["completion_status"] == "interrupted"
        assert events[-1] == {"done": True}

    def test_streaming_task_registered(self, client, registry, monkeypatch):
        tasks = []
        set_task = registry.set_task

        def record_task(conversation_id, task):
            tasks.append(task)
            return set_task(conversation_id, task)

        monkeypatch.setattr(registry, "set_task", record_task)
        client.post("/chat", json={"message": "Hi", "conversation_id": "conv-1"})

        assert len(tasks) == 1
        assert isinstance(tasks[0], asyncio.Task)

    def test_stop_active_session(self, client, registry):
        session = GenerationSession("conv-1", StaticStreamProducer(["x"]))
        registry.register(session)

        response = client.post("/chat/stop/conv-1")
        assert response.status_code == 200
        assert session.result.message.terminal_state.value == "cancelled"

    def test_stop_without_session(self, client):
        response = client.post("/chat/stop/conv-1")
        assert response.status_code == 404

    def test_analytics_after_generations(self, client):
        for _ in range(2):
            client.post("/chat", json={"message": "Hi", "conversation_id": "conv-1"})

        response = client.get("/chat/analytics/conv-1")
        assert response.status_code == 200
        data = response.json()
        assert len(data["records"]) == 2
        assert data["summary"]["message_count"] == 2
        assert data["summary"]["completion_rate"] == 1.0
        assert data["summary"]["models_used"] == ["fake-model"]

    def test_analytics_empty_conversation(self, client):
        data = client.get("/chat/analytics/unknown").json()
        assert data["records"] == []
        assert data["summary"] is None

    def test_health(self, client, fake_service):
        response = client.get("/chat/health")
        assert response.json() == {"status": "connected"}
