"""Shared pytest fixtures."""

from __future__ import annotations

import json
from collections import deque
from typing import Any, Sequence

import pytest

from threadloom.bootstrap import Runtime, create_runtime
from threadloom.config import Settings
from threadloom.messaging.events import Event, EventBus
from threadloom.messaging.structures import ModelHistoryMessage, ModelToolCall
from threadloom.repositories.memory import (
    InMemoryMessageRepository,
    InMemoryPregeneratedMessageRepository,
    InMemoryTaskRepository,
    InMemoryThreadRepository,
    InMemoryUserRepository,
)


class ScriptedModelClient:
    """Model client stub that replays queued replies and records every history it saw."""

    def __init__(self) -> None:
        self._replies: deque[ModelHistoryMessage | BaseException] = deque()
        self.calls: list[list[ModelHistoryMessage]] = []

    def reply_text(self, text: str) -> "ScriptedModelClient":
        self._replies.append(ModelHistoryMessage(role="assistant", content=text))
        return self

    def reply_tool_calls(self, *calls: tuple[str, str, dict[str, Any]]) -> "ScriptedModelClient":
        tool_calls = tuple(
            ModelToolCall(id=call_id, name=name, arguments=json.dumps(arguments)) for call_id, name, arguments in calls
        )
        self._replies.append(ModelHistoryMessage(role="assistant", content=None, tool_calls=tool_calls))
        return self

    def reply_message(self, message: ModelHistoryMessage) -> "ScriptedModelClient":
        self._replies.append(message)
        return self

    def reply_empty(self) -> "ScriptedModelClient":
        self._replies.append(ModelHistoryMessage(role="assistant", content=""))
        return self

    def fail(self, error: BaseException) -> "ScriptedModelClient":
        self._replies.append(error)
        return self

    @property
    def pending(self) -> int:
        return len(self._replies)

    async def send_message(self, history: Sequence[ModelHistoryMessage]) -> ModelHistoryMessage:
        self.calls.append(list(history))
        if not self._replies:
            raise AssertionError("unexpected model call")
        reply = self._replies.popleft()
        if isinstance(reply, BaseException):
            raise reply
        return reply


class EventRecorder:
    """Wildcard subscriber keeping every event it sees."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        self.detach = bus.subscribe_all(self.events.append)

    def of_type(self, event_cls: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_cls)]

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", bootstrap_timeout=0.5, persist_errors=False, pregenerate_openings=False)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def repository() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def tasks() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture
def pregenerated() -> InMemoryPregeneratedMessageRepository:
    return InMemoryPregeneratedMessageRepository()


@pytest.fixture
def threads() -> InMemoryThreadRepository:
    return InMemoryThreadRepository()


@pytest.fixture
def model_client() -> ScriptedModelClient:
    return ScriptedModelClient()


@pytest.fixture
def runtime(
    settings: Settings,
    repository: InMemoryMessageRepository,
    model_client: ScriptedModelClient,
    users: InMemoryUserRepository,
    tasks: InMemoryTaskRepository,
    pregenerated: InMemoryPregeneratedMessageRepository,
    threads: InMemoryThreadRepository,
) -> Runtime:
    return create_runtime(
        settings,
        repository=repository,
        model_client=model_client,
        users=users,
        tasks=tasks,
        pregenerated=pregenerated,
        threads=threads,
    )


@pytest.fixture
def recorder(runtime: Runtime) -> EventRecorder:
    return EventRecorder(runtime.bus)


@pytest.fixture
def make_recorder():
    return EventRecorder
