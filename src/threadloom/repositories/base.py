"""Repository interfaces consumed by the pipeline and the tool processors.

The pipeline never talks to a storage engine directly. Everything it needs is
expressed as the async protocols below; :mod:`threadloom.repositories.memory`
ships the in-memory implementations used by tests and the console app.

Query methods return a :class:`QueryResult` instead of raising, mirroring the
``(result, error)`` convention of hosted database clients. Callers decide
whether an error is fatal (see :meth:`QueryResult.unwrap`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, Protocol, Sequence, TypeVar

from ..messaging.content import StructuredContent
from ..messaging.errors import UpstreamError
from ..messaging.structures import DisplayMessage, MessageRole, ModelHistoryMessage, StorageMessage

T = TypeVar("T")


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Messages returned by a repository query, or the reason it failed.

    Not slotted: the subscripted aliases below set ``__orig_class__`` on each
    instance, which a slotted frozen class rejects before Python 3.13.
    """

    messages: tuple[T, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self, operation: str) -> list[T]:
        """Return the messages, raising :class:`UpstreamError` if the query failed."""
        if self.error is not None:
            raise UpstreamError.from_repository(operation, self.error)
        return list(self.messages)


MessageQueryResult = QueryResult[StorageMessage]
DisplayQueryResult = QueryResult[DisplayMessage]
HistoryQueryResult = QueryResult[ModelHistoryMessage]


class MessageRepository(Protocol):
    """Durable storage of conversation turns."""

    async def get_messages(
        self,
        thread_id: str,
        *,
        include_hidden: bool = False,
        for_model: bool = False,
    ) -> MessageQueryResult:
        """Stored messages of a thread in conversation order.

        ``for_model`` restricts the result to ``send_to_model`` messages and
        implies ``include_hidden``.
        """
        ...

    async def save_message(
        self,
        content: StructuredContent | Mapping[str, Any] | str,
        role: MessageRole,
        user_id: str,
        thread_id: str,
        *,
        is_visible: bool = True,
        send_to_model: bool = True,
        tool_call_id: str | None = None,
        sequence: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> StorageMessage:
        ...

    async def update_message(
        self,
        message_id: str,
        *,
        tool_call_id: str | None = None,
        send_to_model: bool | None = None,
    ) -> StorageMessage:
        """Apply the single post-creation mutation a message may receive."""
        ...

    async def find_tool_message(self, thread_id: str, tool_call_id: str) -> StorageMessage | None:
        ...

    async def get_display_messages(self, thread_id: str) -> DisplayQueryResult:
        ...

    async def get_model_history_messages(self, thread_id: str) -> HistoryQueryResult:
        ...

    async def create_welcome_message(self, user_id: str, thread_id: str) -> StorageMessage | None:
        ...

    async def clear_messages(self, thread_id: str) -> None:
        ...


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class UserInfo:
    id: str
    nickname: str | None = None
    role: str | None = None
    created_at: str | None = None


class UserRepository(Protocol):
    async def get_user_info(self, user_id: str) -> UserInfo | None:
        ...

    async def update_nickname(self, user_id: str, nickname: str | None) -> None:
        ...

    async def update_role(self, user_id: str, role: str) -> None:
        ...


# -----------------------------------------------------------------------------
# Pregenerated replies
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class PregeneratedMessage:
    """A model-written opening line and the hidden prompt that produced it."""

    id: str
    user_id: str
    hidden_message: str
    ai_response: str
    used: bool = False
    created_at: str | None = None


class PregeneratedMessageRepository(Protocol):
    """Replies prepared ahead of time for a user, invalidated on profile changes."""

    async def get_unused_message(self, user_id: str) -> PregeneratedMessage | None:
        """Oldest unused message of ``user_id``, left unused."""
        ...

    async def clear_unused_messages(self, user_id: str) -> bool:
        ...

    async def get_unused_message_count(self, user_id: str) -> int:
        ...

    async def save_message(self, user_id: str, hidden_message: str, ai_response: str) -> bool:
        ...

    async def mark_as_used(self, message_id: str) -> bool:
        ...


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class TaskRecord:
    """A work item owned or shared by users."""

    id: str
    title: str
    created_by: str
    description: str | None = None
    status: str = "not_started"
    priority: str = "p2"
    risk_level: str = "low"
    start_date: str | None = None
    due_date: str | None = None
    workload: float | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "risk_level": self.risk_level,
            "start_date": self.start_date,
            "due_date": self.due_date,
            "workload": self.workload,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class TaskAssignee:
    task_id: str
    user_id: str
    role: str = "assignee"


@dataclass(slots=True)
class TaskSchedule:
    task_id: str
    user_id: str
    schedule_type: str
    start_date: str
    end_date: str
    workload: float | None = None


@dataclass(slots=True)
class TaskWorkload:
    task_id: str
    user_id: str
    workload: float
    week_start: str
    week_end: str
    quarter_start: str
    quarter_end: str


@dataclass(slots=True)
class TaskChange:
    """One recorded change of a tracked task field."""

    task_id: str
    field: str
    old_value: Any
    new_value: Any
    changed_by: str
    changed_at: str = ""


@dataclass(slots=True)
class AssignedTask:
    task: TaskRecord
    assignee_role: str

    def to_dict(self) -> dict[str, Any]:
        payload = self.task.to_dict()
        payload["assignee_role"] = self.assignee_role
        return payload


class TaskRepository(Protocol):
    async def create_task(self, user_id: str, fields: Mapping[str, Any]) -> TaskRecord:
        ...

    async def get_task(self, task_id: str) -> TaskRecord | None:
        ...

    async def update_task(self, task_id: str, user_id: str, updates: Mapping[str, Any]) -> TaskRecord:
        """Apply ``updates`` and record history for status, priority and risk changes."""
        ...

    async def add_assignee(self, task_id: str, user_id: str, role: str) -> TaskAssignee:
        ...

    async def upsert_schedule(self, schedule: TaskSchedule) -> TaskSchedule:
        ...

    async def upsert_workload(self, workload: TaskWorkload) -> TaskWorkload:
        ...

    async def list_user_tasks(self, user_id: str) -> Sequence[AssignedTask]:
        """Tasks the user is assigned to, newest first."""
        ...


# -----------------------------------------------------------------------------
# Threads
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ThreadRecord:
    id: str
    title: str | None = None
    created_at: str = ""
    updated_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class ThreadRepository(Protocol):
    async def create_thread(self, title: str | None = None, *, thread_id: str | None = None) -> ThreadRecord:
        ...

    async def get_thread(self, thread_id: str) -> ThreadRecord | None:
        ...

    async def update_thread_title(self, thread_id: str, title: str) -> ThreadRecord:
        ...

    async def get_threads(self) -> Sequence[ThreadRecord]:
        """All threads, most recently updated first."""
        ...

    async def check_connection(self) -> bool:
        ...


__all__ = [
    "QueryResult",
    "MessageQueryResult",
    "DisplayQueryResult",
    "HistoryQueryResult",
    "MessageRepository",
    "UserInfo",
    "UserRepository",
    "PregeneratedMessage",
    "PregeneratedMessageRepository",
    "TaskRecord",
    "TaskAssignee",
    "TaskSchedule",
    "TaskWorkload",
    "TaskChange",
    "AssignedTask",
    "TaskRepository",
    "ThreadRecord",
    "ThreadRepository",
]
