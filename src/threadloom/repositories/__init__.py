"""Repository protocols and their in-memory implementations."""

from .base import (
    AssignedTask,
    DisplayQueryResult,
    HistoryQueryResult,
    MessageQueryResult,
    MessageRepository,
    PregeneratedMessage,
    PregeneratedMessageRepository,
    QueryResult,
    TaskAssignee,
    TaskChange,
    TaskRecord,
    TaskRepository,
    TaskSchedule,
    TaskWorkload,
    ThreadRecord,
    ThreadRepository,
    UserInfo,
    UserRepository,
)
from .memory import (
    DEFAULT_WELCOME_MESSAGE,
    InMemoryMessageRepository,
    InMemoryPregeneratedMessageRepository,
    InMemoryTaskRepository,
    InMemoryThreadRepository,
    InMemoryUserRepository,
)

__all__ = [
    "AssignedTask",
    "DisplayQueryResult",
    "HistoryQueryResult",
    "MessageQueryResult",
    "MessageRepository",
    "PregeneratedMessage",
    "PregeneratedMessageRepository",
    "QueryResult",
    "TaskAssignee",
    "TaskChange",
    "TaskRecord",
    "TaskRepository",
    "TaskSchedule",
    "TaskWorkload",
    "ThreadRecord",
    "ThreadRepository",
    "UserInfo",
    "UserRepository",
    "DEFAULT_WELCOME_MESSAGE",
    "InMemoryMessageRepository",
    "InMemoryPregeneratedMessageRepository",
    "InMemoryTaskRepository",
    "InMemoryThreadRepository",
    "InMemoryUserRepository",
]
