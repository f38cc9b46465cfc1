"""In-memory repository implementations.

Used by the test-suite and the console app. They honour the same contracts a
database-backed adapter must: per-thread ordering, the one-mutation rule for
stored messages, and at most one tool message per ``(thread_id, tool_call_id)``.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from collections import defaultdict
from dataclasses import replace
from typing import Any, Mapping, Sequence

from ..messaging.content import StructuredContent
from ..messaging.errors import ErrorCode, NotFoundError, UpstreamError, ValidationError
from ..messaging.structures import (
    MessageRole,
    StorageMessage,
    from_params,
    to_display_list,
    to_model_history_list,
    utc_timestamp,
)
from .base import (
    AssignedTask,
    DisplayQueryResult,
    HistoryQueryResult,
    MessageQueryResult,
    PregeneratedMessage,
    TaskAssignee,
    TaskChange,
    TaskRecord,
    TaskSchedule,
    TaskWorkload,
    ThreadRecord,
    UserInfo,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_WELCOME_MESSAGE = "Welcome to a new conversation! How can I help you today?"


class InMemoryMessageRepository:
    """Ordered per-thread message storage.

    Args:
        welcome_message: Text used by :meth:`create_welcome_message`.
        read_lag: Number of most recently saved messages of a thread that
            :meth:`get_messages` does not see yet. Simulates a store with
            read-after-write lag; ``0`` disables it.
    """

    def __init__(self, *, welcome_message: str = DEFAULT_WELCOME_MESSAGE, read_lag: int = 0) -> None:
        self.welcome_message = welcome_message
        self.read_lag = max(0, int(read_lag))
        self._threads: dict[str, list[StorageMessage]] = defaultdict(list)
        self._by_id: dict[str, StorageMessage] = {}
        self._tool_index: dict[tuple[str, str], str] = {}
        self._mutated: set[str] = set()
        self._failures: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def inject_failure(self, operation: str, reason: str = "simulated failure") -> None:
        """Make the next call of ``operation`` fail with ``reason``."""
        self._failures[operation] = reason

    def _take_failure(self, operation: str) -> str | None:
        return self._failures.pop(operation, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_messages(
        self,
        thread_id: str,
        *,
        include_hidden: bool = False,
        for_model: bool = False,
    ) -> MessageQueryResult:
        reason = self._take_failure("get_messages")
        if reason is not None:
            return MessageQueryResult(error=f"Failed to load messages: {reason}")
        stored = self._threads.get(thread_id, [])
        if self.read_lag:
            stored = stored[: max(0, len(stored) - self.read_lag)]
        if for_model:
            selected = [message for message in stored if message.send_to_model]
        elif include_hidden:
            selected = list(stored)
        else:
            selected = [message for message in stored if message.is_visible]
        return MessageQueryResult(messages=tuple(selected))

    async def get_display_messages(self, thread_id: str) -> DisplayQueryResult:
        result = await self.get_messages(thread_id)
        if not result.ok:
            return DisplayQueryResult(error=result.error)
        return DisplayQueryResult(messages=tuple(to_display_list(result.messages)))

    async def get_model_history_messages(self, thread_id: str) -> HistoryQueryResult:
        result = await self.get_messages(thread_id, for_model=True)
        if not result.ok:
            return HistoryQueryResult(error=result.error)
        return HistoryQueryResult(messages=tuple(to_model_history_list(result.messages)))

    async def find_tool_message(self, thread_id: str, tool_call_id: str) -> StorageMessage | None:
        message_id = self._tool_index.get((thread_id, tool_call_id))
        if message_id is None:
            return None
        return self._by_id.get(message_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

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
        reason = self._take_failure("save_message")
        if reason is not None:
            raise UpstreamError.from_repository("save_message", reason)
        draft = from_params(
            content,
            role,
            user_id=user_id,
            thread_id=thread_id,
            is_visible=is_visible,
            send_to_model=send_to_model,
            tool_call_id=tool_call_id,
            sequence=sequence,
            metadata=metadata,
        )
        if draft.role == "tool" and draft.tool_call_id is not None:
            key = (thread_id, draft.tool_call_id)
            if key in self._tool_index:
                raise ValidationError(
                    error_code=ErrorCode.INVARIANT_VIOLATION,
                    message=f"Tool message for call {draft.tool_call_id} already exists",
                    details={"thread_id": thread_id, "existing_id": self._tool_index[key]},
                )
        message = StorageMessage.from_draft(draft, id=str(uuid.uuid4()), created_at=utc_timestamp())
        self._store(message)
        LOGGER.debug("Saved %s message %s in thread %s", message.role, message.id, thread_id)
        return message

    async def update_message(
        self,
        message_id: str,
        *,
        tool_call_id: str | None = None,
        send_to_model: bool | None = None,
    ) -> StorageMessage:
        current = self._by_id.get(message_id)
        if current is None:
            raise NotFoundError(
                error_code=ErrorCode.MESSAGE_NOT_FOUND,
                message=f"Message {message_id} does not exist",
                name=message_id,
            )
        if message_id in self._mutated:
            raise ValidationError(
                error_code=ErrorCode.INVARIANT_VIOLATION,
                message=f"Message {message_id} was already updated once",
            )
        changes: dict[str, Any] = {}
        if tool_call_id is not None:
            changes["tool_call_id"] = tool_call_id
        if send_to_model is not None:
            changes["send_to_model"] = send_to_model
        if not changes:
            return current
        updated = current.with_changes(**changes)
        if updated.role == "tool" and tool_call_id is not None:
            key = (updated.thread_id, tool_call_id)
            existing = self._tool_index.get(key)
            if existing is not None and existing != message_id:
                raise ValidationError(
                    error_code=ErrorCode.INVARIANT_VIOLATION,
                    message=f"Tool message for call {tool_call_id} already exists",
                )
        self._replace(current, updated)
        self._mutated.add(message_id)
        return updated

    async def create_welcome_message(self, user_id: str, thread_id: str) -> StorageMessage | None:
        if not self.welcome_message:
            return None
        try:
            return await self.save_message(self.welcome_message, "assistant", user_id, thread_id)
        except UpstreamError:
            LOGGER.exception("Error creating welcome message for thread %s", thread_id)
            return None

    async def clear_messages(self, thread_id: str) -> None:
        reason = self._take_failure("clear_messages")
        if reason is not None:
            raise UpstreamError.from_repository("clear_messages", reason)
        for message in self._threads.pop(thread_id, []):
            self._by_id.pop(message.id, None)
            self._mutated.discard(message.id)
        for key in [key for key in self._tool_index if key[0] == thread_id]:
            del self._tool_index[key]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(self, message: StorageMessage) -> None:
        self._threads[message.thread_id].append(message)
        self._by_id[message.id] = message
        if message.role == "tool" and message.tool_call_id is not None:
            self._tool_index[(message.thread_id, message.tool_call_id)] = message.id

    def _replace(self, current: StorageMessage, updated: StorageMessage) -> None:
        bucket = self._threads[current.thread_id]
        for index, candidate in enumerate(bucket):
            if candidate.id == current.id:
                bucket[index] = updated
                break
        self._by_id[updated.id] = updated
        if current.tool_call_id is not None and current.tool_call_id != updated.tool_call_id:
            self._tool_index.pop((current.thread_id, current.tool_call_id), None)
        if updated.role == "tool" and updated.tool_call_id is not None:
            self._tool_index[(updated.thread_id, updated.tool_call_id)] = updated.id

    def all_messages(self, thread_id: str) -> list[StorageMessage]:
        """Every stored message of ``thread_id``, ignoring lag and visibility."""
        return list(self._threads.get(thread_id, []))


class InMemoryUserRepository:
    def __init__(self, users: Sequence[UserInfo] = ()) -> None:
        self._users: dict[str, UserInfo] = {user.id: user for user in users}

    def ensure_user(self, user_id: str, **fields: Any) -> UserInfo:
        user = self._users.get(user_id)
        if user is None:
            fields.setdefault("created_at", utc_timestamp())
            user = UserInfo(id=user_id, **fields)
            self._users[user_id] = user
        return user

    async def get_user_info(self, user_id: str) -> UserInfo | None:
        return self._users.get(user_id)

    async def update_nickname(self, user_id: str, nickname: str | None) -> None:
        user = self.ensure_user(user_id)
        user.nickname = nickname

    async def update_role(self, user_id: str, role: str) -> None:
        user = self.ensure_user(user_id)
        user.role = role


class InMemoryPregeneratedMessageRepository:
    def __init__(self) -> None:
        self._messages: dict[str, PregeneratedMessage] = {}

    async def get_unused_message(self, user_id: str) -> PregeneratedMessage | None:
        return next(
            (entry for entry in self._messages.values() if entry.user_id == user_id and not entry.used),
            None,
        )

    async def clear_unused_messages(self, user_id: str) -> bool:
        stale = [key for key, entry in self._messages.items() if entry.user_id == user_id and not entry.used]
        for key in stale:
            del self._messages[key]
        LOGGER.debug("Cleared %d unused pregenerated message(s) for %s", len(stale), user_id)
        return True

    async def get_unused_message_count(self, user_id: str) -> int:
        return sum(1 for entry in self._messages.values() if entry.user_id == user_id and not entry.used)

    async def save_message(self, user_id: str, hidden_message: str, ai_response: str) -> bool:
        message_id = str(uuid.uuid4())
        self._messages[message_id] = PregeneratedMessage(
            id=message_id,
            user_id=user_id,
            hidden_message=hidden_message,
            ai_response=ai_response,
            created_at=utc_timestamp(),
        )
        return True

    async def mark_as_used(self, message_id: str) -> bool:
        entry = self._messages.get(message_id)
        if entry is None or entry.used:
            return False
        entry.used = True
        return True


_TRACKED_TASK_FIELDS = ("status", "priority", "risk_level")
_TASK_FIELDS = frozenset(
    {"title", "description", "status", "priority", "risk_level", "start_date", "due_date", "workload"}
)


class InMemoryTaskRepository:
    def __init__(self) -> None:
        self._tasks: dict[str, TaskRecord] = {}
        self._assignees: list[TaskAssignee] = []
        self._schedules: dict[tuple[str, str, str, str], TaskSchedule] = {}
        self._workloads: dict[tuple[str, str, str], TaskWorkload] = {}
        self.history: list[TaskChange] = []
        self._order = itertools.count()
        self._created_order: dict[str, int] = {}

    async def create_task(self, user_id: str, fields: Mapping[str, Any]) -> TaskRecord:
        now = utc_timestamp()
        values = {key: value for key, value in fields.items() if key in _TASK_FIELDS and value is not None}
        task = TaskRecord(id=str(uuid.uuid4()), created_by=user_id, created_at=now, updated_at=now, **values)
        self._tasks[task.id] = task
        self._created_order[task.id] = next(self._order)
        return task

    async def get_task(self, task_id: str) -> TaskRecord | None:
        return self._tasks.get(task_id)

    async def update_task(self, task_id: str, user_id: str, updates: Mapping[str, Any]) -> TaskRecord:
        current = self._require(task_id)
        changes = {key: value for key, value in updates.items() if key in _TASK_FIELDS}
        now = utc_timestamp()
        for name in _TRACKED_TASK_FIELDS:
            if name in changes and changes[name] != getattr(current, name):
                self.history.append(
                    TaskChange(
                        task_id=task_id,
                        field=name,
                        old_value=getattr(current, name),
                        new_value=changes[name],
                        changed_by=user_id,
                        changed_at=now,
                    )
                )
        updated = replace(current, updated_at=now, **changes)
        self._tasks[task_id] = updated
        return updated

    async def add_assignee(self, task_id: str, user_id: str, role: str) -> TaskAssignee:
        self._require(task_id)
        for assignee in self._assignees:
            if assignee.task_id == task_id and assignee.user_id == user_id:
                assignee.role = role
                return assignee
        assignee = TaskAssignee(task_id=task_id, user_id=user_id, role=role)
        self._assignees.append(assignee)
        return assignee

    async def upsert_schedule(self, schedule: TaskSchedule) -> TaskSchedule:
        self._require(schedule.task_id)
        key = (schedule.task_id, schedule.user_id, schedule.schedule_type, schedule.start_date)
        self._schedules[key] = schedule
        return schedule

    async def upsert_workload(self, workload: TaskWorkload) -> TaskWorkload:
        self._require(workload.task_id)
        self._workloads[(workload.task_id, workload.user_id, workload.week_start)] = workload
        return workload

    async def list_user_tasks(self, user_id: str) -> list[AssignedTask]:
        assigned = [
            AssignedTask(task=self._tasks[assignee.task_id], assignee_role=assignee.role)
            for assignee in self._assignees
            if assignee.user_id == user_id and assignee.task_id in self._tasks
        ]
        assigned.sort(key=lambda item: self._created_order.get(item.task.id, 0), reverse=True)
        return assigned

    def schedules(self, task_id: str) -> list[TaskSchedule]:
        return [schedule for key, schedule in self._schedules.items() if key[0] == task_id]

    def workloads(self, task_id: str) -> list[TaskWorkload]:
        return [workload for key, workload in self._workloads.items() if key[0] == task_id]

    def _require(self, task_id: str) -> TaskRecord:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(
                error_code=ErrorCode.RECORD_NOT_FOUND,
                message=f"Task {task_id} does not exist",
                name=task_id,
            )
        return task


class InMemoryThreadRepository:
    def __init__(self) -> None:
        self._threads: dict[str, ThreadRecord] = {}

    async def create_thread(self, title: str | None = None, *, thread_id: str | None = None) -> ThreadRecord:
        now = utc_timestamp()
        record = ThreadRecord(id=thread_id or str(uuid.uuid4()), title=title, created_at=now, updated_at=now)
        self._threads[record.id] = record
        return record

    async def get_thread(self, thread_id: str) -> ThreadRecord | None:
        return self._threads.get(thread_id)

    async def update_thread_title(self, thread_id: str, title: str) -> ThreadRecord:
        record = self._threads.get(thread_id)
        if record is None:
            raise NotFoundError(
                error_code=ErrorCode.RECORD_NOT_FOUND,
                message=f"Thread {thread_id} does not exist",
                name=thread_id,
            )
        record.title = title
        record.updated_at = utc_timestamp()
        return record

    async def get_threads(self) -> list[ThreadRecord]:
        return sorted(self._threads.values(), key=lambda record: record.updated_at, reverse=True)

    async def check_connection(self) -> bool:
        return True


__all__ = [
    "DEFAULT_WELCOME_MESSAGE",
    "InMemoryMessageRepository",
    "InMemoryUserRepository",
    "InMemoryPregeneratedMessageRepository",
    "InMemoryTaskRepository",
    "InMemoryThreadRepository",
]
