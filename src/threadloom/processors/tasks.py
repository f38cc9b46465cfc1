"""Processor for the task management tools."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Mapping

from ..ai.tool_catalog import ASSIGNEE_ROLES, RISK_LEVELS, SCHEDULE_TYPES, TASK_PRIORITIES, TASK_STATUSES
from ..messaging.structures import ToolCallRequest, ToolResult
from ..repositories.base import TaskRepository, TaskSchedule, TaskWorkload
from .base import (
    BaseToolProcessor,
    invalid_argument,
    optional_choice,
    optional_number,
    optional_str,
    require_choice,
    require_number,
    require_str,
)

# Models often describe priority in words rather than the p0..p3 scale.
PRIORITY_ALIASES: Mapping[str, str] = {"high": "p0", "medium": "p1", "low": "p2", "none": "p3"}


class TaskProcessor(BaseToolProcessor):
    """Creates and maintains the user's tasks through a :class:`TaskRepository`."""

    supported_tools = (
        "create_task",
        "update_task",
        "add_task_assignee",
        "update_task_workload",
        "update_task_schedule",
    )

    def __init__(self, tasks: TaskRepository, *, today: Any = None) -> None:
        self._tasks = tasks
        self._today = today or date.today

    async def handle_create_task(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        args = request.arguments
        fields: dict[str, Any] = {
            "title": require_str(args, "title"),
            "description": optional_str(args, "description"),
            "priority": optional_choice(args, "priority", TASK_PRIORITIES, aliases=PRIORITY_ALIASES) or "p2",
            "risk_level": optional_choice(args, "risk_level", RISK_LEVELS) or "low",
            "start_date": _optional_date(args, "start_date"),
            "due_date": _optional_date(args, "due_date"),
            "workload": optional_number(args, "workload"),
        }
        task = await self._tasks.create_task(user_id, fields)
        await self._tasks.add_assignee(task.id, user_id, "owner")

        if task.workload:
            today = self._today()
            for schedule_type, (start, end) in (
                ("weekly", week_range(today)),
                ("quarterly", quarter_range(today)),
            ):
                await self._tasks.upsert_schedule(
                    TaskSchedule(
                        task_id=task.id,
                        user_id=user_id,
                        schedule_type=schedule_type,
                        start_date=start.isoformat(),
                        end_date=end.isoformat(),
                        workload=task.workload,
                    )
                )
        return ToolResult.success(request.id, "Task created", {"task": task.to_dict()})

    async def handle_update_task(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        args = request.arguments
        task_id = _task_id(args)
        updates: dict[str, Any] = {}
        for key in ("title", "description"):
            value = optional_str(args, key)
            if value is not None:
                updates[key] = value
        priority = optional_choice(args, "priority", TASK_PRIORITIES, aliases=PRIORITY_ALIASES)
        if priority is not None:
            updates["priority"] = priority
        risk_level = optional_choice(args, "risk_level", RISK_LEVELS)
        if risk_level is not None:
            updates["risk_level"] = risk_level
        status = optional_choice(args, "status", TASK_STATUSES)
        if status is not None:
            updates["status"] = status
        if not updates:
            raise invalid_argument("No task fields to update", field="task_id")

        task = await self._tasks.update_task(task_id, user_id, updates)
        return ToolResult.success(request.id, "Task updated", {"task": task.to_dict(), "updated": sorted(updates)})

    async def handle_add_task_assignee(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        args = request.arguments
        task_id = _task_id(args)
        assignee_id = require_str(args, "user_id")
        role = optional_choice(args, "role", ASSIGNEE_ROLES) or "assignee"
        assignee = await self._tasks.add_assignee(task_id, assignee_id, role)
        return ToolResult.success(
            request.id,
            "Collaborator added",
            {"task_id": assignee.task_id, "user_id": assignee.user_id, "role": assignee.role},
        )

    async def handle_update_task_workload(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        args = request.arguments
        task_id = _task_id(args)
        workload = require_number(args, "workload")
        week_start = _require_date(args, "week_start")
        quarter_start, quarter_end = quarter_range(week_start)
        record = await self._tasks.upsert_workload(
            TaskWorkload(
                task_id=task_id,
                user_id=user_id,
                workload=workload,
                week_start=week_start.isoformat(),
                week_end=(week_start + timedelta(days=6)).isoformat(),
                quarter_start=quarter_start.isoformat(),
                quarter_end=quarter_end.isoformat(),
            )
        )
        return ToolResult.success(
            request.id,
            "Task workload updated",
            {"task_id": task_id, "workload": record.workload, "week_start": record.week_start, "week_end": record.week_end},
        )

    async def handle_update_task_schedule(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        args = request.arguments
        task_id = _task_id(args)
        start = _require_date(args, "start_date")
        end = _require_date(args, "end_date")
        if end < start:
            raise invalid_argument("'end_date' must not be before 'start_date'", field="end_date")
        schedule = await self._tasks.upsert_schedule(
            TaskSchedule(
                task_id=task_id,
                user_id=user_id,
                schedule_type=require_choice(args, "schedule_type", SCHEDULE_TYPES),
                start_date=start.isoformat(),
                end_date=end.isoformat(),
                workload=require_number(args, "workload"),
            )
        )
        return ToolResult.success(
            request.id,
            "Task schedule updated",
            {
                "task_id": task_id,
                "schedule_type": schedule.schedule_type,
                "start_date": schedule.start_date,
                "end_date": schedule.end_date,
                "workload": schedule.workload,
            },
        )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def week_range(day: date) -> tuple[date, date]:
    """Sunday-to-Saturday week containing ``day``."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def quarter_range(day: date) -> tuple[date, date]:
    first_month = 3 * ((day.month - 1) // 3) + 1
    start = date(day.year, first_month, 1)
    if first_month == 10:
        next_start = date(day.year + 1, 1, 1)
    else:
        next_start = date(day.year, first_month + 3, 1)
    return start, next_start - timedelta(days=1)


def _task_id(arguments: Mapping[str, Any]) -> str:
    task_id = require_str(arguments, "task_id")
    try:
        uuid.UUID(task_id)
    except ValueError as exc:
        raise invalid_argument(f"Invalid task id format: {task_id}", field="task_id") from exc
    return task_id


def _parse_date(value: str, key: str) -> date:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise invalid_argument(f"'{key}' must be an ISO 8601 date", field=key, value=value) from exc


def _optional_date(arguments: Mapping[str, Any], key: str) -> str | None:
    value = optional_str(arguments, key)
    if value is None:
        return None
    _parse_date(value, key)
    return value


def _require_date(arguments: Mapping[str, Any], key: str) -> date:
    return _parse_date(require_str(arguments, key), key)


__all__ = ["TaskProcessor", "PRIORITY_ALIASES", "week_range", "quarter_range"]
