"""Processor for the ``request_data`` tool."""

from __future__ import annotations

from typing import Any

from ..ai.tool_catalog import DATA_FIELDS
from ..messaging.content import DataResponseContent
from ..messaging.structures import ToolCallRequest, ToolResult
from ..repositories.base import TaskRepository, UserRepository
from .base import BaseToolProcessor, invalid_argument

_PROFILE_FIELDS = ("nickname", "role", "created_at")


class DataRequestProcessor(BaseToolProcessor):
    """Answers the model's questions about the current user."""

    supported_tools = ("request_data",)

    def __init__(self, users: UserRepository, tasks: TaskRepository) -> None:
        self._users = users
        self._tasks = tasks

    async def handle_request_data(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        fields = _requested_fields(request.arguments.get("fields"))
        data: dict[str, Any] = {}

        if any(name in _PROFILE_FIELDS for name in fields):
            user = await self._users.get_user_info(user_id)
            for name in _PROFILE_FIELDS:
                if name in fields:
                    data[name] = getattr(user, name, None) if user is not None else None

        if "tasks" in fields or "workload" in fields:
            assigned = list(await self._tasks.list_user_tasks(user_id))
            if "tasks" in fields:
                data["tasks"] = [item.to_dict() for item in assigned]
            if "workload" in fields:
                data["workload"] = sum(item.task.workload or 0 for item in assigned)

        response = DataResponseContent(data=data)
        return ToolResult.success(
            request.id,
            f"Fetched {', '.join(fields)}",
            response.to_dict(),
        )


def _requested_fields(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)) or not raw:
        raise invalid_argument("'fields' must be a non-empty list", field="fields")
    fields: list[str] = []
    for item in raw:
        name = str(item).strip()
        if name not in DATA_FIELDS:
            raise invalid_argument(
                f"Unknown data field '{name}'; expected one of {', '.join(DATA_FIELDS)}",
                field="fields",
                value=item,
            )
        if name not in fields:
            fields.append(name)
    return fields


__all__ = ["DataRequestProcessor"]
