"""Declarative schemas for the tools the assistant may call.

The catalog is what the model sees; the processors registered in
:class:`~threadloom.messaging.processor_registry.ToolProcessorRegistry` are
what actually runs. Both are keyed by the tool name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

# -----------------------------------------------------------------------------
# Schema types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter.

    Attributes:
        name: Parameter name.
        type: JSON Schema type (string, number, boolean, object, array).
        description: Human-readable description.
        required: Whether the parameter is required.
        enum: List of allowed values.
        items: Schema for array items.
    """

    name: str
    type: str
    description: str
    required: bool = False
    enum: Sequence[Any] | None = None
    items: "ParameterSchema" | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.items:
            item_schema = self.items.to_json_schema()
            if not self.items.description:
                item_schema.pop("description", None)
            schema["items"] = item_schema
        return schema


@dataclass(slots=True)
class ToolSchema:
    """Complete schema for a tool, convertible to OpenAI function calling format."""

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=list)

    def to_json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []

        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)

        schema: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": False,
        }
        if required:
            schema["required"] = required
        return schema

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_json_schema(),
            },
        }

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(param.name for param in self.parameters if param.required)


def to_openai_tools(schemas: Iterable[ToolSchema]) -> list[dict[str, Any]]:
    return [schema.to_openai() for schema in schemas]


# -----------------------------------------------------------------------------
# Enumerations shared by the processors
# -----------------------------------------------------------------------------

DATA_FIELDS: tuple[str, ...] = ("nickname", "role", "created_at", "tasks", "workload")
TASK_PRIORITIES: tuple[str, ...] = ("p0", "p1", "p2", "p3")
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high")
TASK_STATUSES: tuple[str, ...] = ("not_started", "in_progress", "completed", "blocked")
ASSIGNEE_ROLES: tuple[str, ...] = ("owner", "assignee")
SCHEDULE_TYPES: tuple[str, ...] = ("weekly", "quarterly")


# -----------------------------------------------------------------------------
# Common parameters
# -----------------------------------------------------------------------------

TASK_ID_PARAM = ParameterSchema(
    name="task_id",
    type="string",
    description="Identifier of the task.",
    required=True,
)

PRIORITY_PARAM = ParameterSchema(
    name="priority",
    type="string",
    description="Priority (p0 highest, p3 lowest).",
    enum=TASK_PRIORITIES,
)

RISK_LEVEL_PARAM = ParameterSchema(
    name="risk_level",
    type="string",
    description="Risk level.",
    enum=RISK_LEVELS,
)


# -----------------------------------------------------------------------------
# Profile tools
# -----------------------------------------------------------------------------

SET_NICKNAME_SCHEMA = ToolSchema(
    name="set_nickname",
    description="Set the user's nickname. Call this when the user asks to be addressed by a particular name.",
    parameters=[
        ParameterSchema(name="nickname", type="string", description="The user's new nickname.", required=True),
    ],
)

CLEAR_NICKNAME_SCHEMA = ToolSchema(
    name="clear_nickname",
    description="Clear the user's nickname.",
)

REQUEST_DATA_SCHEMA = ToolSchema(
    name="request_data",
    description=(
        "Request information about the user. Call this when one or more facts about the user "
        "would help you answer better. 'role' tells whether the user is an administrator."
    ),
    parameters=[
        ParameterSchema(
            name="fields",
            type="array",
            description="Fields to fetch.",
            required=True,
            items=ParameterSchema(name="field", type="string", description="", enum=DATA_FIELDS),
        ),
    ],
)


# -----------------------------------------------------------------------------
# Task tools
# -----------------------------------------------------------------------------

CREATE_TASK_SCHEMA = ToolSchema(
    name="create_task",
    description="Create a new task owned by the user.",
    parameters=[
        ParameterSchema(name="title", type="string", description="Task title.", required=True),
        ParameterSchema(name="description", type="string", description="Task description."),
        PRIORITY_PARAM,
        RISK_LEVEL_PARAM,
        ParameterSchema(name="start_date", type="string", description="Start date (ISO 8601)."),
        ParameterSchema(name="due_date", type="string", description="Due date (ISO 8601)."),
        ParameterSchema(name="workload", type="number", description="Estimated workload in hours."),
    ],
)

UPDATE_TASK_SCHEMA = ToolSchema(
    name="update_task",
    description="Update the details of an existing task.",
    parameters=[
        TASK_ID_PARAM,
        ParameterSchema(name="title", type="string", description="Task title."),
        ParameterSchema(name="description", type="string", description="Task description."),
        PRIORITY_PARAM,
        RISK_LEVEL_PARAM,
        ParameterSchema(name="status", type="string", description="Task status.", enum=TASK_STATUSES),
    ],
)

ADD_TASK_ASSIGNEE_SCHEMA = ToolSchema(
    name="add_task_assignee",
    description="Add a collaborator to a task.",
    parameters=[
        TASK_ID_PARAM,
        ParameterSchema(name="user_id", type="string", description="User to add.", required=True),
        ParameterSchema(name="role", type="string", description="Role on the task.", enum=ASSIGNEE_ROLES),
    ],
)

UPDATE_TASK_WORKLOAD_SCHEMA = ToolSchema(
    name="update_task_workload",
    description="Record the user's workload on a task for one week.",
    parameters=[
        TASK_ID_PARAM,
        ParameterSchema(name="workload", type="number", description="Workload in hours.", required=True),
        ParameterSchema(name="week_start", type="string", description="First day of the week (ISO 8601).", required=True),
    ],
)

UPDATE_TASK_SCHEDULE_SCHEMA = ToolSchema(
    name="update_task_schedule",
    description="Plan the user's workload on a task for a week or a quarter.",
    parameters=[
        TASK_ID_PARAM,
        ParameterSchema(
            name="schedule_type",
            type="string",
            description="Planning period.",
            required=True,
            enum=SCHEDULE_TYPES,
        ),
        ParameterSchema(name="start_date", type="string", description="Period start (ISO 8601).", required=True),
        ParameterSchema(name="end_date", type="string", description="Period end (ISO 8601).", required=True),
        ParameterSchema(name="workload", type="number", description="Planned workload in hours.", required=True),
    ],
)


DEFAULT_TOOL_CATALOG: tuple[ToolSchema, ...] = (
    SET_NICKNAME_SCHEMA,
    CLEAR_NICKNAME_SCHEMA,
    REQUEST_DATA_SCHEMA,
    CREATE_TASK_SCHEMA,
    UPDATE_TASK_SCHEMA,
    ADD_TASK_ASSIGNEE_SCHEMA,
    UPDATE_TASK_WORKLOAD_SCHEMA,
    UPDATE_TASK_SCHEDULE_SCHEMA,
)

TOOL_SCHEMAS: Mapping[str, ToolSchema] = {schema.name: schema for schema in DEFAULT_TOOL_CATALOG}


__all__ = [
    "ParameterSchema",
    "ToolSchema",
    "to_openai_tools",
    "DATA_FIELDS",
    "TASK_PRIORITIES",
    "RISK_LEVELS",
    "TASK_STATUSES",
    "ASSIGNEE_ROLES",
    "SCHEDULE_TYPES",
    "DEFAULT_TOOL_CATALOG",
    "TOOL_SCHEMAS",
]
