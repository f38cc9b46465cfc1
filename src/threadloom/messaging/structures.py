"""Message structures and the converters between them.

A conversation turn has three shapes:

1. :class:`StorageMessage` - the durable record kept by a repository.
2. :class:`DisplayMessage` - the render-ready projection for a UI.
3. :class:`ModelHistoryMessage` - the projection sent to the language model.

Display and model-history views are recomputed from storage on every read.
:func:`to_display` and :func:`to_model_history` are pure: they depend only on
their argument, so repeated application yields equal results.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, Mapping, Sequence

from .content import (
    ContentParseResult,
    ErrorContent,
    StructuredContent,
    ToolCallContent,
    ToolCallEntry,
    ToolCallsContent,
    ToolResultContent,
    ToolStatus,
    parse_content,
    serialize_content,
)
from .errors import ErrorCode, ValidationError

MessageRole = Literal["user", "assistant", "system", "tool"]
MESSAGE_ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})


# -----------------------------------------------------------------------------
# Storage
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class StorageDraft:
    """A message that has not been assigned an id or timestamp yet."""

    content: str
    role: MessageRole
    user_id: str
    thread_id: str
    is_visible: bool = True
    send_to_model: bool = True
    tool_call_id: str | None = None
    sequence: int | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        _check_role(self.role, self.tool_call_id)


@dataclass(slots=True)
class StorageMessage:
    """The durable record of one conversation turn.

    Attributes:
        id: Repository-assigned identifier.
        content: Raw text or JSON-serialized structured content.
        role: Sender role.
        created_at: ISO-8601 UTC timestamp.
        user_id: Owner of the conversation.
        thread_id: Conversation the turn belongs to.
        is_visible: Whether the turn is shown to the user.
        send_to_model: Whether the turn is part of the model history.
        tool_call_id: Tool call answered by this turn (tool role only).
        sequence: Optional explicit ordering.
        metadata: Free-form extra information.
    """

    id: str
    content: str
    role: MessageRole
    created_at: str
    user_id: str
    thread_id: str
    is_visible: bool = True
    send_to_model: bool = True
    tool_call_id: str | None = None
    sequence: int | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        _check_role(self.role, self.tool_call_id)

    @classmethod
    def from_draft(cls, draft: StorageDraft, *, id: str, created_at: str) -> "StorageMessage":
        return cls(
            id=id,
            content=draft.content,
            role=draft.role,
            created_at=created_at,
            user_id=draft.user_id,
            thread_id=draft.thread_id,
            is_visible=draft.is_visible,
            send_to_model=draft.send_to_model,
            tool_call_id=draft.tool_call_id,
            sequence=draft.sequence,
            metadata=dict(draft.metadata) if draft.metadata is not None else None,
        )

    def with_changes(self, **changes: Any) -> "StorageMessage":
        return replace(self, **changes)


def _check_role(role: str, tool_call_id: str | None) -> None:
    if role not in MESSAGE_ROLES:
        raise ValidationError(
            error_code=ErrorCode.INVARIANT_VIOLATION,
            message=f"'{role}' is not a valid message role",
            details={"valid_roles": sorted(MESSAGE_ROLES)},
        )
    if role == "tool" and not tool_call_id:
        raise ValidationError(
            error_code=ErrorCode.INVARIANT_VIOLATION,
            message="tool messages require a tool_call_id",
        )


# -----------------------------------------------------------------------------
# Display
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class DisplayMessage:
    """Render-ready projection of a :class:`StorageMessage`. Never persisted."""

    id: str
    content: StructuredContent | str
    role: MessageRole
    created_at: str
    user_id: str
    is_loading: bool = False
    metadata: dict[str, Any] | None = None


# -----------------------------------------------------------------------------
# Model history
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModelToolCall:
    """A tool call in model-history form; ``arguments`` is JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def decoded_arguments(self) -> dict[str, Any]:
        """Return the arguments as a dict.

        Raises:
            ValidationError: If the arguments are not a JSON object.
        """
        if not self.arguments or not self.arguments.strip():
            return {}
        try:
            decoded = json.loads(self.arguments)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                error_code=ErrorCode.INVALID_ARGUMENTS,
                message=f"arguments for {self.name} are not valid JSON",
                original_content=self.arguments,
            ) from exc
        if not isinstance(decoded, dict):
            raise ValidationError(
                error_code=ErrorCode.INVALID_ARGUMENTS,
                message=f"arguments for {self.name} must be a JSON object",
                original_content=self.arguments,
            )
        return decoded

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(slots=True, frozen=True)
class ModelHistoryMessage:
    """A turn as the language model sees it.

    ``content`` is None exactly when ``tool_calls`` is non-empty.
    """

    role: MessageRole
    content: str | None
    tool_calls: tuple[ModelToolCall, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in MESSAGE_ROLES:
            raise ValidationError(
                error_code=ErrorCode.INVARIANT_VIOLATION,
                message=f"'{self.role}' is not a valid message role",
            )
        if (self.content is None) != bool(self.tool_calls):
            raise ValidationError(
                error_code=ErrorCode.INVARIANT_VIOLATION,
                message="model history content must be null exactly when tool_calls are present",
            )
        if self.role == "tool" and not self.tool_call_id:
            raise ValidationError(
                error_code=ErrorCode.INVARIANT_VIOLATION,
                message="tool messages require a tool_call_id",
            )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_openai(self) -> dict[str, Any]:
        """Render as an OpenAI chat-completions message parameter."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        if self.tool_call_id:
            payload["tool_call_id"] = self.tool_call_id
        return payload

    @classmethod
    def from_openai(cls, payload: Mapping[str, Any]) -> "ModelHistoryMessage":
        """Parse an OpenAI-style message mapping (as returned by the API)."""
        calls: list[ModelToolCall] = []
        for raw_call in payload.get("tool_calls") or ():
            function = raw_call.get("function") or {}
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {}, ensure_ascii=False, sort_keys=True)
            calls.append(
                ModelToolCall(
                    id=str(raw_call.get("id") or ""),
                    name=str(function.get("name") or ""),
                    arguments=arguments,
                )
            )
        content = payload.get("content")
        if calls:
            # Some providers send narration alongside calls; the call turn wins.
            content = None
        elif content is None:
            content = ""
        return cls(
            role=payload.get("role") or "assistant",
            content=content,
            tool_calls=tuple(calls),
            tool_call_id=payload.get("tool_call_id"),
        )


# -----------------------------------------------------------------------------
# Tool calls and results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    """A model-issued request to run a named tool."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model_call(cls, call: ModelToolCall) -> "ToolCallRequest":
        return cls(id=call.id, name=call.name, arguments=call.decoded_arguments())


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of running a :class:`ToolCallRequest`."""

    tool_call_id: str
    status: ToolStatus
    payload: Any = None
    message: str = ""

    @classmethod
    def success(cls, tool_call_id: str, message: str, payload: Any = None) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, status="success", payload=payload, message=message)

    @classmethod
    def error(cls, tool_call_id: str, message: str, payload: Any = None) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, status="error", payload=payload, message=message)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_content(self) -> ToolResultContent:
        return ToolResultContent(
            tool_call_id=self.tool_call_id,
            status=self.status,
            message=self.message,
            data=self.payload,
        )


# -----------------------------------------------------------------------------
# Converters
# -----------------------------------------------------------------------------


def to_display(message: StorageMessage) -> DisplayMessage:
    """Project a stored message for display.

    JSON-looking text that decodes to a known variant becomes structured
    content; JSON-looking text that does not becomes an :class:`ErrorContent`
    holding the raw text; anything else passes through as text.
    """
    result = parse_content(message.content)
    if result.ok:
        content: StructuredContent | str = result.content  # type: ignore[assignment]
    else:
        error = result.error
        content = ErrorContent(
            message=error.message if error is not None else "content could not be parsed",
            original_content=message.content,
        )
    return DisplayMessage(
        id=message.id,
        content=content,
        role=message.role,
        created_at=message.created_at,
        user_id=message.user_id,
        metadata=dict(message.metadata) if message.metadata is not None else None,
    )


def to_model_history(message: StorageMessage) -> ModelHistoryMessage:
    """Project a stored message for the language model.

    Assistant turns whose content encodes tool calls become a null-content
    turn with synthesized ``tool_calls``; tool turns carry their
    ``tool_call_id``; everything else keeps its raw text.
    """
    tool_call_id = message.tool_call_id if message.role == "tool" else None
    if message.role == "assistant":
        calls = _tool_calls_from(parse_content(message.content), message.id)
        if calls:
            return ModelHistoryMessage(role="assistant", content=None, tool_calls=calls)
    return ModelHistoryMessage(role=message.role, content=message.content, tool_call_id=tool_call_id)


def _tool_calls_from(result: ContentParseResult, message_id: str) -> tuple[ModelToolCall, ...]:
    if not result.ok:
        return ()
    content = result.content
    if isinstance(content, ToolCallsContent):
        entries = [(call.id, call.name, call.parameters) for call in content.calls]
    elif isinstance(content, ToolCallContent):
        entries = [(None, content.name, content.parameters)]
    else:
        return ()
    return tuple(
        ModelToolCall(
            id=call_id or synthesize_call_id(message_id, index),
            name=name,
            arguments=json.dumps(parameters, ensure_ascii=False, sort_keys=True),
        )
        for index, (call_id, name, parameters) in enumerate(entries)
    )


def synthesize_call_id(message_id: str, index: int) -> str:
    """Deterministic id for a stored call that was saved without one."""
    digest = hashlib.sha1(f"{message_id}:{index}".encode("utf-8")).hexdigest()[:16]
    return f"call_{digest}"


def to_display_list(messages: Iterable[StorageMessage]) -> list[DisplayMessage]:
    return [to_display(message) for message in messages]


def to_model_history_list(messages: Iterable[StorageMessage]) -> list[ModelHistoryMessage]:
    """Project the model-bound subset of ``messages`` in order."""
    return [to_model_history(message) for message in messages if message.send_to_model]


def from_params(
    content: StructuredContent | Mapping[str, Any] | str,
    role: MessageRole,
    *,
    user_id: str,
    thread_id: str,
    is_visible: bool = True,
    send_to_model: bool = True,
    tool_call_id: str | None = None,
    sequence: int | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> StorageDraft:
    """Build a :class:`StorageDraft`, serializing structured content to JSON."""
    return StorageDraft(
        content=serialize_content(content),
        role=role,
        user_id=user_id,
        thread_id=thread_id,
        is_visible=is_visible,
        send_to_model=send_to_model,
        tool_call_id=tool_call_id,
        sequence=sequence,
        metadata=dict(metadata) if metadata is not None else None,
    )


def tool_calls_content(calls: Sequence[ToolCallRequest]) -> ToolCallsContent:
    """Storage payload for a batch of requests issued in one turn."""
    return ToolCallsContent(
        calls=tuple(ToolCallEntry(id=call.id, name=call.name, parameters=dict(call.arguments)) for call in calls)
    )


def utc_timestamp() -> str:
    """Current UTC time in ISO-8601 form with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "MessageRole",
    "MESSAGE_ROLES",
    "StorageDraft",
    "StorageMessage",
    "DisplayMessage",
    "ModelToolCall",
    "ModelHistoryMessage",
    "ToolCallRequest",
    "ToolResult",
    "to_display",
    "to_model_history",
    "to_display_list",
    "to_model_history_list",
    "synthesize_call_id",
    "from_params",
    "tool_calls_content",
    "utc_timestamp",
]
