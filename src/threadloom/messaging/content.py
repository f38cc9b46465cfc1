"""Structured message content as a tagged union.

Stored message text is either plain prose or a JSON object whose ``type``
field names one of the variants below. Parsing is a total function: it
returns a :class:`ContentParseResult` instead of raising, and the only two
boundaries that touch raw JSON are :func:`parse_content` and
:func:`serialize_content`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Literal, Mapping, Union

from .errors import ErrorCode, ValidationError

ToolStatus = Literal["success", "error"]
_TOOL_STATUSES: frozenset[str] = frozenset({"success", "error"})


# -----------------------------------------------------------------------------
# Variants
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextContent:
    """Plain text wrapped in the structured envelope."""

    text: str

    type: ClassVar[str] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True, frozen=True)
class ToolCallContent:
    """A single tool invocation requested by the assistant."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "tool_call"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "parameters": dict(self.parameters)}


@dataclass(slots=True, frozen=True)
class ToolCallEntry:
    """One call inside a :class:`ToolCallsContent` batch."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "parameters": dict(self.parameters)}


@dataclass(slots=True, frozen=True)
class ToolCallsContent:
    """A batch of tool invocations issued in one assistant turn."""

    calls: tuple[ToolCallEntry, ...] = ()

    type: ClassVar[str] = "tool_calls"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "calls": [call.to_dict() for call in self.calls]}


@dataclass(slots=True, frozen=True)
class ToolResultContent:
    """Outcome of a tool invocation, stored as a ``tool`` role message."""

    tool_call_id: str
    status: ToolStatus
    message: str
    data: Any = None

    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "tool_call_id": self.tool_call_id,
            "status": self.status,
            "message": self.message,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(slots=True, frozen=True)
class DataRequestContent:
    """The assistant asking for user data fields."""

    fields: tuple[str, ...] = ()

    type: ClassVar[str] = "data_request"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "fields": list(self.fields)}


@dataclass(slots=True, frozen=True)
class DataResponseContent:
    """User data returned for a data request."""

    data: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "data_response"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": dict(self.data)}


@dataclass(slots=True, frozen=True)
class ErrorContent:
    """Content that could not be understood, or a surfaced pipeline error."""

    message: str
    original_content: str | None = None

    type: ClassVar[str] = "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "originalContent": self.original_content,
        }


StructuredContent = Union[
    TextContent,
    ToolCallContent,
    ToolCallsContent,
    ToolResultContent,
    DataRequestContent,
    DataResponseContent,
    ErrorContent,
]

STRUCTURED_TYPES: tuple[type, ...] = (
    TextContent,
    ToolCallContent,
    ToolCallsContent,
    ToolResultContent,
    DataRequestContent,
    DataResponseContent,
    ErrorContent,
)

CONTENT_TYPE_NAMES: tuple[str, ...] = tuple(cls.type for cls in STRUCTURED_TYPES)  # type: ignore[attr-defined]


def is_structured(value: object) -> bool:
    """Return True when ``value`` is one of the structured variants."""
    return isinstance(value, STRUCTURED_TYPES)


# -----------------------------------------------------------------------------
# Parse result
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContentParseResult:
    """Result of parsing stored text into content.

    Exactly one of ``content`` (when ``ok``) or ``error`` is meaningful.
    ``content`` is a structured variant, or the raw string for prose.
    """

    ok: bool
    content: StructuredContent | str | None = None
    error: ValidationError | None = None

    @classmethod
    def success(cls, content: StructuredContent | str) -> "ContentParseResult":
        return cls(ok=True, content=content)

    @classmethod
    def failure(cls, error: ValidationError) -> "ContentParseResult":
        return cls(ok=False, error=error)

    @property
    def is_structured(self) -> bool:
        return self.ok and is_structured(self.content)


# -----------------------------------------------------------------------------
# Variant parsers
# -----------------------------------------------------------------------------


def _invalid(message: str, *, code: str = ErrorCode.INVALID_CONTENT, **details: Any) -> ValidationError:
    return ValidationError(error_code=code, message=message, details=dict(details))


def _require_str(payload: Mapping[str, Any], key: str, kind: str, *, allow_empty: bool = False) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise _invalid(f"{kind} content requires a string '{key}'", field=key)
    if not allow_empty and not value.strip():
        raise _invalid(f"{kind} content requires a non-empty '{key}'", field=key)
    return value


def _optional_mapping(payload: Mapping[str, Any], key: str, kind: str) -> dict[str, Any]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise _invalid(f"{kind} content field '{key}' must be an object", field=key)
    return dict(value)


def _parse_text(payload: Mapping[str, Any]) -> TextContent:
    return TextContent(text=_require_str(payload, "text", "text", allow_empty=True))


def _parse_tool_call(payload: Mapping[str, Any]) -> ToolCallContent:
    return ToolCallContent(
        name=_require_str(payload, "name", "tool_call"),
        parameters=_optional_mapping(payload, "parameters", "tool_call"),
    )


def _parse_tool_call_entry(entry: Any, index: int) -> ToolCallEntry:
    if not isinstance(entry, Mapping):
        raise _invalid(f"tool_calls entry {index} must be an object", index=index)
    call_id = entry.get("id")
    if call_id is not None and not isinstance(call_id, str):
        raise _invalid(f"tool_calls entry {index} has a non-string id", index=index)
    # Older payloads stored the arguments under "arguments".
    key = "parameters" if "parameters" in entry else "arguments"
    parameters = entry.get(key)
    if isinstance(parameters, str):
        try:
            parameters = json.loads(parameters) if parameters.strip() else {}
        except json.JSONDecodeError as exc:
            raise _invalid(
                f"tool_calls entry {index} has undecodable arguments",
                code=ErrorCode.INVALID_ARGUMENTS,
                index=index,
            ) from exc
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, Mapping):
        raise _invalid(f"tool_calls entry {index} parameters must be an object", index=index)
    return ToolCallEntry(
        id=call_id or None,
        name=_require_str(entry, "name", "tool_calls entry"),
        parameters=dict(parameters),
    )


def _parse_tool_calls(payload: Mapping[str, Any]) -> ToolCallsContent:
    calls = payload.get("calls")
    if calls is None:
        calls = payload.get("tool_calls")
    if not isinstance(calls, list):
        raise _invalid("tool_calls content requires a 'calls' array", field="calls")
    return ToolCallsContent(calls=tuple(_parse_tool_call_entry(entry, i) for i, entry in enumerate(calls)))


def _parse_tool_result(payload: Mapping[str, Any]) -> ToolResultContent:
    status = payload.get("status")
    if status not in _TOOL_STATUSES:
        raise _invalid("tool_result status must be 'success' or 'error'", field="status")
    return ToolResultContent(
        tool_call_id=_require_str(payload, "tool_call_id", "tool_result"),
        status=status,
        message=_require_str(payload, "message", "tool_result", allow_empty=True),
        data=payload.get("data"),
    )


def _parse_data_request(payload: Mapping[str, Any]) -> DataRequestContent:
    fields = payload.get("fields")
    if not isinstance(fields, list) or not all(isinstance(item, str) for item in fields):
        raise _invalid("data_request content requires a 'fields' array of strings", field="fields")
    return DataRequestContent(fields=tuple(fields))


def _parse_data_response(payload: Mapping[str, Any]) -> DataResponseContent:
    data = payload.get("data")
    if not isinstance(data, Mapping):
        raise _invalid("data_response content requires a 'data' object", field="data")
    return DataResponseContent(data=dict(data))


def _parse_error(payload: Mapping[str, Any]) -> ErrorContent:
    original = payload.get("originalContent")
    if original is not None and not isinstance(original, str):
        original = json.dumps(original, ensure_ascii=False)
    return ErrorContent(
        message=_require_str(payload, "message", "error", allow_empty=True),
        original_content=original,
    )


_PARSERS: dict[str, Callable[[Mapping[str, Any]], StructuredContent]] = {
    TextContent.type: _parse_text,
    ToolCallContent.type: _parse_tool_call,
    ToolCallsContent.type: _parse_tool_calls,
    ToolResultContent.type: _parse_tool_result,
    DataRequestContent.type: _parse_data_request,
    DataResponseContent.type: _parse_data_response,
    ErrorContent.type: _parse_error,
}


# -----------------------------------------------------------------------------
# Boundaries
# -----------------------------------------------------------------------------


def looks_like_json_object(raw: str) -> bool:
    """Return True for text shaped like a JSON object (``{...}``)."""
    stripped = raw.strip()
    return len(stripped) >= 2 and stripped.startswith("{") and stripped.endswith("}")


def content_from_dict(payload: Mapping[str, Any]) -> StructuredContent:
    """Build the variant named by ``payload['type']``.

    Raises:
        ValidationError: If the type is unknown or required fields are missing.
    """
    kind = payload.get("type")
    if not isinstance(kind, str):
        raise _invalid("structured content requires a string 'type'", code=ErrorCode.UNKNOWN_CONTENT_TYPE)
    parser = _PARSERS.get(kind)
    if parser is None:
        raise _invalid(
            f"unknown content type '{kind}'",
            code=ErrorCode.UNKNOWN_CONTENT_TYPE,
            type=kind,
        )
    return parser(payload)


def parse_content(raw: str) -> ContentParseResult:
    """Parse stored text into content without raising.

    Non-JSON-looking text is prose and passes through unchanged. JSON-looking
    text must decode to an object of a known variant; anything else is a
    failure carrying a :class:`ValidationError` with the raw text attached.
    """
    if not isinstance(raw, str):
        return ContentParseResult.failure(
            ValidationError(message="stored content must be text", original_content=repr(raw))
        )
    if not looks_like_json_object(raw):
        return ContentParseResult.success(raw)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        return ContentParseResult.failure(
            ValidationError(
                error_code=ErrorCode.INVALID_JSON,
                message=f"content is not valid JSON: {exc.msg}",
                original_content=raw,
            )
        )
    if not isinstance(payload, Mapping):
        return ContentParseResult.failure(
            ValidationError(message="structured content must be a JSON object", original_content=raw)
        )
    try:
        return ContentParseResult.success(content_from_dict(payload))
    except ValidationError as exc:
        exc.original_content = raw
        return ContentParseResult.failure(exc)


def serialize_content(content: StructuredContent | Mapping[str, Any] | str) -> str:
    """Return the storage text for ``content``.

    Strings pass through; variants and mappings are JSON encoded.
    """
    if isinstance(content, str):
        return content
    if is_structured(content):
        return json.dumps(content.to_dict(), ensure_ascii=False)  # type: ignore[union-attr]
    if isinstance(content, Mapping):
        try:
            return json.dumps(dict(content), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise ValidationError(message=f"content is not JSON serializable: {exc}") from exc
    raise ValidationError(message=f"unsupported content type {type(content).__name__}")


def content_type_of(content: StructuredContent | str) -> str:
    """Return the variant tag, or ``"text"`` for plain strings."""
    if isinstance(content, str):
        return TextContent.type
    return content.type


__all__ = [
    "ToolStatus",
    "TextContent",
    "ToolCallContent",
    "ToolCallEntry",
    "ToolCallsContent",
    "ToolResultContent",
    "DataRequestContent",
    "DataResponseContent",
    "ErrorContent",
    "StructuredContent",
    "STRUCTURED_TYPES",
    "CONTENT_TYPE_NAMES",
    "ContentParseResult",
    "is_structured",
    "looks_like_json_object",
    "content_from_dict",
    "parse_content",
    "serialize_content",
    "content_type_of",
]
