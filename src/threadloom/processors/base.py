"""Base class for tool processors.

A processor declares the tool names it serves in ``supported_tools`` and
implements one ``handle_<tool>`` coroutine per name. :meth:`process_tool_call`
dispatches to it and turns every failure into an error :class:`ToolResult`, so
a processor never raises into the pipeline.

Example::

    class EchoProcessor(BaseToolProcessor):
        supported_tools = ("echo",)

        async def handle_echo(self, request, *, thread_id, user_id):
            text = require_str(request.arguments, "text")
            return ToolResult.success(request.id, text, {"text": text})
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Sequence

from ..messaging.errors import ErrorCode, MessagingError, NotFoundError, ValidationError
from ..messaging.structures import ToolCallRequest, ToolResult

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[ToolResult]]


class BaseToolProcessor:
    """Routes tool calls to ``handle_<tool>`` coroutines."""

    supported_tools: ClassVar[tuple[str, ...]] = ()

    def can_process(self, tool_name: str) -> bool:
        return tool_name in self.supported_tools

    async def process_tool_call(
        self,
        request: ToolCallRequest,
        thread_id: str,
        user_id: str,
    ) -> ToolResult:
        processor = type(self).__name__
        LOGGER.debug("%s processing %s (%s) with %s", processor, request.name, request.id, request.arguments)
        try:
            handler = self._resolve_handler(request.name)
            result = await handler(request, thread_id=thread_id, user_id=user_id)
        except MessagingError as exc:
            LOGGER.warning("%s rejected %s: %s", processor, request.name, exc)
            return ToolResult.error(request.id, exc.message, payload=exc.to_dict())
        except Exception as exc:
            LOGGER.exception("%s failed while processing %s", processor, request.name)
            return ToolResult.error(request.id, str(exc) or exc.__class__.__name__)
        LOGGER.debug("%s finished %s with status %s", processor, request.name, result.status)
        return result

    def _resolve_handler(self, tool_name: str) -> ToolHandler:
        handler = getattr(self, f"handle_{tool_name}", None) if self.can_process(tool_name) else None
        if handler is None:
            raise NotFoundError.for_tool(tool_name)
        return handler


# -----------------------------------------------------------------------------
# Argument helpers
# -----------------------------------------------------------------------------


def invalid_argument(message: str, **details: Any) -> ValidationError:
    return ValidationError(error_code=ErrorCode.INVALID_ARGUMENTS, message=message, details=details)


def require_str(arguments: Mapping[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise invalid_argument(f"'{key}' is required", field=key)
    return value.strip()


def optional_str(arguments: Mapping[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise invalid_argument(f"'{key}' must be a string", field=key)
    return value.strip() or None


def optional_number(arguments: Mapping[str, Any], key: str) -> float | None:
    value = arguments.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise invalid_argument(f"'{key}' must be a number", field=key)
    try:
        number = float(value)
    except ValueError as exc:
        raise invalid_argument(f"'{key}' must be a number", field=key) from exc
    if number < 0:
        raise invalid_argument(f"'{key}' cannot be negative", field=key)
    return number


def require_number(arguments: Mapping[str, Any], key: str) -> float:
    number = optional_number(arguments, key)
    if number is None:
        raise invalid_argument(f"'{key}' is required", field=key)
    return number


def optional_choice(
    arguments: Mapping[str, Any],
    key: str,
    allowed: Sequence[str],
    *,
    aliases: Mapping[str, str] | None = None,
) -> str | None:
    value = arguments.get(key)
    if value is None or value == "":
        return None
    normalized = str(value).strip().lower()
    if aliases and normalized in aliases:
        normalized = aliases[normalized]
    if normalized not in allowed:
        raise invalid_argument(
            f"'{key}' must be one of {', '.join(allowed)}",
            field=key,
            value=value,
        )
    return normalized


def require_choice(
    arguments: Mapping[str, Any],
    key: str,
    allowed: Sequence[str],
    *,
    aliases: Mapping[str, str] | None = None,
) -> str:
    value = optional_choice(arguments, key, allowed, aliases=aliases)
    if value is None:
        raise invalid_argument(f"'{key}' is required", field=key)
    return value


__all__ = [
    "BaseToolProcessor",
    "invalid_argument",
    "require_str",
    "optional_str",
    "optional_number",
    "require_number",
    "optional_choice",
    "require_choice",
]
