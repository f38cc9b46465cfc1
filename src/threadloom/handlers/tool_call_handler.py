"""Dispatches model-issued tool calls to their processors."""

from __future__ import annotations

import logging
from dataclasses import replace

from ..messaging.errors import NotFoundError
from ..messaging.events import EventBus, ToolCallReceived, ToolResultSent, Unsubscribe
from ..messaging.processor_registry import ToolProcessorRegistry
from ..messaging.structures import ToolResult

LOGGER = logging.getLogger(__name__)


class ToolCallHandler:
    """Turns every :class:`ToolCallReceived` into exactly one :class:`ToolResultSent`.

    Calls are not de-duplicated: publishing the same call twice runs it twice.
    """

    def __init__(self, bus: EventBus, registry: ToolProcessorRegistry) -> None:
        self._bus = bus
        self._registry = registry

    def attach(self) -> Unsubscribe:
        return self._bus.subscribe(ToolCallReceived, self.handle)

    async def handle(self, event: ToolCallReceived) -> None:
        request = event.tool_call
        processor = self._registry.get_processor(request.name)

        if processor is None:
            error = NotFoundError.for_tool(request.name)
            LOGGER.warning("No processor found for tool %s (%s)", request.name, request.id)
            result = ToolResult.error(request.id, error.message, payload=error.to_dict())
        else:
            try:
                result = await processor.process_tool_call(request, event.thread_id, event.user_id)
            except Exception as exc:
                LOGGER.exception("Processor %s raised for %s", type(processor).__name__, request.name)
                result = ToolResult.error(request.id, f"tool execution failed: {exc}")
            if result.tool_call_id != request.id:
                LOGGER.warning(
                    "Processor %s answered %s with tool_call_id %s; correcting",
                    type(processor).__name__,
                    request.id,
                    result.tool_call_id,
                )
                result = replace(result, tool_call_id=request.id)

        LOGGER.info("Tool %s (%s) finished with status %s", request.name, request.id, result.status)
        self._bus.publish(
            ToolResultSent(
                thread_id=event.thread_id,
                user_id=event.user_id,
                tool_result=result,
                message_id="",
            )
        )


__all__ = ["ToolCallHandler"]
