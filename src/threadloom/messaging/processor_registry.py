"""Registry resolving tool names to the processors that execute them."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence, runtime_checkable

from .structures import ToolCallRequest, ToolResult

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ToolCallProcessor(Protocol):
    """Protocol for anything that can execute a model-issued tool call."""

    def can_process(self, tool_name: str) -> bool:
        """Return True if this processor handles ``tool_name``."""
        ...

    async def process_tool_call(
        self,
        request: ToolCallRequest,
        thread_id: str,
        user_id: str,
    ) -> ToolResult:
        """Run the call and return its outcome."""
        ...


class ToolProcessorRegistry:
    """Ordered list of processors; the first one that accepts a name wins.

    Registration does not de-duplicate, so overlapping processors are
    resolved purely by registration order.
    """

    __slots__ = ("_processors",)

    def __init__(self, processors: Sequence[ToolCallProcessor] = ()) -> None:
        self._processors: list[ToolCallProcessor] = list(processors)

    def register_processor(self, processor: ToolCallProcessor) -> None:
        self._processors.append(processor)
        LOGGER.debug(
            "Registered tool processor %s (tools: %s)",
            type(processor).__name__,
            ", ".join(_declared_tools(processor)) or "<dynamic>",
        )

    def get_processor(self, tool_name: str) -> ToolCallProcessor | None:
        for processor in self._processors:
            if processor.can_process(tool_name):
                return processor
        LOGGER.debug("No processor accepts tool %s", tool_name)
        return None

    def get_all_processors(self) -> list[ToolCallProcessor]:
        return list(self._processors)

    def supported_tools(self) -> list[str]:
        """Names declared by processors that expose ``supported_tools``."""
        names: list[str] = []
        for processor in self._processors:
            for name in _declared_tools(processor):
                if name not in names:
                    names.append(name)
        return names

    def __len__(self) -> int:
        return len(self._processors)


def _declared_tools(processor: object) -> tuple[str, ...]:
    declared = getattr(processor, "supported_tools", None)
    if declared is None or callable(declared):
        return ()
    return tuple(str(name) for name in declared)


__all__ = ["ToolCallProcessor", "ToolProcessorRegistry"]
