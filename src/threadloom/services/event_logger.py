"""Debug logging of every event on the bus."""

from __future__ import annotations

import logging

from ..messaging.events import (
    AssistantMessageReceived,
    ErrorOccurred,
    Event,
    EventBus,
    MessagesUpdated,
    ThreadsUpdated,
    ToolCallReceived,
    ToolResultSent,
    Unsubscribe,
    UserMessageSent,
)
from ..utils.logging import summarize

LOGGER = logging.getLogger(__name__)


class EventLogger:
    """Wildcard subscriber writing one debug line per event.

    Message contents are cut to 100 characters with newlines escaped so a
    turn stays readable in the log file.
    """

    def __init__(self, bus: EventBus, *, logger: logging.Logger | None = None) -> None:
        self._bus = bus
        self._logger = logger or LOGGER

    def attach(self) -> Unsubscribe:
        return self._bus.subscribe_all(self.handle)

    def handle(self, event: Event) -> None:
        if not self._logger.isEnabledFor(logging.DEBUG):
            return
        self._logger.debug(
            "event=%s thread=%s user=%s %s",
            event.type.value,
            event.thread_id,
            event.user_id,
            describe(event),
        )


def describe(event: Event) -> str:
    """Short key=value summary of the payload of ``event``."""
    if isinstance(event, UserMessageSent):
        return f"message={event.message_id} content={summarize(event.content)}"
    if isinstance(event, AssistantMessageReceived):
        names = ",".join(call.name for call in event.tool_calls)
        return f"message={event.message_id} content={summarize(event.content)} tool_calls=[{names}]"
    if isinstance(event, ToolCallReceived):
        call = event.tool_call
        return f"call={call.id} name={call.name} arguments={summarize(call.arguments)}"
    if isinstance(event, ToolResultSent):
        result = event.tool_result
        return f"call={result.tool_call_id} status={result.status} message={summarize(result.message)}"
    if isinstance(event, MessagesUpdated):
        return f"messages={len(event.messages)}"
    if isinstance(event, ErrorOccurred):
        return f"context={event.context} error={summarize(str(event.error))}"
    if isinstance(event, ThreadsUpdated):
        return f"threads={len(event.threads)}"
    return ""


__all__ = ["EventLogger", "describe"]
