"""Persisting a model reply and announcing it on the bus."""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from ..messaging.events import (
    AssistantMessageReceived,
    EventBus,
    MessagesUpdated,
    ToolCallReceived,
)
from ..messaging.structures import (
    ModelHistoryMessage,
    ModelToolCall,
    StorageMessage,
    ToolCallRequest,
    tool_calls_content,
)
from ..repositories.base import MessageRepository
from ..utils.logging import summarize

LOGGER = logging.getLogger(__name__)


class AssistantTurnRecorder:
    """Stores one assistant turn and publishes the events describing it.

    A text reply becomes one assistant message and an
    :class:`AssistantMessageReceived`. A tool-call reply becomes one assistant
    message encoding every call, an :class:`AssistantMessageReceived` with
    ``content=None``, and one :class:`ToolCallReceived` per call. Either way a
    :class:`MessagesUpdated` closes the turn. Persistence always happens before
    the corresponding publish.
    """

    def __init__(self, bus: EventBus, repository: MessageRepository) -> None:
        self._bus = bus
        self._repository = repository

    async def record(
        self,
        response: ModelHistoryMessage,
        *,
        thread_id: str,
        user_id: str,
    ) -> StorageMessage | None:
        """Persist ``response``; returns the stored message or None for an empty reply."""

        if response.tool_calls:
            stored = await self._record_tool_calls(response.tool_calls, thread_id=thread_id, user_id=user_id)
        elif response.content:
            stored = await self._repository.save_message(response.content, "assistant", user_id, thread_id)
            LOGGER.debug("Assistant replied in %s: %s", thread_id, summarize(response.content))
            self._bus.publish(
                AssistantMessageReceived(
                    thread_id=thread_id,
                    user_id=user_id,
                    content=response.content,
                    message_id=stored.id,
                )
            )
        else:
            LOGGER.warning("Model returned neither content nor tool calls for thread %s", thread_id)
            stored = None

        await self.publish_messages(thread_id=thread_id, user_id=user_id)
        return stored

    async def publish_messages(self, *, thread_id: str, user_id: str) -> None:
        result = await self._repository.get_messages(thread_id)
        messages = result.unwrap("get_messages")
        self._bus.publish(MessagesUpdated(thread_id=thread_id, user_id=user_id, messages=tuple(messages)))

    async def _record_tool_calls(
        self,
        calls: Sequence[ModelToolCall],
        *,
        thread_id: str,
        user_id: str,
    ) -> StorageMessage:
        requests = tuple(_to_request(call) for call in calls)
        stored = await self._repository.save_message(
            tool_calls_content(requests),
            "assistant",
            user_id,
            thread_id,
        )
        LOGGER.debug(
            "Model requested %d tool call(s) in %s: %s",
            len(requests),
            thread_id,
            ", ".join(request.name for request in requests),
        )
        self._bus.publish(
            AssistantMessageReceived(
                thread_id=thread_id,
                user_id=user_id,
                content=None,
                message_id=stored.id,
                tool_calls=requests,
            )
        )
        for request in requests:
            self._bus.publish(
                ToolCallReceived(
                    thread_id=thread_id,
                    user_id=user_id,
                    tool_call=request,
                    message_id=stored.id,
                )
            )
        return stored


def _to_request(call: ModelToolCall) -> ToolCallRequest:
    if not call.id:
        call = ModelToolCall(id=f"call_{uuid.uuid4().hex[:16]}", name=call.name, arguments=call.arguments)
    return ToolCallRequest.from_model_call(call)


__all__ = ["AssistantTurnRecorder"]
