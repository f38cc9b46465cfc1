"""Entry points for sending messages and reading conversations."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol, Sequence

from ..ai.base import ModelClient
from ..handlers.assistant_turn import AssistantTurnRecorder
from ..messaging.errors import ConfigurationError, ErrorCode, MessagingError, UpstreamError, ValidationError
from ..messaging.events import (
    ErrorOccurred,
    EventBus,
    EventType,
    MessagesUpdated,
    ThreadSummary,
    ThreadsUpdated,
    ToolResultSent,
    UserMessageSent,
)
from ..messaging.structures import (
    DisplayMessage,
    ModelHistoryMessage,
    StorageMessage,
    ToolResult,
    to_model_history_list,
)
from ..repositories.base import MessageRepository, ThreadRecord, ThreadRepository
from ..utils.logging import summarize
from .pregeneration import PregenerationService

LOGGER = logging.getLogger(__name__)

_TITLE_LIMIT = 40


class HandlerWiring(Protocol):
    """What the service needs from the bootstrapper."""

    async def wait_until_ready(self) -> None:
        ...

    def handler_count(self, event_type: EventType) -> int:
        ...

    async def ensure_wired(self) -> None:
        ...

    def reset_thread(self, thread_id: str, *, cleared: bool = False) -> None:
        ...


class MessageService:
    """Conversation operations used by a front end.

    Every public coroutine publishes :class:`ErrorOccurred` (with the method
    name as context) before re-raising a failure, so subscribers see errors
    even when the caller swallows them.
    """

    def __init__(
        self,
        bus: EventBus,
        repository: MessageRepository,
        model_client: ModelClient,
        wiring: HandlerWiring,
        *,
        threads: ThreadRepository | None = None,
        pregeneration: PregenerationService | None = None,
    ) -> None:
        self._bus = bus
        self._repository = repository
        self._model_client = model_client
        self._wiring = wiring
        self._threads = threads
        self._pregeneration = pregeneration
        self._recorder = AssistantTurnRecorder(bus, repository)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_user_message(self, content: str, thread_id: str, user_id: str) -> str:
        """Persist a user turn, ask the model and record its answer.

        Returns:
            The id of the stored user message.
        """
        async with self._reporting("send_user_message", thread_id, user_id):
            await self._wiring.wait_until_ready()
            if not content or not content.strip():
                raise ValidationError(message="Message content is empty")
            self._wiring.reset_thread(thread_id)

            user_message = await self._repository.save_message(content, "user", user_id, thread_id)
            LOGGER.debug("User message %s in %s: %s", user_message.id, thread_id, summarize(content))
            self._bus.publish(
                UserMessageSent(
                    thread_id=thread_id,
                    user_id=user_id,
                    content=content,
                    message_id=user_message.id,
                )
            )
            await self._title_untitled_thread(thread_id, user_id, content)

            history = await self._history_including(thread_id, user_message)
            try:
                response = await self._model_client.send_message(history)
            except Exception as exc:
                await self._withdraw_from_history(user_message)
                if isinstance(exc, MessagingError):
                    raise
                raise UpstreamError.from_model(exc) from exc

            await self._recorder.record(response, thread_id=thread_id, user_id=user_id)
            return user_message.id

    async def send_tool_result(self, result: ToolResult, thread_id: str, user_id: str) -> str:
        """Publish a tool result produced outside the tool-call handler.

        Returns:
            A temporary id; the stored tool message gets its own id later.

        Raises:
            ConfigurationError: When nothing listens for tool results even
                after re-wiring the handlers.
        """
        async with self._reporting("send_tool_result", thread_id, user_id):
            await self._wiring.wait_until_ready()
            if self._wiring.handler_count(EventType.TOOL_RESULT_SENT) == 0:
                LOGGER.warning("No tool result listener; re-wiring handlers")
                await self._wiring.ensure_wired()
                if self._wiring.handler_count(EventType.TOOL_RESULT_SENT) == 0:
                    raise ConfigurationError(
                        error_code=ErrorCode.NO_LISTENER,
                        message="No listener registered for tool_result_sent",
                        details={"tool_call_id": result.tool_call_id},
                    )
            temp_id = f"temp-{int(time.time() * 1000)}"
            self._bus.publish(
                ToolResultSent(
                    thread_id=thread_id,
                    user_id=user_id,
                    tool_result=result,
                    message_id=temp_id,
                )
            )
            return temp_id

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_messages(
        self,
        thread_id: str,
        user_id: str = "",
        *,
        include_hidden: bool = False,
    ) -> list[StorageMessage]:
        async with self._reporting("get_messages", thread_id, user_id):
            result = await self._repository.get_messages(thread_id, include_hidden=include_hidden)
            return result.unwrap("get_messages")

    async def get_display_messages(self, thread_id: str, user_id: str = "") -> list[DisplayMessage]:
        async with self._reporting("get_display_messages", thread_id, user_id):
            result = await self._repository.get_display_messages(thread_id)
            return result.unwrap("get_display_messages")

    async def get_model_history(self, thread_id: str, user_id: str = "") -> list[ModelHistoryMessage]:
        async with self._reporting("get_model_history", thread_id, user_id):
            result = await self._repository.get_model_history_messages(thread_id)
            return result.unwrap("get_model_history_messages")

    async def clear_thread(self, thread_id: str, user_id: str) -> None:
        async with self._reporting("clear_thread", thread_id, user_id):
            await self._repository.clear_messages(thread_id)
            self._wiring.reset_thread(thread_id, cleared=True)
            self._bus.publish(MessagesUpdated(thread_id=thread_id, user_id=user_id, messages=()))

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def create_thread(self, user_id: str, title: str | None = None, *, thread_id: str | None = None) -> ThreadRecord:
        """Create a thread, greet the user in it and announce the new thread list.

        The greeting is a pregenerated opening when one can be claimed, and
        the static welcome message otherwise.
        """
        async with self._reporting("create_thread", thread_id or "", user_id):
            threads = self._require_threads()
            record = await threads.create_thread(title, thread_id=thread_id)
            await self._open_thread(user_id, record.id)
            await self._publish_threads(user_id, record.id)
            return record

    async def update_thread_title(self, thread_id: str, title: str, user_id: str) -> ThreadRecord:
        async with self._reporting("update_thread_title", thread_id, user_id):
            record = await self._require_threads().update_thread_title(thread_id, title)
            await self._publish_threads(user_id, thread_id)
            return record

    async def get_threads(self, user_id: str = "") -> tuple[ThreadSummary, ...]:
        async with self._reporting("get_threads", "", user_id):
            return _summaries(await self._require_threads().get_threads())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _reporting(self, context: str, thread_id: str, user_id: str) -> AsyncIterator[None]:
        try:
            yield
        except Exception as exc:
            LOGGER.error("%s failed for thread %s: %s", context, thread_id, exc)
            self._bus.publish(ErrorOccurred(thread_id=thread_id, user_id=user_id, error=exc, context=context))
            raise

    async def _history_including(self, thread_id: str, latest: StorageMessage) -> list[ModelHistoryMessage]:
        result = await self._repository.get_messages(thread_id, for_model=True)
        stored = result.unwrap("get_messages")
        if all(message.id != latest.id for message in stored):
            LOGGER.debug("Message %s not readable yet; adding it to the request", latest.id)
            stored.append(latest)
        return to_model_history_list(stored)

    async def _withdraw_from_history(self, message: StorageMessage) -> None:
        """Keep a failed turn visible but out of future model requests."""
        try:
            await self._repository.update_message(message.id, send_to_model=False)
        except Exception:
            LOGGER.exception("Unable to withdraw message %s from model history", message.id)

    async def _open_thread(self, user_id: str, thread_id: str) -> None:
        opening = None
        if self._pregeneration is not None:
            opening = await self._pregeneration.take_opening(user_id)
            self._pregeneration.schedule_refill(user_id)
        if opening is None:
            await self._repository.create_welcome_message(user_id, thread_id)
            return
        metadata = {"pregenerated_id": opening.id}
        await self._repository.save_message(
            opening.hidden_message, "user", user_id, thread_id, is_visible=False, metadata=metadata
        )
        await self._repository.save_message(opening.ai_response, "assistant", user_id, thread_id, metadata=metadata)
        LOGGER.debug("Thread %s opened with pregenerated message %s", thread_id, opening.id)

    async def _title_untitled_thread(self, thread_id: str, user_id: str, content: str) -> None:
        if self._threads is None:
            return
        record = await self._threads.get_thread(thread_id)
        if record is None or record.title:
            return
        title = " ".join(content.split())
        if len(title) > _TITLE_LIMIT:
            title = f"{title[:_TITLE_LIMIT].rsplit(' ', 1)[0]}..."
        await self._threads.update_thread_title(thread_id, title)
        await self._publish_threads(user_id, thread_id)

    async def _publish_threads(self, user_id: str, thread_id: str) -> None:
        threads = await self._require_threads().get_threads()
        self._bus.publish(ThreadsUpdated(thread_id=thread_id, user_id=user_id, threads=_summaries(threads)))

    def _require_threads(self) -> ThreadRepository:
        if self._threads is None:
            raise ConfigurationError(
                error_code=ErrorCode.NOT_READY,
                message="No thread repository configured",
            )
        return self._threads


def _summaries(records: Sequence[ThreadRecord]) -> tuple[ThreadSummary, ...]:
    return tuple(
        ThreadSummary(id=record.id, title=record.title or "", updated_at=record.updated_at)
        for record in records
    )


__all__ = ["HandlerWiring", "MessageService"]
