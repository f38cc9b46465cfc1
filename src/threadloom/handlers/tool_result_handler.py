"""Feeds tool results back to the model and records its follow-up."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Sequence

from ..ai.base import ModelClient
from ..messaging.content import serialize_content
from ..messaging.errors import ErrorCode, MessagingError, UpstreamError
from ..messaging.events import ErrorOccurred, EventBus, ToolResultSent, Unsubscribe
from ..messaging.structures import ModelHistoryMessage, StorageMessage, to_model_history
from ..repositories.base import MessageRepository
from .assistant_turn import AssistantTurnRecorder

LOGGER = logging.getLogger(__name__)

FOLLOWUP_CONTEXT = "tool_result_followup"
_ANSWERED_BATCH_LIMIT = 256

BatchKey = tuple[str, tuple[str, ...]]


class ToolResultHandler:
    """Handles :class:`ToolResultSent`.

    For each result:

    1. Make sure exactly one tool message stores it.
    2. Load the model history, re-adding the tool turn if the store has not
       caught up with the write yet.
    3. Once every call of the originating batch has a result, ask the model
       for a follow-up with every tool turn of the batch present, and record
       it like any other assistant turn.

    Each batch is answered once. A repeated result for a batch that already
    got its follow-up is stored if needed and otherwise only noted at DEBUG.

    Any failure is logged and published as :class:`ErrorOccurred` with
    context ``tool_result_followup``; :meth:`handle` never raises.

    Args:
        max_tool_iterations: Follow-up rounds allowed in one chain of tool
            calls before the chain is stopped with an error.
    """

    def __init__(
        self,
        bus: EventBus,
        repository: MessageRepository,
        model_client: ModelClient,
        *,
        max_tool_iterations: int = 8,
    ) -> None:
        self._bus = bus
        self._repository = repository
        self._model_client = model_client
        self._recorder = AssistantTurnRecorder(bus, repository)
        self._max_tool_iterations = max(1, max_tool_iterations)
        self._rounds: dict[str, int] = {}
        self._answered_batches: OrderedDict[BatchKey, None] = OrderedDict()

    def attach(self) -> Unsubscribe:
        return self._bus.subscribe(ToolResultSent, self.handle)

    def reset_thread(self, thread_id: str, *, cleared: bool = False) -> None:
        """Start a fresh tool chain for ``thread_id``.

        With ``cleared`` the thread's answered batches are forgotten as well.
        """
        self._rounds.pop(thread_id, None)
        if cleared:
            for key in [key for key in self._answered_batches if key[0] == thread_id]:
                del self._answered_batches[key]

    @property
    def answered_batches(self) -> tuple[BatchKey, ...]:
        return tuple(self._answered_batches)

    @property
    def tracked_threads(self) -> set[str]:
        return set(self._rounds) | {key[0] for key in self._answered_batches}

    async def handle(self, event: ToolResultSent) -> None:
        thread_id = event.thread_id
        tool_call_id = event.tool_result.tool_call_id
        try:
            stored = await self._ensure_tool_message(event)
            history = await self._load_history(thread_id, stored)
            siblings = await self._claim_batch(thread_id, tool_call_id, history)
            if siblings is None:
                return
            _add_missing_tool_turns(history, siblings)
            self._count_round(thread_id)
            response = await self._ask_model(history)
            await self._recorder.record(response, thread_id=thread_id, user_id=event.user_id)
            if not response.tool_calls:
                self._rounds.pop(thread_id, None)
        except Exception as exc:
            self._rounds.pop(thread_id, None)
            LOGGER.exception("Tool result follow-up failed for %s in thread %s", tool_call_id, thread_id)
            self._bus.publish(
                ErrorOccurred(
                    thread_id=thread_id,
                    user_id=event.user_id,
                    error=exc,
                    context=FOLLOWUP_CONTEXT,
                )
            )

    async def _ensure_tool_message(self, event: ToolResultSent) -> StorageMessage:
        result = event.tool_result
        existing = await self._repository.find_tool_message(event.thread_id, result.tool_call_id)
        if existing is not None:
            LOGGER.debug("Tool message for %s already stored as %s", result.tool_call_id, existing.id)
            return existing
        stored = await self._repository.save_message(
            serialize_content(result.to_content()),
            "tool",
            event.user_id,
            event.thread_id,
            tool_call_id=result.tool_call_id,
        )
        LOGGER.debug("Stored tool result %s as %s", result.tool_call_id, stored.id)
        return stored

    async def _load_history(self, thread_id: str, tool_message: StorageMessage) -> list[ModelHistoryMessage]:
        result = await self._repository.get_model_history_messages(thread_id)
        history = result.unwrap("get_model_history_messages")
        _add_missing_tool_turns(history, [tool_message])
        return history

    async def _claim_batch(
        self,
        thread_id: str,
        tool_call_id: str,
        history: Sequence[ModelHistoryMessage],
    ) -> list[StorageMessage] | None:
        """Stored sibling results when this result completes its batch, else ``None``."""
        batch = _batch_of(tool_call_id, history)
        if batch is None:
            return []
        siblings: list[StorageMessage] = []
        for sibling_id in batch:
            if sibling_id == tool_call_id:
                continue
            sibling = await self._repository.find_tool_message(thread_id, sibling_id)
            if sibling is None:
                LOGGER.debug("Waiting for sibling tool results before answering %s", tool_call_id)
                return None
            siblings.append(sibling)
        key = (thread_id, batch)
        if key in self._answered_batches:
            LOGGER.debug("Batch %s already answered; %s is not followed up again", ", ".join(batch), tool_call_id)
            return None
        self._answered_batches[key] = None
        while len(self._answered_batches) > _ANSWERED_BATCH_LIMIT:
            self._answered_batches.popitem(last=False)
        return siblings

    def _count_round(self, thread_id: str) -> None:
        rounds = self._rounds.get(thread_id, 0) + 1
        if rounds > self._max_tool_iterations:
            self._rounds.pop(thread_id, None)
            raise MessagingError(
                error_code=ErrorCode.TOOL_ITERATION_LIMIT,
                message=f"Stopped after {self._max_tool_iterations} consecutive tool follow-ups",
                details={"thread_id": thread_id},
            )
        self._rounds[thread_id] = rounds

    async def _ask_model(self, history: Sequence[ModelHistoryMessage]) -> ModelHistoryMessage:
        try:
            return await self._model_client.send_message(history)
        except MessagingError:
            raise
        except Exception as exc:
            raise UpstreamError.from_model(exc) from exc


def _batch_of(tool_call_id: str, history: Sequence[ModelHistoryMessage]) -> tuple[str, ...] | None:
    for message in reversed(history):
        if message.role != "assistant" or not message.tool_calls:
            continue
        ids = tuple(call.id for call in message.tool_calls)
        if tool_call_id in ids:
            return tuple(sorted(ids))
    return None


def _add_missing_tool_turns(history: list[ModelHistoryMessage], tool_messages: Sequence[StorageMessage]) -> None:
    """Append tool turns the store has not returned yet."""
    present = {item.tool_call_id for item in history if item.role == "tool"}
    for message in tool_messages:
        if message.tool_call_id in present:
            continue
        LOGGER.debug("Tool turn %s not visible yet; adding it to the request", message.tool_call_id)
        history.append(to_model_history(message))
        present.add(message.tool_call_id)


__all__ = ["ToolResultHandler", "FOLLOWUP_CONTEXT"]
