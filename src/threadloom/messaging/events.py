"""Typed events and the publish-subscribe bus that carries them.

Every step of a conversation turn announces itself as an event on a single
:class:`EventBus`. Handlers are plain callables; a handler that returns an
awaitable has it scheduled on the running loop, so :meth:`EventBus.publish`
itself never suspends.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, TYPE_CHECKING, Union

from .errors import ConfigurationError, ErrorCode
from .structures import StorageMessage, ToolCallRequest, ToolResult

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

LOGGER = logging.getLogger(__name__)


class EventType(str, Enum):
    """Wire names of the event variants."""

    USER_MESSAGE_SENT = "user_message_sent"
    ASSISTANT_MESSAGE_RECEIVED = "assistant_message_received"
    TOOL_CALL_RECEIVED = "tool_call_received"
    TOOL_RESULT_SENT = "tool_result_sent"
    MESSAGES_UPDATED = "messages_updated"
    ERROR_OCCURRED = "error_occurred"
    THREADS_UPDATED = "threads_updated"


# Event types whose publication must reach at least one handler, otherwise a
# turn can never complete.
RESULT_BEARING_EVENT_TYPES: frozenset[EventType] = frozenset(
    {EventType.TOOL_CALL_RECEIVED, EventType.TOOL_RESULT_SENT}
)


@dataclass(slots=True)
class Event:
    """Base class for all events.

    Every event is scoped to a thread and a user.
    """

    thread_id: str
    user_id: str

    type: ClassVar[EventType]


# =============================================================================
# Conversation events
# =============================================================================


@dataclass(slots=True)
class UserMessageSent(Event):
    """Emitted after a user turn has been persisted.

    Attributes:
        content: The user's text.
        message_id: Id of the stored user message.
    """

    content: str = ""
    message_id: str = ""

    type: ClassVar[EventType] = EventType.USER_MESSAGE_SENT


@dataclass(slots=True)
class AssistantMessageReceived(Event):
    """Emitted after an assistant turn has been persisted.

    Attributes:
        content: Assistant text, or None for a pure tool-call turn.
        message_id: Id of the stored assistant message.
        tool_calls: Calls requested in the same turn, if any.
    """

    content: str | None = None
    message_id: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()

    type: ClassVar[EventType] = EventType.ASSISTANT_MESSAGE_RECEIVED


@dataclass(slots=True)
class ToolCallReceived(Event):
    """Emitted once per tool call the model asked for.

    Attributes:
        tool_call: The request to dispatch.
        message_id: Id of the stored message that encodes the call batch.
    """

    tool_call: ToolCallRequest = field(default_factory=lambda: ToolCallRequest(id="", name=""))
    message_id: str = ""

    type: ClassVar[EventType] = EventType.TOOL_CALL_RECEIVED


@dataclass(slots=True)
class ToolResultSent(Event):
    """Emitted once per finished tool call.

    Attributes:
        tool_result: Outcome produced by a processor.
        message_id: Id of the stored tool message; blank until persisted.
    """

    tool_result: ToolResult = field(default_factory=lambda: ToolResult.error("", ""))
    message_id: str = ""

    type: ClassVar[EventType] = EventType.TOOL_RESULT_SENT


@dataclass(slots=True)
class MessagesUpdated(Event):
    """Emitted with the thread's current stored messages after a turn settles."""

    messages: tuple[StorageMessage, ...] = ()

    type: ClassVar[EventType] = EventType.MESSAGES_UPDATED


@dataclass(slots=True)
class ErrorOccurred(Event):
    """Emitted whenever a step of the pipeline fails.

    Attributes:
        error: The exception that was raised.
        context: Tag naming the step that failed (e.g. ``send_user_message``).
    """

    error: BaseException = field(default_factory=lambda: RuntimeError("unknown error"))
    context: str = ""

    type: ClassVar[EventType] = EventType.ERROR_OCCURRED


# =============================================================================
# Thread list events
# =============================================================================


@dataclass(slots=True, frozen=True)
class ThreadSummary:
    """Lightweight description of a conversation for thread lists."""

    id: str
    title: str
    updated_at: str


@dataclass(slots=True)
class ThreadsUpdated(Event):
    """Emitted when the set of threads or their titles change."""

    threads: tuple[ThreadSummary, ...] = ()

    type: ClassVar[EventType] = EventType.THREADS_UPDATED


EVENT_CLASSES: dict[EventType, type[Event]] = {
    cls.type: cls
    for cls in (
        UserMessageSent,
        AssistantMessageReceived,
        ToolCallReceived,
        ToolResultSent,
        MessagesUpdated,
        ErrorOccurred,
        ThreadsUpdated,
    )
}

Handler = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]
EventKey = Union[EventType, str, "type[Event]"]


def resolve_event_type(key: EventKey) -> EventType:
    """Normalize an event class, enum member, or wire name to :class:`EventType`."""
    if isinstance(key, EventType):
        return key
    if isinstance(key, str):
        return EventType(key)
    if isinstance(key, type) and issubclass(key, Event) and hasattr(key, "type"):
        return key.type
    raise TypeError(f"Cannot resolve event type from {key!r}")


class EventBus:
    """A typed publish-subscribe bus for the message pipeline.

    Example::

        bus = EventBus()

        def on_user_message(event: UserMessageSent) -> None:
            print(event.content)

        unsubscribe = bus.subscribe(EventType.USER_MESSAGE_SENT, on_user_message)
        bus.publish(UserMessageSent(thread_id="t1", user_id="u1", content="hello"))
        unsubscribe()

    Handlers for a type run in registration order, followed by wildcard
    handlers. A raising handler is logged and the rest still run. Events are
    not buffered: a handler subscribed after a publish never sees it.

    Thread Safety:
        Not thread-safe. Use from a single event loop thread.
    """

    __slots__ = ("_handlers", "_wildcard", "_tasks", "_on_configuration_error")

    def __init__(
        self,
        *,
        on_configuration_error: Callable[[ConfigurationError], None] | None = None,
    ) -> None:
        """Initialize an empty event bus.

        Args:
            on_configuration_error: Called (never raised) when a result-bearing
                event is published with no handler for its type. Defaults to
                logging the error.
        """
        self._handlers: DefaultDict[EventType, list[_Subscription]] = defaultdict(list)
        self._wildcard: list[_Subscription] = []
        self._tasks: set[asyncio.Future[Any]] = set()
        self._on_configuration_error = on_configuration_error or _log_configuration_error

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, event_type: EventKey, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for one event type.

        Subscribing the same handler twice results in two invocations per
        publish; each returned closure removes only its own registration.

        Returns:
            A closure that removes this registration. Calling it more than
            once is harmless.
        """
        resolved = resolve_event_type(event_type)
        subscription = _Subscription(handler)
        self._handlers[resolved].append(subscription)
        LOGGER.debug("Subscribed handler %s to %s", _handler_name(handler), resolved.value)

        def unsubscribe() -> None:
            self._remove(self._handlers.get(resolved), subscription)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for every event type."""
        subscription = _Subscription(handler)
        self._wildcard.append(subscription)
        LOGGER.debug("Subscribed wildcard handler %s", _handler_name(handler))

        def unsubscribe() -> None:
            self._remove(self._wildcard, subscription)

        return unsubscribe

    def unsubscribe(self, event_type: EventKey, handler: Handler) -> None:
        """Remove the first registration of ``handler`` for ``event_type``.

        Safe to call for handlers that were never subscribed.
        """
        handlers = self._handlers.get(resolve_event_type(event_type))
        if not handlers:
            return
        for subscription in handlers:
            if subscription.handler == handler:
                self._remove(handlers, subscription)
                return

    @staticmethod
    def _remove(bucket: list[_Subscription] | None, subscription: _Subscription) -> None:
        if bucket is None:
            return
        for index, candidate in enumerate(bucket):
            if candidate is subscription:
                bucket.pop(index)
                LOGGER.debug("Unsubscribed handler %s", _handler_name(subscription.handler))
                return

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, event: Event) -> None:
        """Deliver ``event`` synchronously to every matching handler.

        Never raises and never awaits. Awaitables returned by handlers are
        scheduled as tasks that run after ``publish`` has returned.
        """
        event_type = event.type
        typed = list(self._handlers.get(event_type, ()))
        wildcard = list(self._wildcard)

        if not typed:
            LOGGER.debug("No handlers for event type %s", event_type.value)
            if event_type in RESULT_BEARING_EVENT_TYPES:
                self._report_missing_listener(event_type)
        else:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.value, len(typed))

        for subscription in typed + wildcard:
            self._invoke(subscription.handler, event)

    def _invoke(self, handler: Handler, event: Event) -> None:
        try:
            result = handler(event)
        except Exception:
            LOGGER.exception(
                "Handler %s raised exception for event %s",
                _handler_name(handler),
                event.type.value,
            )
            return
        if inspect.isawaitable(result):
            self._schedule(handler, event, result)

    def _schedule(self, handler: Handler, event: Event, awaitable: Awaitable[Any]) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError:
            # No running loop: the coroutine can never run.
            LOGGER.error(
                "Handler %s returned an awaitable for %s outside an event loop",
                _handler_name(handler),
                event.type.value,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._finish(done, handler, event))

    def _finish(self, task: asyncio.Future[Any], handler: Handler, event: Event) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "Async handler %s failed for event %s",
                _handler_name(handler),
                event.type.value,
                exc_info=exc,
            )

    def _report_missing_listener(self, event_type: EventType) -> None:
        error = ConfigurationError(
            error_code=ErrorCode.NO_LISTENER,
            message=f"No listener registered for {event_type.value}",
            details={
                "event_type": event_type.value,
                "registered": sorted(key.value for key, subs in self._handlers.items() if subs),
            },
        )
        try:
            self._on_configuration_error(error)
        except Exception:
            LOGGER.exception("Configuration error callback failed")

    # ------------------------------------------------------------------
    # Lifecycle & introspection
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every scheduled handler task (and any it spawned) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        self._wildcard.clear()
        LOGGER.debug("Cleared all event handlers")

    def handler_count(self, event_type: EventKey | None = None) -> int:
        """Return the number of registered per-type handlers.

        Args:
            event_type: If provided, count handlers for that type only;
                otherwise count across all types. Wildcard handlers are not
                included.
        """
        if event_type is not None:
            return len(self._handlers.get(resolve_event_type(event_type), ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def wildcard_count(self) -> int:
        return len(self._wildcard)

    def is_subscribed(self, event_type: EventKey, handler: Handler) -> bool:
        """True when ``handler`` has at least one live registration for ``event_type``."""
        handlers = self._handlers.get(resolve_event_type(event_type), ())
        return any(subscription.handler == handler for subscription in handlers)


class _Subscription:
    """One registration of a handler; identity distinguishes duplicates."""

    __slots__ = ("handler",)

    def __init__(self, handler: Handler) -> None:
        self.handler = handler


def _log_configuration_error(error: ConfigurationError) -> None:
    LOGGER.error("%s (registered: %s)", error, error.details.get("registered"))


def _handler_name(handler: Handler) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "EventType",
    "RESULT_BEARING_EVENT_TYPES",
    "Event",
    "UserMessageSent",
    "AssistantMessageReceived",
    "ToolCallReceived",
    "ToolResultSent",
    "MessagesUpdated",
    "ErrorOccurred",
    "ThreadSummary",
    "ThreadsUpdated",
    "EVENT_CLASSES",
    "Handler",
    "Unsubscribe",
    "EventBus",
    "resolve_event_type",
]
