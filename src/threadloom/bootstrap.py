"""Composition root for the message pipeline.

This module wires the event bus, the tool processors, both event handlers
and the message service together:

1. Create the event bus
2. Register the default tool processors
3. Create the bootstrapper that owns the handler subscriptions
4. Attach the error reporter (and the event logger when enabled)
5. Create the opening-message pool (when enabled) and the message service

Usage:
    runtime = create_runtime(settings, repository=..., model_client=..., ...)
    await runtime.start()
    await runtime.service.send_user_message("hello", thread_id, user_id)
    await runtime.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .ai.base import ModelClient
from .config import Settings
from .handlers.tool_call_handler import ToolCallHandler
from .handlers.tool_result_handler import ToolResultHandler
from .messaging.errors import ConfigurationError, ErrorCode
from .messaging.events import EventBus, EventType, Unsubscribe
from .messaging.processor_registry import ToolProcessorRegistry
from .processors import register_default_processors
from .repositories.base import (
    MessageRepository,
    PregeneratedMessageRepository,
    TaskRepository,
    ThreadRepository,
    UserRepository,
)
from .services.error_reporter import ErrorReporter
from .services.event_logger import EventLogger
from .services.message_service import MessageService
from .services.pregeneration import PregenerationService

LOGGER = logging.getLogger(__name__)


class EventHandlerBootstrapper:
    """Owns the tool-call and tool-result handler subscriptions.

    :meth:`initialize` is a one-time barrier: it waits until a repository and
    a model client have been provided, then subscribes both handlers in one
    step. Concurrent and repeated calls are safe.

    Thread Safety:
        Not thread-safe. Use from a single event loop thread.
    """

    def __init__(
        self,
        bus: EventBus,
        registry: ToolProcessorRegistry,
        *,
        repository: MessageRepository | None = None,
        model_client: ModelClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._bus = bus
        self._registry = registry
        self._repository = repository
        self._model_client = model_client
        self._settings = settings or Settings()
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._provided = asyncio.Event()
        self._tool_call_handler: ToolCallHandler | None = None
        self._tool_result_handler: ToolResultHandler | None = None
        self._unsubscribers: dict[EventType, Unsubscribe] = {}
        self._check_provided()

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def provide(
        self,
        *,
        repository: MessageRepository | None = None,
        model_client: ModelClient | None = None,
    ) -> None:
        """Supply dependencies that were not available at construction."""
        if repository is not None:
            self._repository = repository
        if model_client is not None:
            self._model_client = model_client
        self._check_provided()

    def _check_provided(self) -> None:
        if self._repository is not None and self._model_client is not None:
            self._provided.set()

    def _missing(self) -> list[str]:
        missing = []
        if self._repository is None:
            missing.append("repository")
        if self._model_client is None:
            missing.append("model_client")
        return missing

    # ------------------------------------------------------------------
    # Barrier
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._ready.is_set():
            return
        async with self._lock:
            if self._ready.is_set():
                return
            timeout = self._settings.bootstrap_timeout
            try:
                await asyncio.wait_for(self._provided.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                raise ConfigurationError(
                    error_code=ErrorCode.NOT_READY,
                    message=f"Dependencies not provided within {timeout:g}s",
                    details={"missing": self._missing()},
                ) from None
            self._wire()
            self._ready.set()
            LOGGER.info("Event handlers initialized")

    async def wait_until_ready(self) -> None:
        """Return once the handlers are wired, initializing them if needed."""
        await self.initialize()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def tool_result_handler(self) -> ToolResultHandler | None:
        return self._tool_result_handler

    def handler_count(self, event_type: EventType) -> int:
        return self._bus.handler_count(event_type)

    def reset_thread(self, thread_id: str, *, cleared: bool = False) -> None:
        """Drop the tool-result handler's chain state for ``thread_id``."""
        if self._tool_result_handler is not None:
            self._tool_result_handler.reset_thread(thread_id, cleared=cleared)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _wire(self) -> None:
        assert self._repository is not None and self._model_client is not None
        self._tool_call_handler = ToolCallHandler(self._bus, self._registry)
        self._tool_result_handler = ToolResultHandler(
            self._bus,
            self._repository,
            self._model_client,
            max_tool_iterations=self._settings.max_tool_iterations,
        )
        self._unsubscribers[EventType.TOOL_CALL_RECEIVED] = self._tool_call_handler.attach()
        self._unsubscribers[EventType.TOOL_RESULT_SENT] = self._tool_result_handler.attach()

    async def ensure_wired(self) -> None:
        """Re-attach any handler whose subscription has been removed."""
        await self.initialize()
        handlers: list[tuple[EventType, Any]] = [
            (EventType.TOOL_CALL_RECEIVED, self._tool_call_handler),
            (EventType.TOOL_RESULT_SENT, self._tool_result_handler),
        ]
        for event_type, handler in handlers:
            if handler is None or self._bus.is_subscribed(event_type, handler.handle):
                continue
            LOGGER.warning("Handler for %s was unsubscribed; re-attaching", event_type.value)
            self._unsubscribers[event_type] = handler.attach()

    async def shutdown(self) -> None:
        """Unsubscribe both handlers and wait for their in-flight work."""
        for unsubscribe in self._unsubscribers.values():
            unsubscribe()
        self._unsubscribers.clear()
        self._ready.clear()
        await self._bus.drain()
        LOGGER.info("Event handlers shut down")


@dataclass
class Runtime:
    """Everything :func:`create_runtime` built, plus its lifecycle."""

    settings: Settings
    bus: EventBus
    registry: ToolProcessorRegistry
    bootstrapper: EventHandlerBootstrapper
    service: MessageService
    error_reporter: ErrorReporter
    event_logger: EventLogger | None = None
    model_client: ModelClient | None = None
    pregeneration: PregenerationService | None = None
    _detach: list[Unsubscribe] = field(default_factory=list, repr=False)

    async def start(self) -> None:
        await self.bootstrapper.initialize()

    async def aclose(self) -> None:
        await self.bootstrapper.shutdown()
        if self.pregeneration is not None:
            await self.pregeneration.aclose()
        for detach in self._detach:
            detach()
        self._detach.clear()
        close = getattr(self.model_client, "aclose", None)
        if close is not None:
            await close()


def create_runtime(
    settings: Settings,
    *,
    repository: MessageRepository,
    model_client: ModelClient,
    users: UserRepository,
    tasks: TaskRepository,
    pregenerated: PregeneratedMessageRepository,
    threads: ThreadRepository | None = None,
) -> Runtime:
    """Create and wire all pipeline components.

    Args:
        settings: Runtime settings; ``max_tool_iterations``,
            ``bootstrap_timeout``, ``persist_errors`` and
            ``debug_event_logging`` are read here.
        repository: Conversation storage.
        model_client: Chat model adapter.
        users: User records for the nickname and data-request tools.
        tasks: Task records for the task tools.
        pregenerated: Pool of model-written thread openings; cleared on
            nickname changes and refilled when ``pregenerate_openings`` is on.
        threads: Optional thread storage enabling the thread operations.

    Returns:
        A :class:`Runtime`; call :meth:`Runtime.start` before sending.
    """
    LOGGER.info("Bootstrapping message pipeline...")

    reporter: ErrorReporter | None = None

    def on_configuration_error(error: ConfigurationError) -> None:
        if reporter is not None:
            reporter.report(error, context="event_bus")

    bus = EventBus(on_configuration_error=on_configuration_error)
    registry = register_default_processors(
        ToolProcessorRegistry(),
        users=users,
        tasks=tasks,
        pregenerated=pregenerated,
    )
    bootstrapper = EventHandlerBootstrapper(
        bus,
        registry,
        repository=repository,
        model_client=model_client,
        settings=settings,
    )

    reporter = ErrorReporter(bus, repository=repository, persist_errors=settings.persist_errors)
    detach: list[Callable[[], None]] = [reporter.attach()]

    event_logger = None
    if settings.debug_event_logging:
        event_logger = EventLogger(bus)
        detach.append(event_logger.attach())

    pregeneration = None
    if settings.pregenerate_openings:
        pregeneration = PregenerationService(
            pregenerated, model_client, users, pool_size=settings.pregenerated_pool_size
        )

    service = MessageService(
        bus, repository, model_client, bootstrapper, threads=threads, pregeneration=pregeneration
    )
    LOGGER.debug("Message pipeline created with tools: %s", ", ".join(registry.supported_tools()))
    return Runtime(
        settings=settings,
        bus=bus,
        registry=registry,
        bootstrapper=bootstrapper,
        service=service,
        error_reporter=reporter,
        event_logger=event_logger,
        model_client=model_client,
        pregeneration=pregeneration,
        _detach=detach,
    )


__all__ = ["EventHandlerBootstrapper", "Runtime", "create_runtime"]
