"""Tests for :mod:`threadloom.bootstrap`."""

from __future__ import annotations

import asyncio

import pytest

from threadloom.bootstrap import EventHandlerBootstrapper, create_runtime
from threadloom.config import Settings
from threadloom.messaging.errors import ConfigurationError, ErrorCode
from threadloom.messaging.events import EventBus, EventType, ToolResultSent
from threadloom.messaging.processor_registry import ToolProcessorRegistry
from threadloom.messaging.structures import ToolResult


class TestEventHandlerBootstrapper:
    @pytest.mark.asyncio
    async def test_initialize_wires_both_handlers_once(self, bus, repository, model_client) -> None:
        bootstrapper = EventHandlerBootstrapper(
            bus, ToolProcessorRegistry(), repository=repository, model_client=model_client
        )

        await asyncio.gather(bootstrapper.initialize(), bootstrapper.initialize())
        await bootstrapper.initialize()

        assert bootstrapper.is_ready
        assert bootstrapper.handler_count(EventType.TOOL_CALL_RECEIVED) == 1
        assert bootstrapper.handler_count(EventType.TOOL_RESULT_SENT) == 1

    @pytest.mark.asyncio
    async def test_waits_for_late_dependencies(self, bus, repository, model_client) -> None:
        bootstrapper = EventHandlerBootstrapper(bus, ToolProcessorRegistry())
        waiting = asyncio.ensure_future(bootstrapper.wait_until_ready())
        await asyncio.sleep(0)
        assert not waiting.done()

        bootstrapper.provide(repository=repository, model_client=model_client)
        await waiting

        assert bootstrapper.is_ready

    @pytest.mark.asyncio
    async def test_times_out_without_dependencies(self, bus, repository) -> None:
        bootstrapper = EventHandlerBootstrapper(
            bus, ToolProcessorRegistry(), repository=repository, settings=Settings(bootstrap_timeout=0.01)
        )

        with pytest.raises(ConfigurationError) as info:
            await bootstrapper.initialize()

        assert info.value.error_code == ErrorCode.NOT_READY
        assert info.value.details["missing"] == ["model_client"]
        assert bus.handler_count() == 0

    @pytest.mark.asyncio
    async def test_ensure_wired_restores_removed_subscriptions(self, bus, repository, model_client) -> None:
        bootstrapper = EventHandlerBootstrapper(
            bus, ToolProcessorRegistry(), repository=repository, model_client=model_client
        )
        await bootstrapper.initialize()
        bus.clear()

        await bootstrapper.ensure_wired()
        await bootstrapper.ensure_wired()

        assert bus.handler_count(EventType.TOOL_CALL_RECEIVED) == 1
        assert bus.handler_count(EventType.TOOL_RESULT_SENT) == 1

    @pytest.mark.asyncio
    async def test_shutdown_unsubscribes_and_drains(self, bus, repository, model_client) -> None:
        bootstrapper = EventHandlerBootstrapper(
            bus, ToolProcessorRegistry(), repository=repository, model_client=model_client
        )
        await bootstrapper.initialize()
        model_client.reply_text("late reply")
        bus.publish(ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok")))

        await bootstrapper.shutdown()

        assert bus.pending_tasks == 0
        assert model_client.pending == 0
        assert bus.handler_count() == 0
        assert not bootstrapper.is_ready


class TestCreateRuntime:
    def test_builds_default_registry(self, runtime) -> None:
        assert "set_nickname" in runtime.registry.supported_tools()
        assert runtime.event_logger is None

    def test_event_logger_follows_settings(self, repository, model_client, users, tasks, pregenerated) -> None:
        runtime = create_runtime(
            Settings(debug_event_logging=True),
            repository=repository,
            model_client=model_client,
            users=users,
            tasks=tasks,
            pregenerated=pregenerated,
        )

        assert runtime.event_logger is not None
        assert runtime.bus.wildcard_count() == 1

    @pytest.mark.asyncio
    async def test_missing_listener_goes_to_error_reporter(self, runtime) -> None:
        runtime.bus.publish(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )

        report = runtime.error_reporter.reports[0]
        assert report.context == "event_bus"
        assert report.level == "critical"

    @pytest.mark.asyncio
    async def test_aclose_detaches_everything(self, runtime) -> None:
        await runtime.start()

        await runtime.aclose()

        assert runtime.bus.handler_count() == 0
        assert runtime.bus.wildcard_count() == 0


def test_bus_is_not_shared_between_runtimes(repository, model_client, users, tasks, pregenerated) -> None:
    kwargs = dict(repository=repository, model_client=model_client, users=users, tasks=tasks, pregenerated=pregenerated)
    first = create_runtime(Settings(), **kwargs)
    second = create_runtime(Settings(), **kwargs)

    assert first.bus is not second.bus
    assert isinstance(first.bus, EventBus)
