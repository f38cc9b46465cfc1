"""Tests for the tool-call and tool-result event handlers."""

from __future__ import annotations

import asyncio
import json

import pytest

from threadloom.handlers import (
    FOLLOWUP_CONTEXT,
    AssistantTurnRecorder,
    ToolCallHandler,
    ToolResultHandler,
    tool_result_handler,
)
from threadloom.messaging.content import ToolResultContent, parse_content, serialize_content
from threadloom.messaging.errors import ErrorCode, MessagingError
from threadloom.messaging.events import (
    AssistantMessageReceived,
    ErrorOccurred,
    EventBus,
    MessagesUpdated,
    ToolCallReceived,
    ToolResultSent,
)
from threadloom.messaging.processor_registry import ToolProcessorRegistry
from threadloom.messaging.structures import ModelHistoryMessage, ModelToolCall, ToolCallRequest, ToolResult
from threadloom.processors import BaseToolProcessor
from threadloom.repositories.memory import InMemoryMessageRepository


class _Echo(BaseToolProcessor):
    supported_tools = ("echo",)

    def __init__(self) -> None:
        self.calls: list[ToolCallRequest] = []

    async def handle_echo(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        self.calls.append(request)
        return ToolResult.success(request.id, "echoed", dict(request.arguments))


def _call_event(name: str, call_id: str = "call_1", **arguments) -> ToolCallReceived:
    return ToolCallReceived(
        thread_id="t1",
        user_id="u1",
        tool_call=ToolCallRequest(id=call_id, name=name, arguments=arguments),
        message_id="m1",
    )


class _SuspendingRepository(InMemoryMessageRepository):
    """Yields to the loop before every storage call, like a networked store."""

    async def save_message(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().save_message(*args, **kwargs)

    async def get_messages(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().get_messages(*args, **kwargs)

    async def find_tool_message(self, thread_id, tool_call_id):
        await asyncio.sleep(0)
        return await super().find_tool_message(thread_id, tool_call_id)


async def _store_tool_call_turn(repository, *call_ids: str) -> None:
    await repository.save_message("please", "user", "u1", "t1")
    recorder = AssistantTurnRecorder(EventBus(), repository)
    calls = tuple(ModelToolCall(id=call_id, name="echo", arguments="{}") for call_id in call_ids)
    await recorder.record(
        ModelHistoryMessage(role="assistant", content=None, tool_calls=calls), thread_id="t1", user_id="u1"
    )


class TestToolCallHandler:
    @pytest.mark.asyncio
    async def test_dispatches_to_processor_and_publishes_result(self, bus, make_recorder) -> None:
        echo = _Echo()
        handler = ToolCallHandler(bus, ToolProcessorRegistry([echo]))
        recorder = make_recorder(bus)

        await handler.handle(_call_event("echo", text="hi"))

        assert [call.arguments for call in echo.calls] == [{"text": "hi"}]
        results = recorder.of_type(ToolResultSent)
        assert len(results) == 1
        assert results[0].tool_result == ToolResult.success("call_1", "echoed", {"text": "hi"})
        assert results[0].message_id == ""

    @pytest.mark.asyncio
    async def test_unknown_tool_yields_error_result(self, bus, make_recorder) -> None:
        echo = _Echo()
        handler = ToolCallHandler(bus, ToolProcessorRegistry([echo]))
        recorder = make_recorder(bus)

        await handler.handle(_call_event("unknown_tool"))

        result = recorder.of_type(ToolResultSent)[0].tool_result
        assert result.status == "error"
        assert "no processor" in result.message
        assert echo.calls == []

    @pytest.mark.asyncio
    async def test_raising_processor_yields_error_result(self, bus, make_recorder) -> None:
        class Raw:
            def can_process(self, tool_name: str) -> bool:
                return True

            async def process_tool_call(self, request, thread_id, user_id):
                raise RuntimeError("disk full")

        handler = ToolCallHandler(bus, ToolProcessorRegistry([Raw()]))
        recorder = make_recorder(bus)

        await handler.handle(_call_event("anything"))

        result = recorder.of_type(ToolResultSent)[0].tool_result
        assert result.status == "error"
        assert result.message == "tool execution failed: disk full"

    @pytest.mark.asyncio
    async def test_mismatched_call_id_is_corrected(self, bus, make_recorder) -> None:
        class Sloppy:
            def can_process(self, tool_name: str) -> bool:
                return True

            async def process_tool_call(self, request, thread_id, user_id):
                return ToolResult.success("wrong-id", "done")

        handler = ToolCallHandler(bus, ToolProcessorRegistry([Sloppy()]))
        recorder = make_recorder(bus)

        await handler.handle(_call_event("anything", call_id="call_7"))

        assert recorder.of_type(ToolResultSent)[0].tool_result.tool_call_id == "call_7"

    @pytest.mark.asyncio
    async def test_duplicate_events_run_twice(self, bus, make_recorder) -> None:
        echo = _Echo()
        handler = ToolCallHandler(bus, ToolProcessorRegistry([echo]))
        recorder = make_recorder(bus)
        handler.attach()

        event = _call_event("echo")
        bus.publish(event)
        bus.publish(event)
        await bus.drain()

        assert len(echo.calls) == 2
        assert len(recorder.of_type(ToolResultSent)) == 2


class TestToolResultHandler:
    @pytest.mark.asyncio
    async def test_persists_tool_message_and_records_follow_up(
        self, bus, repository, model_client, make_recorder
    ) -> None:
        await _store_tool_call_turn(repository, "call_1")
        model_client.reply_text("All done")
        handler = ToolResultHandler(bus, repository, model_client)
        recorder = make_recorder(bus)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "echoed"))
        )

        tool_message = await repository.find_tool_message("t1", "call_1")
        assert tool_message is not None
        assert parse_content(tool_message.content).content == ToolResultContent(
            tool_call_id="call_1", status="success", message="echoed"
        )
        history = model_client.calls[0]
        assert [item.role for item in history] == ["user", "assistant", "tool"]
        assert history[-1].tool_call_id == "call_1"
        assert recorder.types() == ["assistant_message_received", "messages_updated"]
        assert recorder.of_type(AssistantMessageReceived)[0].content == "All done"
        assert repository.all_messages("t1")[-1].content == "All done"

    @pytest.mark.asyncio
    async def test_existing_tool_message_is_not_duplicated(self, bus, repository, model_client) -> None:
        await _store_tool_call_turn(repository, "call_1")
        await repository.save_message(
            serialize_content(ToolResult.success("call_1", "echoed").to_content()),
            "tool",
            "u1",
            "t1",
            tool_call_id="call_1",
        )
        model_client.reply_text("ok")
        handler = ToolResultHandler(bus, repository, model_client)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "echoed"))
        )

        tool_messages = [m for m in repository.all_messages("t1") if m.role == "tool"]
        assert len(tool_messages) == 1

    @pytest.mark.asyncio
    async def test_tool_turn_hidden_by_read_lag_is_added(self, bus, repository, model_client) -> None:
        await _store_tool_call_turn(repository, "call_1")
        repository.read_lag = 1
        model_client.reply_text("ok")
        handler = ToolResultHandler(bus, repository, model_client)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "echoed"))
        )

        history = model_client.calls[0]
        assert history[-1].role == "tool"
        assert history[-1].tool_call_id == "call_1"

    @pytest.mark.asyncio
    async def test_batch_is_answered_once_all_results_arrive(self, bus, repository, model_client) -> None:
        await _store_tool_call_turn(repository, "call_1", "call_2")
        model_client.reply_text("both done")
        handler = ToolResultHandler(bus, repository, model_client)

        for call_id in ("call_1", "call_2"):
            await handler.handle(
                ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success(call_id, "ok"))
            )
        assert len(model_client.calls) == 1

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_2", "ok"))
        )
        assert len(model_client.calls) == 1
        assert [m.role for m in model_client.calls[0]] == ["user", "assistant", "tool", "tool"]

    @pytest.mark.asyncio
    async def test_model_failure_is_published(self, bus, repository, model_client, make_recorder) -> None:
        await _store_tool_call_turn(repository, "call_1")
        model_client.fail(RuntimeError("model offline"))
        handler = ToolResultHandler(bus, repository, model_client)
        recorder = make_recorder(bus)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )

        errors = recorder.of_type(ErrorOccurred)
        assert len(errors) == 1
        assert errors[0].context == FOLLOWUP_CONTEXT
        assert errors[0].error.error_code == ErrorCode.MODEL_FAILURE

    @pytest.mark.asyncio
    async def test_history_failure_is_published(self, bus, repository, model_client, make_recorder) -> None:
        await _store_tool_call_turn(repository, "call_1")
        repository.inject_failure("get_messages", "db down")
        handler = ToolResultHandler(bus, repository, model_client)
        recorder = make_recorder(bus)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )

        errors = recorder.of_type(ErrorOccurred)
        assert errors[0].error.error_code == ErrorCode.REPOSITORY_FAILURE
        assert model_client.calls == []

    @pytest.mark.asyncio
    async def test_follow_up_rounds_are_bounded(self, bus, repository, model_client, make_recorder) -> None:
        await _store_tool_call_turn(repository, "call_1")
        model_client.reply_tool_calls(("call_2", "echo", {}))
        handler = ToolResultHandler(bus, repository, model_client, max_tool_iterations=1)
        recorder = make_recorder(bus)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )
        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_2", "ok"))
        )

        assert len(model_client.calls) == 1
        error = recorder.of_type(ErrorOccurred)[-1].error
        assert isinstance(error, MessagingError)
        assert error.error_code == ErrorCode.TOOL_ITERATION_LIMIT

    @pytest.mark.asyncio
    async def test_concurrent_batch_results_reach_model_together(self, bus, model_client) -> None:
        repository = _SuspendingRepository()
        await _store_tool_call_turn(repository, "call_1", "call_2")
        model_client.reply_text("both done")
        handler = ToolResultHandler(bus, repository, model_client)

        await asyncio.gather(
            *(
                handler.handle(
                    ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success(call_id, "ok"))
                )
                for call_id in ("call_1", "call_2")
            )
        )

        assert len(model_client.calls) == 1
        tool_turns = {item.tool_call_id for item in model_client.calls[0] if item.role == "tool"}
        assert tool_turns == {"call_1", "call_2"}

    @pytest.mark.asyncio
    async def test_failed_follow_up_does_not_use_up_next_chain(
        self, bus, repository, model_client, make_recorder
    ) -> None:
        handler = ToolResultHandler(bus, repository, model_client, max_tool_iterations=1)
        recorder = make_recorder(bus)
        await _store_tool_call_turn(repository, "call_1")
        model_client.fail(RuntimeError("model offline"))
        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )

        await _store_tool_call_turn(repository, "call_2")
        model_client.reply_text("second chain done")
        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_2", "ok"))
        )

        assert [event.error.error_code for event in recorder.of_type(ErrorOccurred)] == [ErrorCode.MODEL_FAILURE]
        assert len(model_client.calls) == 2
        assert repository.all_messages("t1")[-1].content == "second chain done"

    @pytest.mark.asyncio
    async def test_reset_thread_forgets_chain_state(self, bus, repository, model_client) -> None:
        await _store_tool_call_turn(repository, "call_1")
        model_client.reply_tool_calls(("call_2", "echo", {}))
        handler = ToolResultHandler(bus, repository, model_client)

        await handler.handle(
            ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))
        )
        assert handler.tracked_threads == {"t1"}

        handler.reset_thread("t1")
        assert handler.answered_batches == (("t1", ("call_1",)),)

        handler.reset_thread("t1", cleared=True)
        assert handler.tracked_threads == set()

    @pytest.mark.asyncio
    async def test_answered_batches_are_bounded(self, bus, repository, model_client, monkeypatch) -> None:
        monkeypatch.setattr(tool_result_handler, "_ANSWERED_BATCH_LIMIT", 2)
        handler = ToolResultHandler(bus, repository, model_client)

        for call_id in ("call_1", "call_2", "call_3"):
            await _store_tool_call_turn(repository, call_id)
            model_client.reply_text(f"answered {call_id}")
            await handler.handle(
                ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success(call_id, "ok"))
            )

        assert handler.answered_batches == (("t1", ("call_2",)), ("t1", ("call_3",)))

    @pytest.mark.asyncio
    async def test_repeated_result_for_answered_batch_is_not_followed_up(self, bus, repository, model_client) -> None:
        await _store_tool_call_turn(repository, "call_1")
        model_client.reply_text("done")
        handler = ToolResultHandler(bus, repository, model_client)
        event = ToolResultSent(thread_id="t1", user_id="u1", tool_result=ToolResult.success("call_1", "ok"))

        await handler.handle(event)
        await handler.handle(event)

        assert len(model_client.calls) == 1
        assert len([m for m in repository.all_messages("t1") if m.role == "tool"]) == 1


class TestAssistantTurnRecorder:
    @pytest.mark.asyncio
    async def test_tool_call_reply_fans_out(self, bus, repository, make_recorder) -> None:
        recorder = make_recorder(bus)
        turn = AssistantTurnRecorder(bus, repository)
        reply = ModelHistoryMessage(
            role="assistant",
            content=None,
            tool_calls=(
                ModelToolCall(id="call_1", name="echo", arguments=json.dumps({"a": 1})),
                ModelToolCall(id="", name="echo", arguments="{}"),
            ),
        )

        stored = await turn.record(reply, thread_id="t1", user_id="u1")

        assert recorder.types() == [
            "assistant_message_received",
            "tool_call_received",
            "tool_call_received",
            "messages_updated",
        ]
        calls = [event.tool_call for event in recorder.of_type(ToolCallReceived)]
        assert calls[0].arguments == {"a": 1}
        assert calls[1].id.startswith("call_")
        assert all(event.message_id == stored.id for event in recorder.of_type(ToolCallReceived))
        assert recorder.of_type(AssistantMessageReceived)[0].content is None

    @pytest.mark.asyncio
    async def test_empty_reply_only_updates_messages(self, bus, repository, make_recorder) -> None:
        recorder = make_recorder(bus)

        stored = await AssistantTurnRecorder(bus, repository).record(
            ModelHistoryMessage(role="assistant", content=""), thread_id="t1", user_id="u1"
        )

        assert stored is None
        assert recorder.types() == ["messages_updated"]
        assert repository.all_messages("t1") == []
        assert recorder.of_type(MessagesUpdated)[0].messages == ()
