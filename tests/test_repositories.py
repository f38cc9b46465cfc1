"""Tests for the in-memory repositories."""

from __future__ import annotations

import pytest

from threadloom.messaging.content import ErrorContent, parse_content
from threadloom.messaging.errors import ErrorCode, NotFoundError, UpstreamError, ValidationError
from threadloom.repositories.base import DisplayQueryResult, HistoryQueryResult, MessageQueryResult
from threadloom.repositories.memory import (
    DEFAULT_WELCOME_MESSAGE,
    InMemoryMessageRepository,
    InMemoryPregeneratedMessageRepository,
    InMemoryTaskRepository,
    InMemoryThreadRepository,
)


class TestMessageRepository:
    @pytest.mark.asyncio
    async def test_messages_keep_insertion_order(self, repository) -> None:
        for index in range(3):
            await repository.save_message(f"m{index}", "user", "u1", "t1")
        await repository.save_message("other", "user", "u1", "t2")

        result = await repository.get_messages("t1")

        assert result.ok
        assert [m.content for m in result.messages] == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_structured_content_is_serialized(self, repository) -> None:
        stored = await repository.save_message(ErrorContent(message="boom"), "assistant", "u1", "t1")

        assert isinstance(stored.content, str)
        assert parse_content(stored.content).content == ErrorContent(message="boom")

    @pytest.mark.asyncio
    async def test_visibility_and_model_filters(self, repository) -> None:
        await repository.save_message("shown", "user", "u1", "t1")
        await repository.save_message("hidden", "system", "u1", "t1", is_visible=False)
        await repository.save_message("display only", "assistant", "u1", "t1", send_to_model=False)

        visible = await repository.get_messages("t1")
        everything = await repository.get_messages("t1", include_hidden=True)
        for_model = await repository.get_messages("t1", for_model=True)

        assert [m.content for m in visible.messages] == ["shown", "display only"]
        assert len(everything.messages) == 3
        assert [m.content for m in for_model.messages] == ["shown", "hidden"]

    @pytest.mark.asyncio
    async def test_second_tool_message_for_same_call_is_rejected(self, repository) -> None:
        await repository.save_message("{}", "tool", "u1", "t1", tool_call_id="call_1")

        with pytest.raises(ValidationError) as info:
            await repository.save_message("{}", "tool", "u1", "t1", tool_call_id="call_1")

        assert info.value.error_code == ErrorCode.INVARIANT_VIOLATION
        assert (await repository.find_tool_message("t1", "call_1")) is not None
        assert (await repository.find_tool_message("t2", "call_1")) is None

    @pytest.mark.asyncio
    async def test_message_can_be_updated_only_once(self, repository) -> None:
        stored = await repository.save_message("hello", "user", "u1", "t1")

        updated = await repository.update_message(stored.id, send_to_model=False)
        assert updated.send_to_model is False

        with pytest.raises(ValidationError):
            await repository.update_message(stored.id, send_to_model=True)

    @pytest.mark.asyncio
    async def test_update_unknown_message(self, repository) -> None:
        with pytest.raises(NotFoundError) as info:
            await repository.update_message("missing", send_to_model=False)

        assert info.value.error_code == ErrorCode.MESSAGE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_read_lag_hides_latest_writes(self) -> None:
        repository = InMemoryMessageRepository(read_lag=1)
        await repository.save_message("first", "user", "u1", "t1")
        await repository.save_message("second", "user", "u1", "t1")

        result = await repository.get_messages("t1")

        assert [m.content for m in result.messages] == ["first"]
        assert len(repository.all_messages("t1")) == 2

    @pytest.mark.asyncio
    async def test_injected_failures_fire_once(self, repository) -> None:
        repository.inject_failure("get_messages", "db down")

        failed = await repository.get_messages("t1")
        recovered = await repository.get_messages("t1")

        assert not failed.ok
        assert "db down" in failed.error
        with pytest.raises(UpstreamError):
            failed.unwrap("get_messages")
        assert recovered.ok

    @pytest.mark.asyncio
    async def test_save_failure_raises(self, repository) -> None:
        repository.inject_failure("save_message")

        with pytest.raises(UpstreamError) as info:
            await repository.save_message("hello", "user", "u1", "t1")

        assert info.value.error_code == ErrorCode.REPOSITORY_FAILURE

    @pytest.mark.asyncio
    async def test_display_and_history_views(self, repository) -> None:
        await repository.save_message("hello", "user", "u1", "t1")
        await repository.save_message("hi", "assistant", "u1", "t1")

        display = await repository.get_display_messages("t1")
        history = await repository.get_model_history_messages("t1")

        assert [(m.role, m.content) for m in display.messages] == [("user", "hello"), ("assistant", "hi")]
        assert [(m.role, m.content) for m in history.messages] == [("user", "hello"), ("assistant", "hi")]

    @pytest.mark.asyncio
    async def test_clear_removes_messages_and_tool_index(self, repository) -> None:
        await repository.save_message("{}", "tool", "u1", "t1", tool_call_id="call_1")

        await repository.clear_messages("t1")

        assert repository.all_messages("t1") == []
        assert (await repository.find_tool_message("t1", "call_1")) is None
        await repository.save_message("{}", "tool", "u1", "t1", tool_call_id="call_1")

    @pytest.mark.asyncio
    async def test_welcome_message(self, repository) -> None:
        welcome = await repository.create_welcome_message("u1", "t1")

        assert welcome.role == "assistant"
        assert welcome.content == DEFAULT_WELCOME_MESSAGE

    @pytest.mark.asyncio
    async def test_welcome_message_can_be_disabled(self) -> None:
        repository = InMemoryMessageRepository(welcome_message="")

        assert await repository.create_welcome_message("u1", "t1") is None
        assert repository.all_messages("t1") == []


class TestTaskRepository:
    @pytest.mark.asyncio
    async def test_update_tracks_changed_fields_only(self) -> None:
        tasks = InMemoryTaskRepository()
        task = await tasks.create_task("u1", {"title": "A", "status": "todo", "ignored": True})

        updated = await tasks.update_task(task.id, "u2", {"status": "todo", "priority": "p0", "title": "B"})

        assert updated.title == "B"
        assert [(change.field, change.changed_by) for change in tasks.history] == [("priority", "u2")]

    @pytest.mark.asyncio
    async def test_reassigning_changes_role(self) -> None:
        tasks = InMemoryTaskRepository()
        task = await tasks.create_task("u1", {"title": "A"})

        await tasks.add_assignee(task.id, "u2", "assignee")
        await tasks.add_assignee(task.id, "u2", "reviewer")

        assigned = await tasks.list_user_tasks("u2")
        assert [item.assignee_role for item in assigned] == ["reviewer"]

    @pytest.mark.asyncio
    async def test_unknown_task(self) -> None:
        tasks = InMemoryTaskRepository()

        with pytest.raises(NotFoundError) as info:
            await tasks.update_task("missing", "u1", {"status": "done"})

        assert info.value.error_code == ErrorCode.RECORD_NOT_FOUND


class TestThreadRepository:
    @pytest.mark.asyncio
    async def test_threads_sorted_by_last_update(self) -> None:
        threads = InMemoryThreadRepository()
        await threads.create_thread("first", thread_id="a")
        await threads.create_thread("second", thread_id="b")

        await threads.update_thread_title("a", "renamed")

        records = await threads.get_threads()
        assert [record.id for record in records][0] == "a"
        assert (await threads.get_thread("a")).title == "renamed"

    @pytest.mark.asyncio
    async def test_rename_unknown_thread(self) -> None:
        with pytest.raises(NotFoundError):
            await InMemoryThreadRepository().update_thread_title("missing", "x")


class TestQueryResult:
    @pytest.mark.parametrize("alias", [MessageQueryResult, DisplayQueryResult, HistoryQueryResult])
    def test_aliases_build_results(self, alias) -> None:
        assert alias(messages=()).ok
        assert alias(error="timeout").ok is False

    def test_unwrap_raises_repository_failure(self) -> None:
        with pytest.raises(UpstreamError) as info:
            MessageQueryResult(error="timeout").unwrap("get_messages")

        assert info.value.error_code == ErrorCode.REPOSITORY_FAILURE


class TestPregeneratedMessageRepository:
    @pytest.mark.asyncio
    async def test_oldest_unused_message_is_claimed_once(self) -> None:
        pregenerated = InMemoryPregeneratedMessageRepository()
        await pregenerated.save_message("u1", "hidden", "first")
        await pregenerated.save_message("u1", "hidden", "second")
        await pregenerated.save_message("u2", "hidden", "other user")

        oldest = await pregenerated.get_unused_message("u1")

        assert oldest.ai_response == "first"
        assert await pregenerated.mark_as_used(oldest.id) is True
        assert await pregenerated.mark_as_used(oldest.id) is False
        assert (await pregenerated.get_unused_message("u1")).ai_response == "second"
        assert await pregenerated.get_unused_message_count("u1") == 1
