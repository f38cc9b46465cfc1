"""Tests for structured content and the storage/display/model converters."""

from __future__ import annotations

import json

import pytest

from threadloom.messaging.content import (
    DataRequestContent,
    DataResponseContent,
    ErrorContent,
    TextContent,
    ToolCallContent,
    ToolCallEntry,
    ToolCallsContent,
    ToolResultContent,
    content_from_dict,
    parse_content,
    serialize_content,
)
from threadloom.messaging.errors import ErrorCode, ValidationError
from threadloom.messaging.structures import (
    ModelHistoryMessage,
    ModelToolCall,
    StorageMessage,
    ToolCallRequest,
    ToolResult,
    from_params,
    synthesize_call_id,
    to_display,
    to_model_history,
    to_model_history_list,
    tool_calls_content,
)


def _stored(content: str, role: str = "assistant", **fields) -> StorageMessage:
    return StorageMessage(
        id=fields.pop("id", "m1"),
        content=content,
        role=role,  # type: ignore[arg-type]
        created_at="2024-05-01T00:00:00.000Z",
        user_id="u1",
        thread_id="t1",
        **fields,
    )


class TestParseContent:
    def test_prose_passes_through(self) -> None:
        result = parse_content("just words")
        assert result.ok
        assert result.content == "just words"
        assert not result.is_structured

    @pytest.mark.parametrize(
        "content",
        [
            TextContent(text="hi"),
            ToolCallContent(name="set_nickname", parameters={"nickname": "Bob"}),
            ToolResultContent(tool_call_id="call_1", status="error", message="nope", data={"x": 1}),
            DataRequestContent(fields=("nickname", "tasks")),
            DataResponseContent(data={"nickname": "Bob"}),
            ErrorContent(message="broken", original_content="{oops"),
        ],
    )
    def test_structured_variants_survive_storage(self, content) -> None:
        result = parse_content(serialize_content(content))
        assert result.ok
        assert result.content == content

    def test_invalid_json_is_a_failure_with_raw_text(self) -> None:
        result = parse_content("{not valid json}")
        assert not result.ok
        assert result.error is not None
        assert result.error.error_code == ErrorCode.INVALID_JSON
        assert result.error.original_content == "{not valid json}"

    def test_unknown_type_is_rejected(self) -> None:
        result = parse_content('{"type": "mystery"}')
        assert not result.ok
        assert result.error.error_code == ErrorCode.UNKNOWN_CONTENT_TYPE

    def test_missing_required_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            content_from_dict({"type": "tool_result", "status": "success", "message": "x"})

    def test_tool_calls_accept_legacy_argument_strings(self) -> None:
        raw = json.dumps(
            {"type": "tool_calls", "calls": [{"id": "call_1", "name": "x", "arguments": '{"a": 1}'}]}
        )
        result = parse_content(raw)
        assert result.content == ToolCallsContent(calls=(ToolCallEntry(id="call_1", name="x", parameters={"a": 1}),))

    def test_error_content_serializes_original_content_camel_case(self) -> None:
        payload = json.loads(serialize_content(ErrorContent(message="m", original_content="raw")))
        assert payload == {"type": "error", "message": "m", "originalContent": "raw"}

    def test_serialize_rejects_unsupported_values(self) -> None:
        with pytest.raises(ValidationError):
            serialize_content(42)  # type: ignore[arg-type]


class TestToDisplay:
    def test_invalid_json_becomes_error_content(self) -> None:
        raw = "{not valid json}"
        display = to_display(_stored(raw))

        assert isinstance(display.content, ErrorContent)
        assert display.content.original_content == raw

    def test_structured_content_is_decoded(self) -> None:
        display = to_display(_stored(serialize_content(TextContent(text="hi"))))
        assert display.content == TextContent(text="hi")

    def test_prose_is_kept(self) -> None:
        display = to_display(_stored("hello there", role="user"))
        assert display.content == "hello there"
        assert display.role == "user"
        assert not display.is_loading

    def test_is_pure(self) -> None:
        message = _stored("{broken")
        assert to_display(message) == to_display(message)


class TestToModelHistory:
    def test_tool_calls_turn_has_null_content(self) -> None:
        calls = tool_calls_content(
            [
                ToolCallRequest(id="call_1", name="set_nickname", arguments={"nickname": "Bob"}),
                ToolCallRequest(id="call_2", name="request_data", arguments={"fields": ["tasks"]}),
            ]
        )
        history = to_model_history(_stored(serialize_content(calls)))

        assert history.content is None
        assert len(history.tool_calls) == 2
        assert history.tool_calls[0] == ModelToolCall(
            id="call_1", name="set_nickname", arguments=json.dumps({"nickname": "Bob"}, sort_keys=True)
        )

    def test_single_tool_call_gets_a_stable_synthesized_id(self) -> None:
        message = _stored(serialize_content(ToolCallContent(name="clear_nickname")), id="msg-7")
        first = to_model_history(message)
        second = to_model_history(message)

        assert first == second
        assert first.tool_calls[0].id == synthesize_call_id("msg-7", 0)
        assert first.tool_calls[0].id.startswith("call_")

    def test_tool_turn_keeps_its_call_id(self) -> None:
        content = serialize_content(ToolResult.success("call_1", "done").to_content())
        history = to_model_history(_stored(content, role="tool", tool_call_id="call_1"))

        assert history.role == "tool"
        assert history.tool_call_id == "call_1"
        assert history.content == content

    def test_list_drops_messages_not_sent_to_model(self) -> None:
        messages = [
            _stored("visible", role="user", id="a"),
            _stored("hidden from model", role="assistant", id="b", send_to_model=False),
        ]
        history = to_model_history_list(messages)

        assert [item.content for item in history] == ["visible"]


class TestInvariants:
    def test_tool_message_requires_call_id(self) -> None:
        with pytest.raises(ValidationError):
            from_params("x", "tool", user_id="u1", thread_id="t1")

    def test_unknown_role_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _stored("x", role="robot")

    def test_history_content_null_exactly_with_tool_calls(self) -> None:
        with pytest.raises(ValidationError):
            ModelHistoryMessage(role="assistant", content=None)
        with pytest.raises(ValidationError):
            ModelHistoryMessage(
                role="assistant", content="text", tool_calls=(ModelToolCall(id="c", name="n"),)
            )

    def test_from_params_serializes_structured_content(self) -> None:
        draft = from_params(TextContent(text="hi"), "assistant", user_id="u1", thread_id="t1")
        assert json.loads(draft.content) == {"type": "text", "text": "hi"}

    def test_invalid_tool_arguments_raise(self) -> None:
        call = ModelToolCall(id="c", name="n", arguments="{broken")
        with pytest.raises(ValidationError) as info:
            ToolCallRequest.from_model_call(call)
        assert info.value.error_code == ErrorCode.INVALID_ARGUMENTS


class TestOpenAIShapes:
    def test_from_openai_prefers_tool_calls_over_narration(self) -> None:
        message = ModelHistoryMessage.from_openai(
            {
                "role": "assistant",
                "content": "let me check",
                "tool_calls": [{"id": "call_1", "type": "function", "function": {"name": "x", "arguments": "{}"}}],
            }
        )
        assert message.content is None
        assert message.tool_calls[0].name == "x"

    def test_to_openai_includes_tool_call_id(self) -> None:
        payload = ModelHistoryMessage(role="tool", content="{}", tool_call_id="call_1").to_openai()
        assert payload == {"role": "tool", "content": "{}", "tool_call_id": "call_1"}
