"""Message model, structured content, events and the tool processor registry."""

from .content import (
    ContentParseResult,
    DataRequestContent,
    DataResponseContent,
    ErrorContent,
    StructuredContent,
    TextContent,
    ToolCallContent,
    ToolCallEntry,
    ToolCallsContent,
    ToolResultContent,
    parse_content,
    serialize_content,
)
from .errors import (
    ConfigurationError,
    ErrorCode,
    MessagingError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from .events import (
    AssistantMessageReceived,
    ErrorOccurred,
    Event,
    EventBus,
    EventType,
    MessagesUpdated,
    ThreadSummary,
    ThreadsUpdated,
    ToolCallReceived,
    ToolResultSent,
    UserMessageSent,
)
from .processor_registry import ToolCallProcessor, ToolProcessorRegistry
from .structures import (
    DisplayMessage,
    ModelHistoryMessage,
    ModelToolCall,
    StorageDraft,
    StorageMessage,
    ToolCallRequest,
    ToolResult,
    from_params,
    to_display,
    to_display_list,
    to_model_history,
    to_model_history_list,
)

__all__ = [
    "ContentParseResult",
    "DataRequestContent",
    "DataResponseContent",
    "ErrorContent",
    "StructuredContent",
    "TextContent",
    "ToolCallContent",
    "ToolCallEntry",
    "ToolCallsContent",
    "ToolResultContent",
    "parse_content",
    "serialize_content",
    "ConfigurationError",
    "ErrorCode",
    "MessagingError",
    "NotFoundError",
    "UpstreamError",
    "ValidationError",
    "AssistantMessageReceived",
    "ErrorOccurred",
    "Event",
    "EventBus",
    "EventType",
    "MessagesUpdated",
    "ThreadSummary",
    "ThreadsUpdated",
    "ToolCallReceived",
    "ToolResultSent",
    "UserMessageSent",
    "ToolCallProcessor",
    "ToolProcessorRegistry",
    "DisplayMessage",
    "ModelHistoryMessage",
    "ModelToolCall",
    "StorageDraft",
    "StorageMessage",
    "ToolCallRequest",
    "ToolResult",
    "from_params",
    "to_display",
    "to_display_list",
    "to_model_history",
    "to_model_history_list",
]
