"""Event handlers that drive a turn once the model has answered."""

from .assistant_turn import AssistantTurnRecorder
from .tool_call_handler import ToolCallHandler
from .tool_result_handler import FOLLOWUP_CONTEXT, ToolResultHandler

__all__ = ["AssistantTurnRecorder", "ToolCallHandler", "ToolResultHandler", "FOLLOWUP_CONTEXT"]
