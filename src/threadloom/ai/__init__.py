"""Language-model collaborators: the client protocol, its OpenAI adapter and the tool catalog."""

from .base import ModelClient
from .client import ClientSettings, OpenAIModelClient
from .tool_catalog import DEFAULT_TOOL_CATALOG, ParameterSchema, ToolSchema, to_openai_tools

__all__ = [
    "ModelClient",
    "ClientSettings",
    "OpenAIModelClient",
    "DEFAULT_TOOL_CATALOG",
    "ParameterSchema",
    "ToolSchema",
    "to_openai_tools",
]
