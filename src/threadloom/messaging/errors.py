"""Error taxonomy for the messaging pipeline.

Every error carries a machine-readable code and serializes to the same JSON
shape, so it can be logged, reported, or embedded in an ``error`` message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes used across the pipeline."""

    # Content/shape errors
    INVALID_CONTENT = "invalid_content"
    INVALID_JSON = "invalid_json"
    UNKNOWN_CONTENT_TYPE = "unknown_content_type"
    INVALID_ARGUMENTS = "invalid_arguments"
    INVARIANT_VIOLATION = "invariant_violation"

    # Lookup errors
    PROCESSOR_NOT_FOUND = "processor_not_found"
    MESSAGE_NOT_FOUND = "message_not_found"
    RECORD_NOT_FOUND = "record_not_found"

    # Collaborator errors
    REPOSITORY_FAILURE = "repository_failure"
    MODEL_FAILURE = "model_failure"

    # Wiring errors
    NO_LISTENER = "no_listener"
    NOT_READY = "not_ready"
    TOOL_ITERATION_LIMIT = "tool_iteration_limit"

    # General errors
    INTERNAL_ERROR = "internal_error"


@dataclass
class MessagingError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for logs and error messages."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ValidationError(MessagingError):
    """Malformed structured content or a broken data-model invariant."""

    error_code: str = field(default=ErrorCode.INVALID_CONTENT)
    message: str = field(default="Content failed validation")
    details: dict[str, Any] = field(default_factory=dict)

    original_content: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.original_content is not None:
            result["originalContent"] = self.original_content
        return result


@dataclass
class NotFoundError(MessagingError):
    """A tool name without a processor, or a missing stored record."""

    error_code: str = field(default=ErrorCode.PROCESSOR_NOT_FOUND)
    message: str = field(default="Requested item was not found")
    details: dict[str, Any] = field(default_factory=dict)

    name: str | None = field(default=None)

    @classmethod
    def for_tool(cls, tool_name: str) -> "NotFoundError":
        return cls(
            error_code=ErrorCode.PROCESSOR_NOT_FOUND,
            message=f"no processor for {tool_name}",
            name=tool_name,
        )


@dataclass
class UpstreamError(MessagingError):
    """The message repository or the model client failed."""

    error_code: str = field(default=ErrorCode.REPOSITORY_FAILURE)
    message: str = field(default="Upstream collaborator failed")
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_repository(cls, operation: str, reason: object) -> "UpstreamError":
        return cls(
            error_code=ErrorCode.REPOSITORY_FAILURE,
            message=f"Repository {operation} failed: {reason}",
            details={"operation": operation},
        )

    @classmethod
    def from_model(cls, reason: object) -> "UpstreamError":
        return cls(
            error_code=ErrorCode.MODEL_FAILURE,
            message=f"Model client failed: {reason}",
        )


@dataclass
class ConfigurationError(MessagingError):
    """Required wiring is missing, e.g. no listener for a result-bearing event."""

    error_code: str = field(default=ErrorCode.NO_LISTENER)
    message: str = field(default="Pipeline is not configured")
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "critical"


def as_messaging_error(exc: BaseException) -> MessagingError:
    """Return ``exc`` unchanged if it is a pipeline error, else wrap it."""

    if isinstance(exc, MessagingError):
        return exc
    return MessagingError(
        error_code=ErrorCode.INTERNAL_ERROR,
        message=str(exc) or exc.__class__.__name__,
        details={"exception": exc.__class__.__name__},
    )


__all__ = [
    "ErrorCode",
    "MessagingError",
    "ValidationError",
    "NotFoundError",
    "UpstreamError",
    "ConfigurationError",
    "as_messaging_error",
]
