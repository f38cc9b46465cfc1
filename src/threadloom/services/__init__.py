"""Front-end facing services: sending messages, error reports and event logs."""

from .error_reporter import ErrorReport, ErrorReporter
from .event_logger import EventLogger
from .message_service import HandlerWiring, MessageService
from .pregeneration import PregenerationService

__all__ = ["ErrorReport", "ErrorReporter", "EventLogger", "HandlerWiring", "MessageService", "PregenerationService"]
