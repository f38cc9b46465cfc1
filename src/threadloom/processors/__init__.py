"""Built-in tool processors and their default registration."""

from __future__ import annotations

import logging

from ..messaging.processor_registry import ToolProcessorRegistry
from ..repositories.base import PregeneratedMessageRepository, TaskRepository, UserRepository
from .base import BaseToolProcessor
from .data_request import DataRequestProcessor
from .nickname import NicknameProcessor
from .tasks import TaskProcessor

LOGGER = logging.getLogger(__name__)


def register_default_processors(
    registry: ToolProcessorRegistry,
    *,
    users: UserRepository,
    tasks: TaskRepository,
    pregenerated: PregeneratedMessageRepository,
) -> ToolProcessorRegistry:
    """Register the nickname, data-request and task processors, in that order."""

    registry.register_processor(NicknameProcessor(users, pregenerated))
    registry.register_processor(DataRequestProcessor(users, tasks))
    registry.register_processor(TaskProcessor(tasks))
    LOGGER.debug("Default tool processors registered: %s", ", ".join(registry.supported_tools()))
    return registry


__all__ = [
    "BaseToolProcessor",
    "DataRequestProcessor",
    "NicknameProcessor",
    "TaskProcessor",
    "register_default_processors",
]
