"""Processor for the ``set_nickname`` and ``clear_nickname`` tools."""

from __future__ import annotations

import logging

from ..messaging.structures import ToolCallRequest, ToolResult
from ..repositories.base import PregeneratedMessageRepository, UserRepository
from .base import BaseToolProcessor, require_str

LOGGER = logging.getLogger(__name__)


class NicknameProcessor(BaseToolProcessor):
    """Updates how the assistant addresses the user.

    Pregenerated replies embed the old nickname, so they are discarded after
    every change. Failing to discard them does not fail the call.
    """

    supported_tools = ("set_nickname", "clear_nickname")

    def __init__(self, users: UserRepository, pregenerated: PregeneratedMessageRepository) -> None:
        self._users = users
        self._pregenerated = pregenerated

    async def handle_set_nickname(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        nickname = require_str(request.arguments, "nickname")
        await self._users.update_nickname(user_id, nickname)
        await self._clear_pregenerated(user_id)
        return ToolResult.success(request.id, f"Nickname set to {nickname}", {"nickname": nickname})

    async def handle_clear_nickname(self, request: ToolCallRequest, *, thread_id: str, user_id: str) -> ToolResult:
        await self._users.update_nickname(user_id, None)
        await self._clear_pregenerated(user_id)
        return ToolResult.success(request.id, "Nickname cleared", {"nickname": None})

    async def _clear_pregenerated(self, user_id: str) -> None:
        try:
            cleared = await self._pregenerated.clear_unused_messages(user_id)
        except Exception:
            LOGGER.exception("Error clearing pregenerated messages for user %s", user_id)
            return
        if not cleared:
            LOGGER.warning("Failed to clear pregenerated messages for user %s", user_id)


__all__ = ["NicknameProcessor"]
