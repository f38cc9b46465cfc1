"""Opening messages written by the model before a thread exists.

A new thread opens with a hidden user request and the model's greeting for
it. Generating that greeting takes a model round trip, so a small pool is
kept per user: :meth:`PregenerationService.take_opening` claims the oldest
unused entry and :meth:`PregenerationService.schedule_refill` tops the pool
up in the background.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..ai.base import ModelClient
from ..messaging.structures import ModelHistoryMessage
from ..repositories.base import PregeneratedMessage, PregeneratedMessageRepository, UserInfo, UserRepository

LOGGER = logging.getLogger(__name__)

OPENING_REQUEST = (
    "Hi, I just started a new conversation. Greet me in a friendly way and ask what I have been busy "
    "with lately or how I am doing, without making your reply sound like an answer to a question."
)
FALLBACK_OPENING = "Hi! How have you been lately? Is there anything I can help you with?"
_OPENING_PROMPT = (
    "You are a warm, attentive assistant opening a new conversation with the user{nickname}. "
    "Write one or two short sentences. Do not call any tools."
)


class PregenerationService:
    """Keeps ``pool_size`` unused opening messages per user.

    Generation failures are logged and reported as ``False``/``None`` so that
    thread creation can fall back to the static welcome message.
    """

    def __init__(
        self,
        pregenerated: PregeneratedMessageRepository,
        model_client: ModelClient,
        users: UserRepository,
        *,
        pool_size: int = 1,
    ) -> None:
        self._pregenerated = pregenerated
        self._model_client = model_client
        self._users = users
        self._pool_size = max(1, pool_size)
        self._refills: dict[str, asyncio.Task[bool]] = {}
        self._closed = False

    async def generate_for_user(self, user_id: str) -> bool:
        """Ask the model for one opening and store it unused."""
        try:
            user = await self._users.get_user_info(user_id)
            history = [
                ModelHistoryMessage(role="system", content=_opening_prompt(user)),
                ModelHistoryMessage(role="user", content=OPENING_REQUEST),
            ]
            response = await self._model_client.send_message(history)
            opening = (response.content or "").strip() or FALLBACK_OPENING
            saved = await self._pregenerated.save_message(user_id, OPENING_REQUEST, opening)
        except Exception:
            LOGGER.exception("Error generating opening message for user %s", user_id)
            return False
        if not saved:
            LOGGER.error("Failed to save pregenerated opening for user %s", user_id)
            return False
        LOGGER.debug("Generated opening message for user %s", user_id)
        return True

    async def ensure_available(self, user_id: str) -> bool:
        """Generate openings until the user's pool is full."""
        try:
            count = await self._pregenerated.get_unused_message_count(user_id)
        except Exception:
            LOGGER.exception("Error checking pregenerated messages for user %s", user_id)
            return False
        needed = self._pool_size - count
        for index in range(needed):
            LOGGER.debug("Generating opening %d of %d for user %s", index + 1, needed, user_id)
            if not await self.generate_for_user(user_id):
                return False
        return True

    async def take_opening(self, user_id: str) -> PregeneratedMessage | None:
        """Claim an unused opening, generating one first when the pool is empty."""
        if not await self.ensure_available(user_id):
            return None
        try:
            opening = await self._pregenerated.get_unused_message(user_id)
            if opening is None or not await self._pregenerated.mark_as_used(opening.id):
                LOGGER.info("No pregenerated opening could be claimed for user %s", user_id)
                return None
        except Exception:
            LOGGER.exception("Error claiming pregenerated opening for user %s", user_id)
            return None
        return opening

    def schedule_refill(self, user_id: str) -> asyncio.Task[bool] | None:
        """Top the user's pool up in the background; one refill per user at a time."""
        if self._closed:
            return None
        running = self._refills.get(user_id)
        if running is not None and not running.done():
            return running
        task = asyncio.create_task(self.ensure_available(user_id))
        self._refills[user_id] = task
        task.add_done_callback(lambda done, key=user_id: self._forget_refill(key, done))
        return task

    async def wait_for_refills(self) -> None:
        await asyncio.gather(*list(self._refills.values()))

    async def aclose(self) -> None:
        self._closed = True
        for task in list(self._refills.values()):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._refills.clear()

    def _forget_refill(self, user_id: str, task: asyncio.Task[bool]) -> None:
        if self._refills.get(user_id) is task:
            del self._refills[user_id]


def _opening_prompt(user: UserInfo | None) -> str:
    nickname = f" (nickname: {user.nickname})" if user is not None and user.nickname else ""
    return _OPENING_PROMPT.format(nickname=nickname)


__all__ = ["PregenerationService", "OPENING_REQUEST", "FALLBACK_OPENING"]
