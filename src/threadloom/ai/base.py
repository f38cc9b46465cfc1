"""Interface between the pipeline and a language-model backend."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..messaging.structures import ModelHistoryMessage


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can answer a conversation with one assistant turn.

    Implementations receive the full model history (oldest first) and return
    either a text turn or a turn requesting tool calls. Failures propagate as
    exceptions; the pipeline reports them.
    """

    async def send_message(self, history: Sequence[ModelHistoryMessage]) -> ModelHistoryMessage:
        ...


__all__ = ["ModelClient"]
