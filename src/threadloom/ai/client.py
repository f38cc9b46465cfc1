"""Model client adapter for OpenAI-compatible chat-completions endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings, redact_headers, redact_secret
from ..messaging.errors import UpstreamError
from ..messaging.structures import ModelHistoryMessage
from .tool_catalog import DEFAULT_TOOL_CATALOG, ToolSchema, to_openai_tools

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the model client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = 0.2
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    system_prompt: str | None = None
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            temperature=settings.temperature,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            system_prompt=settings.system_prompt,
            default_headers=dict(settings.default_headers) or None,
            debug_logging=settings.debug_logging,
        )


class OpenAIModelClient:
    """Non-streaming chat-completions client with retry semantics.

    Each call sends the whole model history plus the tool catalog and maps the
    first choice back into a :class:`ModelHistoryMessage`.
    """

    def __init__(
        self,
        settings: ClientSettings | Settings,
        *,
        client: AsyncOpenAI | None = None,
        tools: Sequence[ToolSchema] = DEFAULT_TOOL_CATALOG,
    ) -> None:
        if isinstance(settings, Settings):
            settings = ClientSettings.from_settings(settings)
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._tools = tuple(tools)
        LOGGER.debug(
            "Model client ready: model=%s base_url=%s api_key=%s headers=%s",
            settings.model,
            settings.base_url,
            redact_secret(settings.api_key),
            redact_headers(settings.default_headers),
        )

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def send_message(self, history: Sequence[ModelHistoryMessage]) -> ModelHistoryMessage:
        """Send ``history`` and return the assistant's reply.

        Raises:
            UpstreamError: When the endpoint keeps failing after retries or
                returns no choices.
        """

        payload = self._build_chat_payload(history)
        LOGGER.debug(
            "Requesting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            completion = None
            async for attempt in self._retrying():
                with attempt:
                    completion = await self._client.chat.completions.create(**payload)
        except _RETRYABLE_ERRORS as exc:
            raise UpstreamError.from_model(exc) from exc

        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise UpstreamError.from_model("response contained no choices")
        return self._convert_message(choices[0].message)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )

    def _build_chat_payload(self, history: Sequence[ModelHistoryMessage]) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        prompt = (self._settings.system_prompt or "").strip()
        if prompt and not any(message.role == "system" for message in history):
            messages.append({"role": "system", "content": prompt})
        messages.extend(message.to_openai() for message in history)
        if not messages:
            raise ValueError("At least one message is required to start a chat")

        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
        }
        if self._tools:
            payload["tools"] = to_openai_tools(self._tools)
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        return payload

    @staticmethod
    def _convert_message(message: Any) -> ModelHistoryMessage:
        if isinstance(message, Mapping):
            data = dict(message)
        else:
            data = message.model_dump(exclude_none=True)
        data["role"] = "assistant"
        return ModelHistoryMessage.from_openai(data)

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Model prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Model prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


__all__ = ["ClientSettings", "OpenAIModelClient"]
