"""Console front end for the threadloom message pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, TextIO

from .ai.client import OpenAIModelClient
from .bootstrap import Runtime, create_runtime
from .config import Settings, SettingsStore, redact_secret
from .messaging.content import ErrorContent, TextContent, ToolResultContent, parse_content
from .messaging.events import AssistantMessageReceived, ErrorOccurred, Event, ToolResultSent
from .messaging.errors import MessagingError
from .repositories.memory import (
    InMemoryMessageRepository,
    InMemoryPregeneratedMessageRepository,
    InMemoryTaskRepository,
    InMemoryThreadRepository,
    InMemoryUserRepository,
)
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)

_PROMPT = "you> "
_HELP = "Commands: /help, /history, /clear, /title <text>, /quit"


def configure_logging(debug: bool = False, *, force: bool = False, event_trail: bool = False) -> None:
    """Configure file logging; the console stays free for the conversation."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=False, event_trail=event_trail, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_runtime(settings: Settings, *, model_client: Any | None = None) -> Runtime:
    """Create a runtime backed by in-memory repositories."""

    return create_runtime(
        settings,
        repository=InMemoryMessageRepository(welcome_message=settings.welcome_message),
        model_client=model_client or OpenAIModelClient(settings),
        users=InMemoryUserRepository(),
        tasks=InMemoryTaskRepository(),
        pregenerated=InMemoryPregeneratedMessageRepository(),
        threads=InMemoryThreadRepository(),
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `threadloom` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("THREADLOOM_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings or os.environ.get("THREADLOOM_SETTINGS_PATH")
    store = SettingsStore(Path(settings_path).expanduser() if settings_path else None)
    overrides = {key: value for key, value in (("model", args.model), ("base_url", args.base_url)) if value}
    settings = load_settings(store=store, overrides=overrides or None)

    if args.dump_settings:
        payload = asdict(settings)
        payload["api_key"] = redact_secret(settings.api_key)
        print(json.dumps(payload, indent=2, sort_keys=True))
        return

    if (settings.debug_logging and not debug) or settings.debug_event_logging:
        configure_logging(debug or settings.debug_logging, force=True, event_trail=settings.debug_event_logging)

    user_id = args.user or "console-user"
    thread_id = args.thread or str(uuid.uuid4())
    try:
        asyncio.run(run_console(settings, thread_id=thread_id, user_id=user_id))
    except KeyboardInterrupt:
        _LOGGER.info("Shutdown requested by user.")


async def run_console(
    settings: Settings,
    *,
    thread_id: str,
    user_id: str,
    runtime: Runtime | None = None,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> None:
    """Read lines from ``stdin`` and print the conversation to ``stdout``."""

    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    runtime = runtime or build_runtime(settings)
    detach = _attach_printers(runtime, sink)
    try:
        await runtime.start()
        await runtime.service.create_thread(user_id, thread_id=thread_id)
        for message in await runtime.service.get_display_messages(thread_id, user_id):
            _print_line(sink, f"assistant> {_text_of(message.content)}")
        _print_line(sink, _HELP)

        while True:
            sink.write(_PROMPT)
            sink.flush()
            line = await asyncio.to_thread(source.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            if text.startswith("/"):
                if not await _run_command(runtime, text, thread_id=thread_id, user_id=user_id, sink=sink):
                    break
                continue
            try:
                await runtime.service.send_user_message(text, thread_id, user_id)
            except MessagingError:
                # Already printed by the ErrorOccurred subscriber.
                pass
            await runtime.bus.drain()
    finally:
        for unsubscribe in detach:
            unsubscribe()
        await runtime.aclose()


async def _run_command(runtime: Runtime, text: str, *, thread_id: str, user_id: str, sink: TextIO) -> bool:
    command, _, argument = text.partition(" ")
    service = runtime.service
    try:
        if command == "/quit":
            return False
        if command == "/help":
            _print_line(sink, _HELP)
        elif command == "/history":
            for message in await service.get_display_messages(thread_id, user_id):
                _print_line(sink, f"{message.role}> {_text_of(message.content)}")
        elif command == "/clear":
            await service.clear_thread(thread_id, user_id)
            _print_line(sink, "(conversation cleared)")
        elif command == "/title" and argument.strip():
            await service.update_thread_title(thread_id, argument.strip(), user_id)
        else:
            _print_line(sink, f"Unknown command: {text}")
    except MessagingError:
        pass
    return True


def _attach_printers(runtime: Runtime, sink: TextIO) -> list:
    # Wildcard so per-type listener counts only reflect the pipeline handlers.
    def on_event(event: Event) -> None:
        if isinstance(event, AssistantMessageReceived):
            if event.content:
                _print_line(sink, f"assistant> {_text_of(event.content)}")
            for call in event.tool_calls:
                _print_line(sink, f"  [tool] {call.name}({json.dumps(call.arguments, ensure_ascii=False, default=str)})")
        elif isinstance(event, ToolResultSent):
            result = event.tool_result
            _print_line(sink, f"  [{result.status}] {result.message}")
        elif isinstance(event, ErrorOccurred):
            _print_line(sink, f"error ({event.context}): {event.error}")

    return [runtime.bus.subscribe_all(on_event)]


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        parsed = parse_content(content)
        content = parsed.content if parsed.ok else content
    if isinstance(content, str):
        return content
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, (ErrorContent, ToolResultContent)):
        return content.message
    return f"<{content.type}>"


def _print_line(sink: TextIO, text: str) -> None:
    sink.write(f"{text}\n")
    sink.flush()


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="threadloom", description="Chat with a tool-calling model from the console.")
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--thread", help="Conversation thread id (default: new thread)")
    parser.add_argument("--user", help="User id for this session")
    parser.add_argument("--model", help="Override the configured model name")
    parser.add_argument("--base-url", dest="base_url", help="Override the OpenAI-compatible endpoint")
    parser.add_argument("--dump-settings", action="store_true", help="Print effective settings and exit")
    return parser.parse_args(list(argv) if argv is not None else None)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


__all__ = ["build_runtime", "configure_logging", "load_settings", "main", "run_console"]
