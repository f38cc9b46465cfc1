"""Tests for the console front end."""

from __future__ import annotations

import io
import json

import pytest

from threadloom import app
from threadloom.config import Settings, SettingsStore


@pytest.mark.asyncio
async def test_console_conversation(model_client) -> None:
    settings = Settings(api_key="test-key", persist_errors=False, pregenerate_openings=False)
    runtime = app.build_runtime(settings, model_client=model_client)
    model_client.reply_text("hi there")
    stdin = io.StringIO("hello\n\n/history\n/title Greetings\n/quit\nnever read\n")
    stdout = io.StringIO()

    await app.run_console(settings, thread_id="t1", user_id="u1", runtime=runtime, stdin=stdin, stdout=stdout)

    output = stdout.getvalue()
    assert f"assistant> {settings.welcome_message}" in output
    assert "assistant> hi there" in output
    assert "user> hello" in output
    assert len(model_client.calls) == 1
    assert runtime.bus.handler_count() == 0


@pytest.mark.asyncio
async def test_console_prints_tool_activity_and_errors(model_client) -> None:
    settings = Settings(api_key="test-key", persist_errors=False, pregenerate_openings=False)
    runtime = app.build_runtime(settings, model_client=model_client)
    model_client.reply_tool_calls(("call_1", "set_nickname", {"nickname": "Bob"}))
    model_client.reply_text("Hi Bob!")
    model_client.fail(RuntimeError("offline"))
    stdin = io.StringIO("call me Bob\nagain\n/bogus\n")
    stdout = io.StringIO()

    await app.run_console(settings, thread_id="t1", user_id="u1", runtime=runtime, stdin=stdin, stdout=stdout)

    output = stdout.getvalue()
    assert '[tool] set_nickname({"nickname": "Bob"})' in output
    assert "[success]" in output
    assert "assistant> Hi Bob!" in output
    assert "error (send_user_message)" in output
    assert "Unknown command: /bogus" in output


def test_dump_settings_redacts_api_key(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)
    settings_path = tmp_path / "settings.json"
    SettingsStore(settings_path).save(Settings(api_key="sk-very-secret"))

    app.main(["--settings", str(settings_path), "--model", "gpt-cli", "--dump-settings"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["model"] == "gpt-cli"
    assert payload["api_key"] == "sk**********et"


def test_load_settings_survives_broken_store(tmp_path) -> None:
    class Broken(SettingsStore):
        def load(self, *, overrides=None):
            raise OSError("unreadable")

    assert app.load_settings(store=Broken(tmp_path / "s.json")) == Settings()
