import asyncio
import logging
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from signup_service import watch
from signup_service.config import DEFAULT_CORS_ORIGINS, get_settings
from signup_service.logging_setup import KeyValueFormatter


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("PORT", "CORS_ORIGINS", "RELOAD_WS_URL", "APP_ENV", "RELOAD_MAX_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)
        settings = get_settings()

        assert settings.port == 3000
        assert settings.cors_origins == DEFAULT_CORS_ORIGINS
        assert settings.reload_ws_url == "ws://localhost:3000/ws"
        assert settings.reload_max_attempts == 5
        assert not settings.is_production

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PORT", "8081")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("APP_ENV", "Production")
        monkeypatch.setenv("RELOAD_BASE_DELAY", "0.25")
        monkeypatch.delenv("RELOAD_WS_URL", raising=False)
        settings = get_settings()

        assert settings.cors_origins == ["https://a.example", "https://b.example"]
        assert settings.reload_ws_url == "ws://localhost:8081/ws"
        assert settings.reload_base_delay == 0.25
        assert settings.is_production


class TestKeyValueFormatter:
    def test_single_line_with_exception(self):
        formatter = KeyValueFormatter(static_fields={"service": "signup-service"})
        try:
            raise ValueError("bad\nthing")
        except ValueError:
            record = logging.LogRecord("signup.ws", logging.ERROR, __file__, 1, "ws_send_error client_id=%s", ("c1",), sys.exc_info())

        line = formatter.format(record)
        assert "\n" not in line
        assert "service=signup-service" in line
        assert "logger=signup.ws" in line
        assert "message=ws_send_error client_id=c1" in line
        assert "exc_info=" in line


class TestWatch:
    """Reload action of the command-line watcher."""

    def test_reload_without_command_only_logs(self):
        with patch("signup_service.watch.asyncio.create_subprocess_exec") as spawn:
            watch.make_reload_action(None)({"reason": "deploy"})
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_reload_runs_command_without_blocking(self):
        release = asyncio.Event()
        proc = MagicMock()

        async def wait():
            await release.wait()
            return 0

        proc.wait = wait
        spawn = AsyncMock(return_value=proc)
        with patch("signup_service.watch.asyncio.create_subprocess_exec", spawn):
            action = watch.make_reload_action("make restart --fast")
            action({"reason": "deploy"})

            # Le callback rend la main tout de suite, la commande tourne en tâche
            assert len(action.running) == 1
            await asyncio.sleep(0)
            spawn.assert_awaited_once_with("make", "restart", "--fast")
            assert len(action.running) == 1

            release.set()
            await asyncio.wait_for(asyncio.gather(*action.running), timeout=1)
            await asyncio.sleep(0)

        assert action.running == set()

    @pytest.mark.asyncio
    async def test_missing_command_is_logged(self):
        spawn = AsyncMock(side_effect=FileNotFoundError("nope"))
        with patch("signup_service.watch.asyncio.create_subprocess_exec", spawn):
            action = watch.make_reload_action("does-not-exist")
            action({})
            task = next(iter(action.running))
            with pytest.raises(FileNotFoundError):
                await task
            await asyncio.sleep(0)

        assert action.running == set()
