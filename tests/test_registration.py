"""Tests for number registration and the chat registry commands."""

from __future__ import annotations

import argparse
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from sigbridge import db
from sigbridge.__main__ import _register_chat
from sigbridge.registration import register_chat, register_number
from sigbridge.signal.client import SignalApiError


@pytest.fixture
def client():
    c = MagicMock()
    c.health = AsyncMock(return_value=True)
    c.get_account = AsyncMock(side_effect=SignalApiError("GET", "/v1/accounts/x", 404, ""))
    c.register = AsyncMock()
    c.verify = AsyncMock()
    c.close = AsyncMock()
    with patch("sigbridge.registration.SignalClient", return_value=c):
        yield c


def _inputs(*answers: str):
    return patch("builtins.input", side_effect=list(answers))


class TestRegisterNumber:
    async def test_happy_path(self, client, capsys):
        with _inputs("+15550000000", "123-456"):
            assert await register_number() == 0

        client.register.assert_awaited_once_with()
        client.verify.assert_awaited_once_with("123456")
        client.close.assert_awaited_once()
        assert "SIGNAL__NUMBER=+15550000000" in capsys.readouterr().out

    async def test_number_without_country_code(self, client):
        with _inputs("5550000000"):
            assert await register_number() == 1

        client.register.assert_not_awaited()

    async def test_already_registered(self, client, capsys):
        client.get_account = AsyncMock(return_value={"number": "+15550000000"})

        with _inputs("+15550000000"):
            assert await register_number() == 0

        client.register.assert_not_awaited()
        assert "already registered" in capsys.readouterr().out

    async def test_captcha_retry(self, client):
        client.register.side_effect = [
            SignalApiError("POST", "/v1/register/x", 402, "captcha required"),
            None,
        ]

        with _inputs("+15550000000", "signalcaptcha://token", "123456"):
            assert await register_number() == 0

        assert client.register.await_args_list[1].kwargs == {"captcha": "signalcaptcha://token"}

    async def test_bad_code(self, client):
        with _inputs("+15550000000", "12345"):
            assert await register_number() == 1

        client.verify.assert_not_awaited()

    async def test_starts_relay_when_unhealthy(self, client):
        client.health.return_value = False
        with (
            _inputs("+15550000000"),
            patch(
                "sigbridge.registration.ensure_signal_container",
                new_callable=AsyncMock,
                return_value=False,
            ) as ensure,
        ):
            assert await register_number() == 1

        ensure.assert_awaited_once()
        client.close.assert_awaited_once()

    async def test_connection_lost_during_account_lookup(self, client, capsys):
        client.get_account = AsyncMock(side_effect=aiohttp.ClientConnectionError("reset"))

        with _inputs("+15550000000"):
            assert await register_number() == 1

        client.register.assert_not_awaited()
        client.close.assert_awaited_once()
        assert "✗ Lost connection" in capsys.readouterr().err

    async def test_connection_lost_during_register(self, client, capsys):
        client.register.side_effect = aiohttp.ClientConnectionError("reset")

        with _inputs("+15550000000"):
            assert await register_number() == 1

        client.close.assert_awaited_once()
        assert "✗ Registration failed" in capsys.readouterr().err


@pytest.mark.usefixtures("database")
class TestRegisterChat:
    async def test_adds_prefix_and_defaults(self):
        group = await register_chat("+15551234567", "main")

        groups = await db.get_all_registered_groups()
        assert groups == {"signal:+15551234567": group}
        assert group.name == "signal:+15551234567"
        assert group.trigger == "@sigbridge"
        assert group.requires_trigger is None

    async def test_update_keeps_added_at(self):
        first = await register_chat("signal:+15551234567", "main", name="Alice")

        second = await register_chat("+15551234567", "main", requires_trigger=False)

        assert second.added_at == first.added_at
        assert second.name == "Alice"
        assert second.requires_trigger is False

    async def test_folder_owned_by_another_chat(self):
        await register_chat("+15551234567", "main", name="Alice")

        with pytest.raises(ValueError, match="already used"):
            await register_chat("+15559876543", "main")

        groups = await db.get_all_registered_groups()
        assert list(groups) == ["signal:+15551234567"]
        assert groups["signal:+15551234567"].name == "Alice"


@pytest.mark.usefixtures("database")
class TestRegisterChatCommand:
    @pytest.fixture(autouse=True)
    def keep_test_database(self):
        with (
            patch.object(db, "init_database", AsyncMock()),
            patch.object(db, "close_database", AsyncMock()) as close,
        ):
            yield close

    def _args(self, chat: str, folder: str, no_trigger: bool = False) -> argparse.Namespace:
        return argparse.Namespace(chat=chat, folder=folder, name=None, no_trigger=no_trigger)

    async def test_no_trigger_flag(self, keep_test_database, capsys):
        assert await _register_chat(self._args("GROUPID", "family", no_trigger=True)) == 0

        groups = await db.get_all_registered_groups()
        assert groups["signal:GROUPID"].requires_trigger is False
        keep_test_database.assert_awaited_once()
        assert "✓ Registered" in capsys.readouterr().out

    async def test_folder_conflict_exits_nonzero(self, capsys):
        await register_chat("+15551234567", "main")

        assert await _register_chat(self._args("+15559876543", "main")) == 1

        assert "✗ folder 'main'" in capsys.readouterr().err
