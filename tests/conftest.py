"""Shared test fixtures for sigbridge."""

from __future__ import annotations

import json

import pytest

from sigbridge.types import IncomingMessage

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures: importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "data_dir",
        "store_dir",
        "signal_data_dir",
        "trigger_pattern",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (signal, queue, etc.) and cached property
    overrides (data_dir, store_dir, etc.).

    Usage::

        s = make_settings(data_dir=tmp_path)
        s = make_settings(queue=QueueConfig(max_concurrent=2))
    """
    from sigbridge.config import (
        AgentConfig,
        LoggingConfig,
        QueueConfig,
        Settings,
        SignalConfig,
        WorkspacesConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "agent": AgentConfig(),
        "signal": SignalConfig(),
        "workspaces": WorkspacesConfig(),
        "queue": QueueConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_frame(
    *,
    text: str | None = "hello",
    timestamp: int = 1000,
    source_number: str | None = "+15551234567",
    source_name: str | None = "Alice",
    source_uuid: str | None = "8f2a6c1e-0000-4000-8000-000000000001",
    group_id: str | None = None,
) -> str:
    """A json-rpc receive-feed frame as signal-cli-rest-api sends it."""
    data_message: dict | None = None
    if text is not None:
        data_message = {"timestamp": timestamp, "message": text}
        if group_id is not None:
            data_message["groupInfo"] = {"groupId": group_id, "type": "DELIVER"}

    envelope: dict = {
        "source": source_number or source_uuid,
        "sourceNumber": source_number,
        "sourceUuid": source_uuid,
        "sourceName": source_name,
        "sourceDevice": 1,
        "timestamp": timestamp,
    }
    if data_message is not None:
        envelope["dataMessage"] = data_message
    else:
        envelope["receiptMessage"] = {"when": timestamp, "isDelivery": True, "timestamps": []}
    return json.dumps({"envelope": envelope, "account": "+15550000000"})


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults, with no config.toml,
    no .env, no file I/O.
    """
    safe = make_settings()
    monkeypatch.setattr("sigbridge.config._settings", safe)


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Close the aiosqlite connection after all tests complete.

    Uses ``stop()`` + thread join rather than ``await close()`` because
    the connection was created on a function-scoped event loop.
    """
    yield
    import sigbridge.db._connection as db_conn

    if db_conn._db is not None:
        db_conn._db.stop()
        if db_conn._db._thread is not None and db_conn._db._thread.is_alive():
            db_conn._db._thread.join(timeout=2)
        db_conn._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def database():
    """Fresh in-memory database for the test."""
    from sigbridge.db import _init_test_database

    await _init_test_database()


@pytest.fixture
def make_msg():
    """Factory fixture for incoming messages with defaults."""

    def _make(
        *,
        chat_jid: str = "signal:+15551234567",
        sender: str = "signal:+15551234567",
        sender_name: str = "Alice",
        content: str = "hello",
        timestamp_ms: int = 1000,
        is_group: bool = False,
    ) -> IncomingMessage:
        return IncomingMessage(
            chat_jid=chat_jid,
            sender=sender,
            sender_name=sender_name,
            content=content,
            timestamp_ms=timestamp_ms,
            is_group=is_group,
        )

    return _make
