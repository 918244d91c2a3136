"""Chat metadata operations."""

from __future__ import annotations

from datetime import UTC, datetime

from sigbridge.db._connection import _get_db


async def store_chat_metadata(chat_jid: str, timestamp: str) -> None:
    """Store chat metadata only (no message content).

    ``last_message_time`` never moves backwards, so replayed or out-of-order
    events can't rewind a chat's activity marker.
    """
    db = _get_db()
    await db.execute(
        """
        INSERT INTO chats (jid, name, last_message_time) VALUES (?, ?, ?)
        ON CONFLICT(jid) DO UPDATE SET
            last_message_time = MAX(last_message_time, excluded.last_message_time)
        """,
        (chat_jid, chat_jid, timestamp),
    )
    await db.commit()


async def update_chat_name(chat_jid: str, name: str) -> None:
    """Update chat name without changing timestamp for existing chats."""
    db = _get_db()
    now = datetime.now(UTC).isoformat()
    await db.execute(
        """
        INSERT INTO chats (jid, name, last_message_time) VALUES (?, ?, ?)
        ON CONFLICT(jid) DO UPDATE SET name = excluded.name
        """,
        (chat_jid, name, now),
    )
    await db.commit()


async def get_router_state(key: str) -> str | None:
    db = _get_db()
    cursor = await db.execute("SELECT value FROM router_state WHERE key = ?", (key,))
    row = await cursor.fetchone()
    return row["value"] if row else None


async def set_router_state(key: str, value: str) -> None:
    db = _get_db()
    await db.execute(
        "INSERT OR REPLACE INTO router_state (key, value) VALUES (?, ?)",
        (key, value),
    )
    await db.commit()
