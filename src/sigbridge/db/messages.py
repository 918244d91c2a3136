"""Message storage and retrieval."""

from __future__ import annotations

from sigbridge.db._connection import _get_db
from sigbridge.types import NewMessage


def _row_to_message(row) -> NewMessage:
    return NewMessage(
        id=row["id"],
        chat_jid=row["chat_jid"],
        sender=row["sender"],
        sender_name=row["sender_name"],
        content=row["content"],
        timestamp=row["timestamp"],
        is_from_me=bool(row["is_from_me"]),
    )


async def store_message_direct(
    *,
    id: str,
    chat_jid: str,
    sender: str,
    sender_name: str,
    content: str,
    timestamp: str,
    is_from_me: bool,
) -> None:
    """Insert or replace by ``(id, chat_jid)``: redelivered messages overwrite, not duplicate."""
    db = _get_db()
    await db.execute(
        "INSERT OR REPLACE INTO messages "
        "(id, chat_jid, sender, sender_name, content, timestamp, is_from_me) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            id,
            chat_jid,
            sender,
            sender_name,
            content,
            timestamp,
            1 if is_from_me else 0,
        ),
    )
    await db.commit()


async def get_messages_since(chat_jid: str, since_timestamp: str) -> list[NewMessage]:
    """Get inbound messages for a chat newer than ``since_timestamp``, oldest first."""
    db = _get_db()
    cursor = await db.execute(
        """
        SELECT id, chat_jid, sender, sender_name, content, timestamp, is_from_me
        FROM messages
        WHERE chat_jid = ? AND timestamp > ?
              AND is_from_me = 0
        ORDER BY timestamp
        """,
        (chat_jid, since_timestamp),
    )
    rows = await cursor.fetchall()
    return [_row_to_message(row) for row in rows]
