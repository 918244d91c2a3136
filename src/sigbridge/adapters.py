"""Dependency adapters for subsystem integration.

Binds the aiosqlite layer to the Storage / Registry protocols the Signal
ingestion loop is constructed with.
"""

from __future__ import annotations

from sigbridge import db
from sigbridge.signal.events import from_jid
from sigbridge.types import RegisteredGroup
from sigbridge.utils import ms_to_iso


def message_id(sender: str, timestamp_ms: int) -> str:
    """Signal identifies a message by (author, sent timestamp)."""
    return f"{timestamp_ms}-{from_jid(sender)}"


class DatabaseStorage:
    """Storage protocol backed by ``sigbridge.db``."""

    async def store_message(
        self,
        chat_jid: str,
        sender: str,
        sender_name: str,
        content: str,
        timestamp_ms: int,
    ) -> None:
        await db.store_message_direct(
            id=message_id(sender, timestamp_ms),
            chat_jid=chat_jid,
            sender=sender,
            sender_name=sender_name,
            content=content,
            timestamp=ms_to_iso(timestamp_ms),
            is_from_me=False,
        )

    async def store_chat_metadata(self, chat_jid: str, timestamp: str) -> None:
        await db.store_chat_metadata(chat_jid, timestamp)

    async def update_chat_name(self, chat_jid: str, name: str) -> None:
        await db.update_chat_name(chat_jid, name)


class DatabaseRegistry:
    """Registry protocol backed by the ``registered_groups`` table.

    Re-reads on every call; the ingestion loop tolerates the extra query in
    exchange for picking up new registrations without a restart.
    """

    async def get_all_registered_groups(self) -> dict[str, RegisteredGroup]:
        return await db.get_all_registered_groups()
