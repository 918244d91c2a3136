"""Registered groups."""

from __future__ import annotations

from sigbridge.db._connection import _get_db
from sigbridge.types import RegisteredGroup


def _row_to_registered_group(row) -> RegisteredGroup:
    requires_trigger = row["requires_trigger"]
    return RegisteredGroup(
        name=row["name"],
        folder=row["folder"],
        trigger=row["trigger_pattern"],
        added_at=row["added_at"],
        requires_trigger=None if requires_trigger is None else bool(requires_trigger),
    )


async def set_registered_group(jid: str, group: RegisteredGroup) -> None:
    db = _get_db()
    await db.execute(
        """INSERT OR REPLACE INTO registered_groups
            (jid, name, folder, trigger_pattern, added_at, requires_trigger)
         VALUES (?, ?, ?, ?, ?, ?)""",
        (
            jid,
            group.name,
            group.folder,
            group.trigger,
            group.added_at,
            None if group.requires_trigger is None else int(group.requires_trigger),
        ),
    )
    await db.commit()


async def get_all_registered_groups() -> dict[str, RegisteredGroup]:
    """Get all registered groups as dict of jid -> RegisteredGroup."""
    db = _get_db()
    cursor = await db.execute("SELECT * FROM registered_groups")
    rows = await cursor.fetchall()
    return {row["jid"]: _row_to_registered_group(row) for row in rows}
