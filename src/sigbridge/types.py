"""Data models for sigbridge."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class RelayProcessState(enum.Enum):
    """Lifecycle state of the relay container, as reported by ``docker inspect``."""

    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class RegisteredGroup:
    name: str
    folder: str  # Folder under groups/
    trigger: str  # @mention to activate (e.g., "@sigbridge")
    added_at: str = ""
    requires_trigger: bool | None = None  # None -> trigger required


@dataclass
class IncomingMessage:
    """One text message from the relay feed, normalized for dispatch."""

    chat_jid: str  # namespaced: signal:<groupId> or signal:<number>
    sender: str  # namespaced sender: signal:<number>
    sender_name: str
    content: str
    timestamp_ms: int
    is_group: bool = False


@dataclass
class NewMessage:
    id: str
    chat_jid: str
    sender: str
    sender_name: str
    content: str
    timestamp: str
    is_from_me: bool | None = None


@dataclass
class SignalGroup:
    id: str
    name: str
    members: list[str] = field(default_factory=list)
    blocked: bool = False
    admins: list[str] = field(default_factory=list)
    pending_invites: list[str] = field(default_factory=list)
    pending_requests: list[str] = field(default_factory=list)
    invite_link: str = ""

    @classmethod
    def from_dict(cls, raw: dict) -> SignalGroup:
        return cls(
            id=raw["id"],
            name=raw.get("name") or "",
            members=list(raw.get("members") or []),
            blocked=bool(raw.get("blocked", False)),
            admins=list(raw.get("admins") or []),
            pending_invites=list(raw.get("pending_invites") or []),
            pending_requests=list(raw.get("pending_requests") or []),
            invite_link=raw.get("invite_link") or "",
        )


# --- Collaborator protocols ---
#
# The ingestion loop only talks to these. ``sigbridge.adapters`` binds them to
# the aiosqlite layer; tests bind them to fakes.


@runtime_checkable
class Storage(Protocol):
    async def store_message(
        self,
        chat_jid: str,
        sender: str,
        sender_name: str,
        content: str,
        timestamp_ms: int,
    ) -> None: ...

    async def store_chat_metadata(self, chat_jid: str, timestamp: str) -> None: ...

    async def update_chat_name(self, chat_jid: str, name: str) -> None: ...


@runtime_checkable
class Registry(Protocol):
    async def get_all_registered_groups(self) -> dict[str, RegisteredGroup]: ...


@runtime_checkable
class MessageQueue(Protocol):
    def enqueue_message_check(self, group_jid: str) -> None: ...
