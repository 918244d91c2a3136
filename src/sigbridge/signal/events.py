"""Relay feed frames -> IncomingMessage.

signal-cli-rest-api in json-rpc mode pushes one JSON object per WebSocket
frame: ``{"envelope": {...}, "account": "+1555..."}``. Receipts, typing
events and reactions arrive on the same feed without a text body.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from sigbridge.types import IncomingMessage

JID_PREFIX = "signal:"

# Signal group ids are base64 blobs (44 chars); E.164 numbers stay at or under
# this length. A UUID-only contact (36 chars) reads as a group.
GROUP_ID_MIN_LENGTH = 20


def to_jid(identifier: str) -> str:
    return f"{JID_PREFIX}{identifier}"


def from_jid(jid: str) -> str:
    return jid.removeprefix(JID_PREFIX)


def looks_like_group(identifier: str) -> bool:
    """Heuristic: no group flag travels with an outbound recipient, only its shape."""
    return len(identifier) > GROUP_ID_MIN_LENGTH


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GroupInfo(_Frame):
    group_id: str | None = Field(default=None, alias="groupId")
    type: str | None = None


class DataMessage(_Frame):
    timestamp: int | None = None
    message: str | None = None
    group_info: GroupInfo | None = Field(default=None, alias="groupInfo")


class Envelope(_Frame):
    source: str | None = None
    source_number: str | None = Field(default=None, alias="sourceNumber")
    source_uuid: str | None = Field(default=None, alias="sourceUuid")
    source_name: str | None = Field(default=None, alias="sourceName")
    timestamp: int
    data_message: DataMessage | None = Field(default=None, alias="dataMessage")

    @property
    def sender(self) -> str:
        return self.source_number or self.source or self.source_uuid or ""


class SignalEvent(_Frame):
    envelope: Envelope
    account: str | None = None


def parse_event(raw: str | bytes) -> IncomingMessage | None:
    """Parse one feed frame.

    Returns None for frames with no text body. Raises ``ValueError``
    (``pydantic.ValidationError``) for malformed frames.
    """
    event = SignalEvent.model_validate_json(raw)
    envelope = event.envelope
    data = envelope.data_message
    if data is None or not data.message:
        return None

    sender = envelope.sender
    group_id = data.group_info.group_id if data.group_info else None
    chat_jid = to_jid(group_id) if group_id else to_jid(sender)

    return IncomingMessage(
        chat_jid=chat_jid,
        sender=to_jid(sender),
        sender_name=envelope.source_name or sender,
        content=data.message,
        timestamp_ms=envelope.timestamp,
        is_group=group_id is not None,
    )
