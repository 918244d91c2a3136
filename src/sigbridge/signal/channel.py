"""Signal channel: the relay's WebSocket feed in, REST sends out.

One long-lived task owns the WebSocket. Each frame is handled to completion
before the next is read, so the dedup watermark sees events in arrival
order. When the socket closes or errors the task waits ``reconnect_delay``
seconds and opens a new one, forever; ``stop()`` cancels that task, which is
the only way the loop ends.

The reconnect delay is flat, not exponential: during a long relay outage the
loop retries every few seconds, and each attempt is logged.
"""

from __future__ import annotations

import asyncio
import contextlib
import re

import aiohttp

from sigbridge.logger import logger
from sigbridge.signal.client import SignalApiError, SignalClient
from sigbridge.signal.events import from_jid, looks_like_group, parse_event, to_jid
from sigbridge.types import (
    ConnectionState,
    IncomingMessage,
    MessageQueue,
    Registry,
    Storage,
)
from sigbridge.utils import create_background_task, ms_to_iso, now_ms

DEFAULT_RECONNECT_DELAY = 5.0
GROUP_SYNC_INTERVAL: float = 24 * 60 * 60


class SignalChannel:
    name = "signal"

    def __init__(
        self,
        client: SignalClient,
        *,
        storage: Storage,
        registry: Registry,
        queue: MessageQueue,
        trigger_pattern: re.Pattern[str],
        main_folder: str,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        group_sync_interval: float | None = GROUP_SYNC_INTERVAL,
        start_watermark: int | None = None,
    ) -> None:
        self._client = client
        self._storage = storage
        self._registry = registry
        self._queue = queue
        self._trigger_pattern = trigger_pattern
        self._main_folder = main_folder
        self._reconnect_delay = reconnect_delay
        self._group_sync_interval = group_sync_interval

        # History the relay replays on connect predates this process.
        self._watermark = now_ms() if start_watermark is None else start_watermark
        self._state = ConnectionState.DISCONNECTED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._group_sync_task: asyncio.Task[None] | None = None
        self.connect_attempts = 0

    # --- State ---

    @property
    def watermark(self) -> int:
        """Timestamp (ms) of the newest accepted message. Never decreases."""
        return self._watermark

    @property
    def state(self) -> ConnectionState:
        return self._state

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the receive loop (and periodic group sync). No-op if already running."""
        if self._receive_task is not None and not self._receive_task.done():
            return
        self._receive_task = create_background_task(self._receive_loop(), name="signal-receive")
        if self._group_sync_interval and self._group_sync_task is None:
            self._group_sync_task = create_background_task(
                self._periodic_group_sync(), name="signal-group-sync"
            )

    async def stop(self) -> None:
        """Cancel the receive loop and any pending reconnect, then close the socket.

        Unlike a transport close, this never leads to another connection attempt.
        """
        tasks = [t for t in (self._receive_task, self._group_sync_task) if t is not None]
        for task in tasks:
            task.cancel()
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        await asyncio.gather(*tasks, return_exceptions=True)
        self._receive_task = None
        self._group_sync_task = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Stopped Signal message loop")

    # --- Receive loop ---

    async def _receive_loop(self) -> None:
        while True:
            try:
                await self._connect_and_receive()
                logger.warning(
                    "Signal WebSocket closed, reconnecting",
                    delay=self._reconnect_delay,
                    attempts=self.connect_attempts,
                )
            except (aiohttp.ClientError, OSError, TimeoutError) as exc:
                logger.error(
                    "Signal WebSocket error, reconnecting",
                    err=str(exc),
                    delay=self._reconnect_delay,
                    attempts=self.connect_attempts,
                )
            finally:
                self._state = ConnectionState.DISCONNECTED
            await asyncio.sleep(self._reconnect_delay)

    async def _connect_and_receive(self) -> None:
        self._state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        logger.info("Connecting Signal WebSocket", url=self._client.receive_url)
        ws = await self._client.connect_receive()
        self._ws = ws
        self._state = ConnectionState.CONNECTED
        logger.info("Signal WebSocket connected")
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_frame(msg.data)
                elif msg.type is aiohttp.WSMsgType.ERROR:
                    logger.error("Signal WebSocket error frame", err=str(ws.exception()))
                    break
        finally:
            if self._ws is ws:
                self._ws = None
            await ws.close()
        logger.debug("Signal WebSocket close code", code=ws.close_code)

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = parse_event(raw)
        except ValueError as exc:
            logger.error(
                "Failed to parse Signal WebSocket message",
                err=str(exc),
                raw=str(raw)[:200],
            )
            return
        if message is None:
            return  # receipts, typing, reactions, attachments without caption

        try:
            await self.process_message(message)
        except Exception:
            logger.exception("Failed to process Signal message", chat_jid=message.chat_jid)

    async def process_message(self, msg: IncomingMessage) -> bool:
        """Dedup, record and gate one message. Returns True if it was dispatched."""
        if msg.timestamp_ms <= self._watermark:
            logger.debug(
                "Skipping already-seen Signal message",
                chat_jid=msg.chat_jid,
                timestamp=msg.timestamp_ms,
                watermark=self._watermark,
            )
            return False
        # Advance before gating, so a gated-out message isn't replayed either.
        self._watermark = msg.timestamp_ms

        try:
            await self._storage.store_chat_metadata(msg.chat_jid, ms_to_iso(msg.timestamp_ms))
        except Exception:
            logger.exception("Failed to store chat metadata", chat_jid=msg.chat_jid)

        try:
            await self._storage.store_message(
                msg.chat_jid,
                msg.sender,
                msg.sender_name,
                msg.content,
                msg.timestamp_ms,
            )
        except Exception:
            logger.exception("Failed to store message", chat_jid=msg.chat_jid)

        logger.info(
            "Signal message received",
            chat_jid=msg.chat_jid,
            sender=msg.sender,
            message_length=len(msg.content),
        )

        groups = await self._registry.get_all_registered_groups()
        group = groups.get(msg.chat_jid)
        if group is None:
            logger.info("Signal chat not registered, ignoring", chat_jid=msg.chat_jid)
            return False

        is_main = group.folder == self._main_folder
        requires_trigger = group.requires_trigger is not False
        if not is_main and requires_trigger and not self._trigger_pattern.search(msg.content):
            logger.debug(
                "Message ignored (no trigger)",
                chat_jid=msg.chat_jid,
                message=msg.content[:50],
            )
            return False

        try:
            self._queue.enqueue_message_check(msg.chat_jid)
        except Exception:
            logger.exception(
                "Failed to enqueue message check, dispatch dropped", chat_jid=msg.chat_jid
            )
            return False
        logger.info("Signal message queued for processing", chat_jid=msg.chat_jid)
        return True

    # --- Outbound ---

    async def send_message(self, jid: str, text: str) -> None:
        recipient = from_jid(jid)
        is_group = looks_like_group(recipient)
        await self._client.send_message(recipient, text, is_group)
        logger.debug("Signal message sent", recipient=recipient, is_group=is_group)

    async def set_typing(self, jid: str, is_typing: bool) -> None:
        """Best-effort: failures are logged at debug and dropped."""
        recipient = from_jid(jid)
        try:
            await self._client.set_typing(recipient, is_typing)
        except Exception as exc:
            logger.debug("Failed to set Signal typing indicator", recipient=recipient, err=str(exc))

    # --- Group metadata sync ---

    async def sync_group_metadata(self) -> int:
        """Refresh display names of every group the account is in. Returns the count."""
        try:
            logger.info("Syncing Signal group metadata...")
            groups = await self._client.get_groups()
            count = 0
            for group in groups:
                if group.name:
                    await self._storage.update_chat_name(to_jid(group.id), group.name)
                    count += 1
        except (SignalApiError, aiohttp.ClientError, OSError, TimeoutError) as err:
            logger.error("Failed to sync Signal groups", err=str(err))
            return 0
        logger.info("Signal group metadata synced", count=count)
        return count

    async def _periodic_group_sync(self) -> None:
        assert self._group_sync_interval
        while True:
            try:
                await self.sync_group_metadata()
            except Exception as err:
                logger.error("Periodic Signal group sync failed", err=str(err))
            await asyncio.sleep(self._group_sync_interval)
