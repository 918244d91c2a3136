"""Process composition: database, relay supervisor, Signal channel, queue.

Startup order matters: the relay must be serving before the channel opens its
feed. If the supervisor gives up, the process keeps running without Signal
(``self.channel`` stays None) instead of crashing.
"""

from __future__ import annotations

import asyncio
import signal

from sigbridge import db
from sigbridge.adapters import DatabaseRegistry, DatabaseStorage
from sigbridge.config import get_settings
from sigbridge.group_queue import GroupQueue
from sigbridge.logger import logger, set_level
from sigbridge.signal.channel import SignalChannel
from sigbridge.signal.client import SignalClient
from sigbridge.signal.container import ensure_signal_container
from sigbridge.utils import create_background_task

_CHECK_CURSOR_PREFIX = "last_check:"


class SignalBridgeApp:
    def __init__(self) -> None:
        self.queue = GroupQueue()
        self.client: SignalClient | None = None
        self.channel: SignalChannel | None = None
        self._shutdown = asyncio.Event()
        self._shutting_down = False

    async def process_messages(self, chat_jid: str) -> bool:
        """Default queue callback: hand over everything stored since the last check.

        What happens to the messages next is up to the consumer; here they
        are logged and the per-chat cursor advanced.
        """
        key = f"{_CHECK_CURSOR_PREFIX}{chat_jid}"
        since = await db.get_router_state(key) or ""
        messages = await db.get_messages_since(chat_jid, since)
        if not messages:
            return True
        logger.info(
            "Messages ready for processing",
            chat_jid=chat_jid,
            count=len(messages),
            first=messages[0].timestamp,
            last=messages[-1].timestamp,
        )
        await db.set_router_state(key, messages[-1].timestamp)
        return True

    async def start_signal(self) -> bool:
        """Bring the relay up and start ingesting. Returns False if Signal stays off."""
        s = get_settings()
        if not s.signal.enabled or not s.signal.number:
            logger.info("Signal integration disabled")
            return False

        if not await ensure_signal_container():
            logger.error("Signal API unavailable, continuing without Signal")
            return False

        self.client = SignalClient(
            s.signal.number, s.signal.api_url, timeout=s.signal.request_timeout
        )
        logger.info("Signal client initialized", number=s.signal.number)

        self.channel = SignalChannel(
            self.client,
            storage=DatabaseStorage(),
            registry=DatabaseRegistry(),
            queue=self.queue,
            trigger_pattern=s.trigger_pattern,
            main_folder=s.workspaces.main_folder,
            reconnect_delay=s.signal.reconnect_delay,
            group_sync_interval=s.signal.group_sync_interval,
        )
        self.channel.start()
        return True

    def request_shutdown(self, sig_name: str) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        self._shutdown.set()

    async def shutdown(self) -> None:
        if self.channel is not None:
            await self.channel.stop()
        await self.queue.shutdown()
        if self.client is not None:
            await self.client.close()
        await db.close_database()
        logger.info("Shutdown complete")

    async def run(self) -> None:
        s = get_settings()
        set_level(s.logging.level)

        await db.init_database()
        logger.info("Database initialized")

        self.queue.set_process_messages_fn(self.process_messages)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self.request_shutdown(s.name))

        # Startup runs beside the shutdown wait so a signal cancels a supervisor
        # that is still creating or polling the relay.
        startup = create_background_task(self.start_signal(), name="signal-startup")
        try:
            await self._shutdown.wait()
        finally:
            if not startup.done():
                logger.info("Shutdown during Signal startup, cancelling it")
                startup.cancel()
            await asyncio.gather(startup, return_exceptions=True)
            await self.shutdown()
