"""Per-chat concurrency queue with a global limit.

asyncio.ensure_future doesn't run the coroutine synchronously up to the first
await, so ``enqueue_message_check`` eagerly sets ``state.active`` and bumps
``_active_count`` in the synchronous caller, then the run cleans up in its
``finally`` block.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sigbridge.config import get_settings
from sigbridge.logger import logger


@dataclass
class GroupState:
    active: bool = False
    pending_messages: bool = False
    retry_count: int = 0


class GroupQueue:
    """Serializes message checks within each chat.

    At most one check per chat is in flight; a check requested while one is
    running collapses into a single pending flag. A global concurrency limit
    caps in-flight checks across all chats, with a FIFO of waiting chats.
    """

    def __init__(self) -> None:
        self._groups: dict[str, GroupState] = {}
        self._active_count = 0
        self._waiting_groups: deque[str] = deque()
        self._process_messages_fn: Callable[[str], Awaitable[bool]] | None = None
        self._running: set[asyncio.Future[None]] = set()
        self._shutting_down = False

    def _get_group(self, group_jid: str) -> GroupState:
        if group_jid not in self._groups:
            self._groups[group_jid] = GroupState()
        return self._groups[group_jid]

    def set_process_messages_fn(self, fn: Callable[[str], Awaitable[bool]]) -> None:
        """Register the callback used to process pending messages for a chat.

        The callback returns False (or raises) to request a retry with backoff.
        """
        self._process_messages_fn = fn

    def enqueue_message_check(self, group_jid: str) -> None:
        """Schedule a message processing run for *group_jid*. Never blocks.

        Safe to call redundantly: if the chat already has an active run the
        check is deferred until it finishes. If the global concurrency limit
        is reached, the chat joins the waiting queue.
        """
        if self._shutting_down:
            return

        state = self._get_group(group_jid)

        if state.active:
            state.pending_messages = True
            logger.debug("Check active, message queued", group_jid=group_jid)
            return

        if self._active_count >= get_settings().queue.max_concurrent:
            state.pending_messages = True
            if group_jid not in self._waiting_groups:
                self._waiting_groups.append(group_jid)
            logger.debug(
                "At concurrency limit, message queued",
                group_jid=group_jid,
                active_count=self._active_count,
            )
            return

        self._start(group_jid, "messages")

    def _start(self, group_jid: str, reason: str) -> None:
        state = self._get_group(group_jid)
        # Eagerly mark as active before scheduling the coroutine
        state.active = True
        state.pending_messages = False
        self._active_count += 1
        fut = asyncio.ensure_future(self._run_for_group(group_jid, reason))
        self._running.add(fut)
        fut.add_done_callback(self._running.discard)

    async def _run_for_group(self, group_jid: str, reason: str) -> None:
        """Run the process_messages_fn for a chat.

        State is already marked active by the caller. We only clean up in finally.
        """
        state = self._get_group(group_jid)

        logger.debug(
            "Starting message check",
            group_jid=group_jid,
            reason=reason,
            active_count=self._active_count,
        )

        try:
            if self._process_messages_fn:
                success = await self._process_messages_fn(group_jid)
                if success:
                    state.retry_count = 0
                else:
                    self._schedule_retry(group_jid, state)
        except Exception:
            logger.exception("Error processing messages for group", group_jid=group_jid)
            self._schedule_retry(group_jid, state)
        finally:
            state.active = False
            self._active_count -= 1
            self._drain_group(group_jid)

    def _schedule_retry(self, group_jid: str, state: GroupState) -> None:
        """Re-enqueue a failed message check after exponential backoff."""
        s = get_settings()
        state.retry_count += 1
        if state.retry_count > s.queue.max_retries:
            logger.error(
                "Max retries exceeded, dropping messages (will retry on next incoming message)",
                group_jid=group_jid,
                retry_count=state.retry_count,
            )
            state.retry_count = 0
            return

        delay = s.queue.base_retry_seconds * (2 ** (state.retry_count - 1))
        logger.info(
            "Scheduling retry with backoff",
            group_jid=group_jid,
            retry_count=state.retry_count,
            delay_seconds=delay,
        )

        async def _retry() -> None:
            await asyncio.sleep(delay)
            if not self._shutting_down:
                self.enqueue_message_check(group_jid)

        asyncio.ensure_future(_retry())

    def _drain_group(self, group_jid: str) -> None:
        """After a run finishes, start the pending check for this chat or a waiting one."""
        if self._shutting_down:
            return

        if self._get_group(group_jid).pending_messages:
            self._start(group_jid, "drain")
            return
        self._drain_waiting()

    def _drain_waiting(self) -> None:
        """Start runs for waiting chats until the concurrency limit is hit."""
        while self._waiting_groups and self._active_count < get_settings().queue.max_concurrent:
            next_jid = self._waiting_groups.popleft()
            state = self._get_group(next_jid)
            if state.pending_messages and not state.active:
                self._start(next_jid, "drain")

    async def shutdown(self, grace_period: float = 10.0) -> None:
        """Stop accepting work and give in-flight checks *grace_period* seconds to finish."""
        self._shutting_down = True
        logger.info(
            "GroupQueue shutdown starting",
            active_count=self._active_count,
            waiting_count=len(self._waiting_groups),
        )
        if not self._running:
            logger.info("GroupQueue shutdown complete (nothing in flight)")
            return

        _done, pending = await asyncio.wait(set(self._running), timeout=grace_period)
        for fut in pending:
            fut.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("GroupQueue shutdown complete", cancelled=len(pending))
