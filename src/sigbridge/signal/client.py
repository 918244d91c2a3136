"""REST client for signal-cli-rest-api.

Thin request/response mapping over the relay's HTTP surface. One aiohttp
session per client, created lazily on first use and released by ``close()``.
"""

from __future__ import annotations

from typing import Any

import aiohttp

from sigbridge.logger import logger
from sigbridge.types import SignalGroup


class SignalApiError(Exception):
    """The relay answered with a non-2xx status."""

    def __init__(self, method: str, path: str, status: int, body: str) -> None:
        super().__init__(f"{method} {path} -> HTTP {status}: {body[:200]}")
        self.method = method
        self.path = path
        self.status = status
        self.body = body


class SignalClient:
    def __init__(self, account_number: str, base_url: str, *, timeout: float = 10.0) -> None:
        self.account_number = account_number
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        session = self._get_session()
        url = f"{self.base_url}{path}"
        async with session.request(method, url, json=json, params=params) as resp:
            if not 200 <= resp.status < 300:
                raise SignalApiError(method, path, resp.status, await resp.text())
            if resp.content_type == "application/json":
                return await resp.json()
            text = await resp.text()
            return text or None

    # --- Account registration ---

    async def register(self, captcha: str | None = None) -> None:
        """Start registration; Signal answers with an SMS verification code."""
        payload: dict[str, Any] = {"use_voice": False}
        if captcha:
            payload["captcha"] = captcha
        try:
            await self._request("POST", f"/v1/register/{self.account_number}", json=payload)
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.error(
                "Failed to register Signal account", account=self.account_number, err=str(exc)
            )
            raise
        logger.info("Signal registration initiated", account=self.account_number)

    async def verify(self, code: str) -> None:
        try:
            await self._request("POST", f"/v1/register/{self.account_number}/verify/{code}")
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.error(
                "Failed to verify Signal account", account=self.account_number, err=str(exc)
            )
            raise
        logger.info("Signal account verified", account=self.account_number)

    async def get_account(self) -> Any:
        try:
            return await self._request("GET", f"/v1/accounts/{self.account_number}")
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.debug("Failed to get Signal account info", err=str(exc))
            raise

    # --- Messaging ---

    async def send_message(self, recipient: str, message: str, is_group: bool = False) -> None:
        """Send *message* to a phone number, or to a group id when *is_group*."""
        payload: dict[str, Any] = {"message": message, "number": self.account_number}
        if is_group:
            payload["group_id"] = recipient
        else:
            payload["recipients"] = [recipient]

        try:
            await self._request("POST", "/v2/send", json=payload)
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.error("Failed to send Signal message", recipient=recipient, err=str(exc))
            raise
        logger.debug(
            "Signal message sent",
            recipient=recipient,
            is_group=is_group,
            message_length=len(message),
        )

    async def receive_messages(self, timeout: int = 1) -> list[dict[str, Any]]:
        """Poll for pending envelopes (normal/native modes only).

        A client-side timeout is the expected "nothing new" outcome.
        """
        try:
            data = await self._request(
                "GET", f"/v1/receive/{self.account_number}", params={"timeout": timeout}
            )
        except TimeoutError:
            return []
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.error("Failed to receive Signal messages", err=str(exc))
            raise
        return data or []

    async def get_groups(self) -> list[SignalGroup]:
        try:
            data = await self._request("GET", f"/v1/groups/{self.account_number}")
        except (SignalApiError, aiohttp.ClientError) as exc:
            logger.error("Failed to get Signal groups", err=str(exc))
            raise
        return [SignalGroup.from_dict(g) for g in data or []]

    list_groups = get_groups

    async def set_typing(self, recipient: str, is_typing: bool) -> None:
        """Typing indicators are non-critical: errors are logged, never raised."""
        try:
            await self._request(
                "PUT",
                f"/v1/typing-indicator/{self.account_number}",
                json={"recipient": recipient, "typing": is_typing},
            )
        except (SignalApiError, aiohttp.ClientError, OSError, TimeoutError) as exc:
            logger.debug("Failed to set typing indicator", recipient=recipient, err=str(exc))

    async def health(self) -> bool:
        try:
            await self._request("GET", "/v1/health")
        except (SignalApiError, aiohttp.ClientError, OSError, TimeoutError):
            return False
        return True

    # --- Receive feed (json-rpc mode) ---

    @property
    def receive_url(self) -> str:
        """WebSocket URL of the receive feed (http -> ws, https -> wss)."""
        base = self.base_url
        if base.startswith("http"):
            base = "ws" + base[len("http") :]
        return f"{base}/v1/receive/{self.account_number}"

    async def connect_receive(
        self, *, heartbeat: float | None = 30.0
    ) -> aiohttp.ClientWebSocketResponse:
        """Open the WebSocket event feed. The caller owns (and must close) the socket."""
        session = self._get_session()
        return await session.ws_connect(self.receive_url, heartbeat=heartbeat)
