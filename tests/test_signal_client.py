"""Tests for the signal-cli-rest-api REST client, against a local aiohttp server."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from sigbridge.signal.client import SignalApiError, SignalClient

NUMBER = "+15550000000"
GROUP_ID = "Z3JvdXBpZGJhc2U2NGVuY29kZWRibG9iMTIzNDU2Nzg="


class FakeRelay:
    """Records requests and answers with canned responses per route."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, object]] = []
        self.send_status = 201
        self.health_status = 204
        self.typing_status = 204
        self.register_statuses: list[int] = []
        self.groups: list[dict] = []
        self.envelopes: list[dict] = []
        self.receive_status = 200
        self.receive_delay = 0.0

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v2/send", self.send)
        app.router.add_get("/v1/health", self.health)
        app.router.add_put("/v1/typing-indicator/{number}", self.typing)
        app.router.add_get("/v1/groups/{number}", self.list_groups)
        app.router.add_get("/v1/receive/{number}", self.receive)
        app.router.add_get("/v1/accounts/{number}", self.account)
        app.router.add_post("/v1/register/{number}", self.register)
        app.router.add_post("/v1/register/{number}/verify/{code}", self.verify)
        return app

    async def _record(self, request: web.Request) -> None:
        body = await request.json() if request.can_read_body else None
        self.requests.append((request.method, request.path, body))

    async def send(self, request: web.Request) -> web.Response:
        await self._record(request)
        if self.send_status >= 400:
            return web.json_response({"error": "invalid recipient"}, status=self.send_status)
        return web.json_response({"timestamp": "1700000000000"}, status=self.send_status)

    async def health(self, request: web.Request) -> web.Response:
        return web.Response(status=self.health_status)

    async def typing(self, request: web.Request) -> web.Response:
        await self._record(request)
        text = "boom" if self.typing_status >= 400 else ""
        return web.Response(status=self.typing_status, text=text)

    async def receive(self, request: web.Request) -> web.Response:
        self.requests.append((request.method, request.path_qs, None))
        await asyncio.sleep(self.receive_delay)
        if self.receive_status >= 400:
            return web.Response(status=self.receive_status, text="bad request")
        return web.json_response(self.envelopes)

    async def list_groups(self, request: web.Request) -> web.Response:
        return web.json_response(self.groups)

    async def account(self, request: web.Request) -> web.Response:
        return web.json_response({"number": request.match_info["number"]})

    async def register(self, request: web.Request) -> web.Response:
        await self._record(request)
        status = self.register_statuses.pop(0) if self.register_statuses else 201
        return web.Response(status=status, text="captcha required" if status == 402 else "")

    async def verify(self, request: web.Request) -> web.Response:
        self.requests.append((request.method, request.path, None))
        return web.Response(status=201)


@pytest.fixture
async def relay():
    fake = FakeRelay()
    server = TestServer(fake.app())
    await server.start_server()
    fake.server = server
    yield fake
    await server.close()


@pytest.fixture
async def client(relay):
    c = SignalClient(NUMBER, f"http://127.0.0.1:{relay.server.port}/", timeout=2.0)
    yield c
    await c.close()


class TestSend:
    async def test_direct_message_payload(self, client: SignalClient, relay: FakeRelay):
        await client.send_message("+15551234567", "hello")

        method, path, body = relay.requests[-1]
        assert (method, path) == ("POST", "/v2/send")
        assert body == {"message": "hello", "number": NUMBER, "recipients": ["+15551234567"]}

    async def test_group_message_payload(self, client: SignalClient, relay: FakeRelay):
        await client.send_message(GROUP_ID, "hello all", is_group=True)

        _, _, body = relay.requests[-1]
        assert body["group_id"] == GROUP_ID
        assert "recipients" not in body

    async def test_error_status_raises(self, client: SignalClient, relay: FakeRelay):
        relay.send_status = 400

        with pytest.raises(SignalApiError) as exc_info:
            await client.send_message("+15551234567", "hello")

        assert exc_info.value.status == 400
        assert exc_info.value.path == "/v2/send"
        assert "invalid recipient" in exc_info.value.body


class TestHealth:
    async def test_healthy(self, client: SignalClient):
        assert await client.health() is True

    async def test_unhealthy_status(self, client: SignalClient, relay: FakeRelay):
        relay.health_status = 503

        assert await client.health() is False

    async def test_unreachable(self, relay: FakeRelay):
        port = relay.server.port
        await relay.server.close()
        c = SignalClient(NUMBER, f"http://127.0.0.1:{port}", timeout=1.0)
        try:
            assert await c.health() is False
        finally:
            await c.close()


class TestTyping:
    async def test_sends_indicator(self, client: SignalClient, relay: FakeRelay):
        await client.set_typing("+15551234567", True)

        method, path, body = relay.requests[-1]
        assert (method, path) == ("PUT", f"/v1/typing-indicator/{NUMBER}")
        assert body == {"recipient": "+15551234567", "typing": True}

    async def test_failure_is_swallowed(self, client: SignalClient, relay: FakeRelay):
        relay.typing_status = 500

        await client.set_typing("+15551234567", False)


class TestReceive:
    async def test_returns_envelopes(self, client: SignalClient, relay: FakeRelay):
        relay.envelopes = [{"envelope": {"source": "+15551234567", "timestamp": 1000}}]

        assert await client.receive_messages(timeout=5) == relay.envelopes
        assert relay.requests == [("GET", f"/v1/receive/{NUMBER}?timeout=5", None)]

    async def test_client_timeout_means_nothing_new(self, relay: FakeRelay):
        relay.receive_delay = 0.5
        client = SignalClient(NUMBER, f"http://127.0.0.1:{relay.server.port}/", timeout=0.2)
        try:
            assert await client.receive_messages() == []
        finally:
            await client.close()

    async def test_error_status_raises(self, client: SignalClient, relay: FakeRelay):
        relay.receive_status = 400

        with pytest.raises(SignalApiError) as exc_info:
            await client.receive_messages()

        assert exc_info.value.status == 400


class TestGroups:
    async def test_lists_groups(self, client: SignalClient, relay: FakeRelay):
        relay.groups = [
            {"id": GROUP_ID, "name": "Family", "members": ["+15551234567"], "blocked": False},
            {"id": "other", "name": None},
        ]

        groups = await client.get_groups()

        assert [g.id for g in groups] == [GROUP_ID, "other"]
        assert groups[0].name == "Family"
        assert groups[0].members == ["+15551234567"]
        assert groups[1].name == ""

    async def test_empty(self, client: SignalClient):
        assert await client.list_groups() == []


class TestRegistration:
    async def test_register_then_verify(self, client: SignalClient, relay: FakeRelay):
        await client.register()
        await client.verify("123456")

        assert relay.requests[0] == ("POST", f"/v1/register/{NUMBER}", {"use_voice": False})
        assert relay.requests[1][:2] == ("POST", f"/v1/register/{NUMBER}/verify/123456")

    async def test_register_with_captcha(self, client: SignalClient, relay: FakeRelay):
        await client.register(captcha="signalcaptcha://abc")

        _, _, body = relay.requests[-1]
        assert body["captcha"] == "signalcaptcha://abc"

    async def test_captcha_required_surfaces_status(self, client: SignalClient, relay: FakeRelay):
        relay.register_statuses = [402]

        with pytest.raises(SignalApiError) as exc_info:
            await client.register()

        assert exc_info.value.status == 402

    async def test_get_account(self, client: SignalClient):
        assert await client.get_account() == {"number": NUMBER}


class TestReceiveUrl:
    def test_http_becomes_ws(self):
        c = SignalClient(NUMBER, "http://localhost:8080/")
        assert c.receive_url == f"ws://localhost:8080/v1/receive/{NUMBER}"

    def test_https_becomes_wss(self):
        c = SignalClient(NUMBER, "https://relay.example.com")
        assert c.receive_url == f"wss://relay.example.com/v1/receive/{NUMBER}"
