"""
Unit tests for the headless device flow client.

The auth server is replaced by an httpx.MockTransport and time by a manual
clock that the injected sleep advances, so every polling schedule is exact.
"""

import asyncio
import json
import time
from typing import Any, List

import httpx
import pytest

from headless_auth.client.headless import ClientPollingEngine, PollingState
from headless_auth.client.storage import CLIENT_INFO, DEVICE_CODE, SERVER_URL, SESSION_TOKEN
from headless_auth.core.exceptions import (
    AuthorizationCancelledError,
    AuthorizationExpiredError,
    AuthorizationTimeoutError,
    ClientNotRegisteredError,
    DeviceAuthorizationError,
    NotSupportedError,
    PollingInProgressError,
)
from headless_auth.models.tokens import TokenGrant

SERVER_URL_VALUE = "http://testserver"

DEVICE_AUTH = {
    "device_code": "internal-device-code",
    "user_code": "WDJB-MJHT",
    "verification_uri": "https://github.com/login/device",
    "verification_uri_complete": "https://github.com/login/device?user_code=WDJB-MJHT",
    "expires_in": 900,
    "interval": 5,
}

GRANT = {
    "access_token": "session-token",
    "token_type": "Bearer",
    "expires_in": 3600,
    "refresh_token": "refresh",
    "scope": "read:user user:email",
}


def pending():
    return httpx.Response(400, json={"error": "authorization_pending", "error_description": "pending"})


def slow_down():
    return httpx.Response(400, json={"error": "slow_down"})


def granted():
    return httpx.Response(200, json=GRANT)


class FakeAuthServer:
    """Scripted auth server recording when each token poll arrived"""

    def __init__(self, clock):
        self.clock = clock
        self.token_responses: List[Any] = []
        self.authorize_response = httpx.Response(200, json=DEVICE_AUTH)
        self.poll_times: List[float] = []
        self.poll_bodies: List[dict] = []
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/auth/device/authorize":
            return self.authorize_response
        if path == "/auth/device/token":
            self.poll_times.append(self.clock())
            self.poll_bodies.append(json.loads(request.content))
            item = self.token_responses.pop(0) if self.token_responses else pending()
            if isinstance(item, Exception):
                raise item
            return item
        if path == "/auth/register":
            return httpx.Response(201, json={"client_id": "registered-client", **json.loads(request.content)})
        return httpx.Response(404)


class FakeSleep:

    def __init__(self, clock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def server(clock):
    return FakeAuthServer(clock)


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / ".auth"


@pytest.fixture
def client(server, fake_sleep, clock, storage_dir):
    polling_client = ClientPollingEngine(
        SERVER_URL_VALUE,
        storage_dir=storage_dir,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(server.handler)),
        sleep=fake_sleep,
        clock=clock,
    )
    polling_client.save_client_information({"client_id": "test-client"})
    return polling_client


@pytest.mark.unit
@pytest.mark.client
class TestClientState:

    def test_server_url_is_persisted(self, client):
        assert client.storage.read(SERVER_URL) == SERVER_URL_VALUE

    def test_client_information_round_trip(self, client, storage_dir):
        assert client.client_information() == {"client_id": "test-client"}
        assert (storage_dir / f"{CLIENT_INFO}.json").is_file()

    def test_tokens_absent(self, client):
        assert client.tokens() is None

    def test_malformed_tokens_are_ignored(self, client):
        client.storage.write(SESSION_TOKEN, {"token_type": "Bearer"})

        assert client.tokens() is None

    def test_code_verifier(self, client):
        with pytest.raises(ValueError):
            client.code_verifier()

        client.save_code_verifier("verifier")

        assert client.code_verifier() == "verifier"

    def test_client_metadata(self, client):
        assert client.redirect_url == "http://testserver/auth/callback"
        assert client.client_metadata["redirect_uris"] == ["http://testserver/auth/callback"]
        assert client.client_metadata["grant_types"] == ["authorization_code", "device_code"]

    @pytest.mark.asyncio
    async def test_redirect_is_not_supported(self, client):
        with pytest.raises(NotSupportedError):
            await client.redirect_to_authorization()

    @pytest.mark.asyncio
    async def test_register_saves_client_information(self, client, server):
        info = await client.register()

        assert info["client_id"] == "registered-client"
        assert client.client_information()["client_id"] == "registered-client"
        assert json.loads(server.requests[0].content) == client.client_metadata


@pytest.mark.unit
@pytest.mark.client
class TestAuthorizeHeadless:

    @pytest.mark.asyncio
    async def test_requires_client_information(self, client):
        client.storage.delete(CLIENT_INFO)

        with pytest.raises(ClientNotRegisteredError):
            await client.authorize_headless()

    @pytest.mark.asyncio
    async def test_success_persists_device_code(self, client, server, storage_dir):
        device_auth = await client.authorize_headless()

        assert device_auth.device_code == "internal-device-code"
        assert device_auth.user_code == "WDJB-MJHT"
        assert client.state == PollingState.AWAITING_DEVICE_CODE
        assert client.storage.read(DEVICE_CODE) == "internal-device-code"
        assert json.loads(server.requests[0].content) == {"client_id": "test-client"}

    @pytest.mark.asyncio
    async def test_non_2xx_fails(self, client, server):
        server.authorize_response = httpx.Response(400, json={"error": "invalid_client"})

        with pytest.raises(DeviceAuthorizationError):
            await client.authorize_headless()

        assert client.state == PollingState.FAILED

    @pytest.mark.asyncio
    async def test_malformed_2xx_fails(self, client, server):
        server.authorize_response = httpx.Response(200, json={"unexpected": True})

        with pytest.raises(DeviceAuthorizationError) as exc_info:
            await client.authorize_headless()

        assert "Malformed device authorization response" in exc_info.value.description
        assert client.state == PollingState.FAILED
        assert client.storage.read(DEVICE_CODE) is None

    @pytest.mark.asyncio
    async def test_non_json_2xx_fails(self, client, server):
        server.authorize_response = httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(DeviceAuthorizationError):
            await client.authorize_headless()

        assert client.state == PollingState.FAILED


@pytest.mark.unit
@pytest.mark.client
@pytest.mark.device_flow
class TestPollForAuthorization:

    @pytest.mark.asyncio
    async def test_pending_three_times_then_success(self, client, server, fake_sleep):
        server.token_responses = [pending(), pending(), pending(), granted()]
        pending_calls = []
        await client.authorize_headless()

        tokens = await client.poll_for_authorization(interval=5, on_pending=lambda: pending_calls.append(1))

        assert isinstance(tokens, TokenGrant)
        assert tokens.access_token == "session-token"
        assert len(server.poll_times) == 4
        assert len(pending_calls) == 3
        assert fake_sleep.calls == [5, 5, 5, 5]
        assert client.state == PollingState.SUCCEEDED
        assert client.tokens() == tokens
        assert client.storage.read(DEVICE_CODE) is None
        assert server.poll_bodies[0] == {"client_id": "test-client", "device_code": "internal-device-code"}

    @pytest.mark.asyncio
    async def test_slow_down_adds_five_seconds(self, client, server, clock):
        server.token_responses = [slow_down(), granted()]
        start = clock.now

        await client.poll_for_authorization(device_code="dc", interval=5)

        assert server.poll_times == [start + 5, start + 15]

    @pytest.mark.asyncio
    async def test_slow_down_never_decreases_interval(self, client, server, fake_sleep):
        server.token_responses = [slow_down(), pending(), slow_down(), pending(), granted()]

        await client.poll_for_authorization(device_code="dc", interval=5)

        assert fake_sleep.calls == [5, 10, 10, 15, 15]

    @pytest.mark.asyncio
    async def test_expired_token_stops_without_retry(self, client, server):
        server.token_responses = [httpx.Response(401, json={"error": "expired_token"}), granted()]
        errors = []

        with pytest.raises(AuthorizationExpiredError):
            await client.poll_for_authorization(device_code="dc", on_error=errors.append)

        assert len(server.poll_times) == 1
        assert errors == ["Authorization request expired"]
        assert client.state == PollingState.EXPIRED
        assert client.tokens() is None

    @pytest.mark.asyncio
    async def test_timeout_terminates_within_timeout(self, client, server, fake_sleep, clock):
        start = clock.now

        with pytest.raises(AuthorizationTimeoutError):
            await client.poll_for_authorization(device_code="dc", interval=5, timeout=12)

        assert fake_sleep.calls == [5, 5, 2]
        assert clock.now - start == 12
        assert len(server.poll_times) == 2
        assert client.state == PollingState.FAILED

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, client, server):
        server.token_responses = [
            httpx.ConnectError("connection refused"),
            httpx.ConnectError("connection refused"),
            granted(),
        ]
        errors = []

        tokens = await client.poll_for_authorization(device_code="dc", on_error=errors.append)

        assert tokens.access_token == "session-token"
        assert len(errors) == 2
        assert all(e.startswith("Network error") for e in errors)

    @pytest.mark.asyncio
    async def test_other_errors_are_reported_and_retried(self, client, server):
        server.token_responses = [
            httpx.Response(401, json={"error": "access_denied", "error_description": "denied by user"}),
            granted(),
        ]
        errors = []

        tokens = await client.poll_for_authorization(device_code="dc", on_error=errors.append)

        assert tokens.access_token == "session-token"
        assert errors == ["denied by user"]

    @pytest.mark.asyncio
    async def test_malformed_success_is_reported_and_retried(self, client, server):
        server.token_responses = [httpx.Response(200, json={"unexpected": True}), granted()]
        errors = []

        tokens = await client.poll_for_authorization(device_code="dc", on_error=errors.append)

        assert tokens.access_token == "session-token"
        assert len(errors) == 1
        assert errors[0].startswith("Malformed token response (200)")
        assert client.state == PollingState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_grant_with_error_status_is_not_accepted(self, client, server):
        server.token_responses = [httpx.Response(500, json=GRANT), granted()]
        errors = []

        await client.poll_for_authorization(device_code="dc", on_error=errors.append)

        assert len(errors) == 1
        assert len(server.poll_times) == 2

    @pytest.mark.asyncio
    async def test_slow_server_cannot_outlast_timeout(self, storage_dir):
        async def unresponsive(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.5)
            return pending()

        slow_client = ClientPollingEngine(
            SERVER_URL_VALUE,
            storage_dir=storage_dir,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(unresponsive)),
        )
        slow_client.save_client_information({"client_id": "test-client"})
        started = time.monotonic()

        with pytest.raises(AuthorizationTimeoutError):
            await slow_client.poll_for_authorization(device_code="dc", interval=0.1, timeout=0.3)

        assert time.monotonic() - started <= 0.5
        assert slow_client.state == PollingState.FAILED
        assert ClientPollingEngine._polling_in_progress is False

    @pytest.mark.asyncio
    async def test_consecutive_error_bound(self, client, server):
        server.token_responses = [
            httpx.Response(502, json={"error": "server_error"}),
            httpx.Response(502, json={"error": "server_error"}),
            granted(),
        ]

        with pytest.raises(DeviceAuthorizationError):
            await client.poll_for_authorization(device_code="dc", max_consecutive_errors=2)

        assert len(server.poll_times) == 2
        assert client.state == PollingState.FAILED

    @pytest.mark.asyncio
    async def test_pending_resets_consecutive_errors(self, client, server):
        server.token_responses = [
            httpx.Response(502, json={"error": "server_error"}),
            pending(),
            httpx.Response(502, json={"error": "server_error"}),
            granted(),
        ]

        tokens = await client.poll_for_authorization(device_code="dc", max_consecutive_errors=2)

        assert tokens.access_token == "session-token"

    @pytest.mark.asyncio
    async def test_cancellation(self, client, server):
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(AuthorizationCancelledError):
            await client.poll_for_authorization(device_code="dc", cancel_event=cancel_event)

        assert server.poll_times == []
        assert client.state == PollingState.FAILED

    @pytest.mark.asyncio
    async def test_requires_device_code(self, client):
        with pytest.raises(DeviceAuthorizationError):
            await client.poll_for_authorization()

    @pytest.mark.asyncio
    async def test_requires_client_information(self, client):
        client.storage.delete(CLIENT_INFO)

        with pytest.raises(ClientNotRegisteredError):
            await client.poll_for_authorization(device_code="dc")

    @pytest.mark.asyncio
    async def test_falls_back_to_persisted_device_code(self, client, server, storage_dir, clock):
        client.storage.write(DEVICE_CODE, "persisted-code")
        server.token_responses = [granted()]
        fresh = ClientPollingEngine(
            SERVER_URL_VALUE,
            storage_dir=storage_dir,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(server.handler)),
            sleep=FakeSleep(clock),
            clock=clock,
        )

        await fresh.poll_for_authorization()

        assert server.poll_bodies[0]["device_code"] == "persisted-code"

    @pytest.mark.asyncio
    async def test_single_poll_loop_per_process(self, client, server, storage_dir, clock):
        gate = asyncio.Event()
        cancel_event = asyncio.Event()

        async def blocking_sleep(seconds):
            await gate.wait()

        blocked = ClientPollingEngine(
            SERVER_URL_VALUE,
            storage_dir=storage_dir,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(server.handler)),
            sleep=blocking_sleep,
            clock=clock,
        )
        task = asyncio.create_task(blocked.poll_for_authorization(device_code="dc", cancel_event=cancel_event))
        await asyncio.sleep(0)

        with pytest.raises(PollingInProgressError):
            await client.poll_for_authorization(device_code="dc")

        cancel_event.set()
        gate.set()
        with pytest.raises(AuthorizationCancelledError):
            await task

        assert ClientPollingEngine._polling_in_progress is False
        server.token_responses = [granted()]
        assert (await client.poll_for_authorization(device_code="dc")).access_token == "session-token"
