"""
Pytest configuration and shared fixtures for headless_auth tests.
"""

import json
import os
from collections.abc import Generator
from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

# Set environment variables BEFORE importing the app
# This ensures settings are loaded with correct values
os.environ["AUTH_SERVER_EXTERNAL_URL"] = "http://localhost:3000"
os.environ["AUTH_API_PREFIX"] = "/auth"
os.environ["GITHUB_CLIENT_ID"] = "test-github-client-id"
os.environ["GITHUB_CLIENT_SECRET"] = "test-github-client-secret"
os.environ["GITHUB_SCOPES"] = "read:user user:email"

from headless_auth.models.device_flow import ProviderDeviceCode  # noqa: E402
from headless_auth.providers.github import GitHubDeviceProvider  # noqa: E402
from headless_auth.services.engine import ServerAuthorizationEngine  # noqa: E402
from headless_auth.stores.clients import RegisteredClientStore  # noqa: E402

TEST_CLIENT_ID = "test-client"

PENDING = {"error": "authorization_pending", "error_description": "The authorization request is still pending."}
SLOW_DOWN = {"error": "slow_down", "error_description": "Too many requests have been made in the same time period."}
GITHUB_TOKEN = {"access_token": "gho_test_provider_token", "token_type": "bearer", "scope": "read:user,user:email"}


class FakeClock:
    """Manually advanced wall clock"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider:
    """Stand-in for GitHubDeviceProvider that answers from a script"""

    def __init__(self, expires_in: int = 900, interval: int = 5):
        self.expires_in = expires_in
        self.interval = interval
        self.poll_responses: List[Dict[str, Any]] = []
        self.polled_codes: List[str] = []
        self.device_code_requests = 0
        self.closed = False

    async def request_device_code(self, scopes: List[str]) -> ProviderDeviceCode:
        self.device_code_requests += 1
        return ProviderDeviceCode(
            device_code=f"gh-device-{self.device_code_requests}",
            user_code="ABCD-1234",
            verification_uri="https://github.com/login/device",
            expires_in=self.expires_in,
            interval=self.interval,
        )

    async def poll_token(self, provider_device_code: str) -> Dict[str, Any]:
        self.polled_codes.append(provider_device_code)
        if self.poll_responses:
            return self.poll_responses.pop(0)
        return dict(PENDING)

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        return {"login": "octocat", "id": 1, "name": "The Octocat", "email": "octocat@github.com"}

    async def close(self) -> None:
        self.closed = True


class FakeGitHub:
    """httpx.MockTransport handler emulating the GitHub device flow endpoints"""

    def __init__(self):
        self.device_code_payload: Dict[str, Any] = {
            "device_code": "3584d83530557fdd1f46af8289938c8ef79f9dc5",
            "user_code": "WDJB-MJHT",
            "verification_uri": "https://github.com/login/device",
            "expires_in": 900,
            "interval": 5,
        }
        self.device_code_status = 200
        self.token_responses: List[Any] = []
        self.user: Any = {"login": "octocat", "id": 1, "name": "The Octocat", "email": None}
        self.requests: List[httpx.Request] = []

    def queue(self, *responses: Any) -> None:
        self.token_responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/login/device/code":
            return httpx.Response(self.device_code_status, json=self.device_code_payload)

        if path == "/login/oauth/access_token":
            item = self.token_responses.pop(0) if self.token_responses else dict(PENDING)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json=item)

        if path == "/user":
            if isinstance(self.user, httpx.Response):
                return self.user
            return httpx.Response(200, json=self.user)

        return httpx.Response(404, json={"message": "Not Found"})

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def github_provider(fake_github) -> GitHubDeviceProvider:
    """Real provider client talking to the fake GitHub"""
    return GitHubDeviceProvider(
        client_id="test-github-client-id",
        client_secret="test-github-client-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler)),
    )


@pytest.fixture
def clients_file(tmp_path):
    path = tmp_path / "registered_clients.json"
    path.write_text(json.dumps({TEST_CLIENT_ID: {"client_id": TEST_CLIENT_ID, "client_name": "Test Client"}}))
    return path


@pytest.fixture
def clients_store(clients_file) -> RegisteredClientStore:
    store = RegisteredClientStore(clients_file)
    store.load()
    return store


@pytest.fixture
def engine(scripted_provider, clients_store, clock) -> ServerAuthorizationEngine:
    """Engine over the scripted provider and a manual clock"""
    return ServerAuthorizationEngine(
        provider=scripted_provider,
        clients=clients_store,
        session_token_ttl=3600,
        temp_code_ttl=60,
        clock=clock,
    )


@pytest.fixture
def auth_app(github_provider, clients_store):
    """FastAPI app wired to the fake GitHub and a temporary clients file."""
    from headless_auth.server import create_app

    return create_app(provider=github_provider, clients=clients_store)


@pytest.fixture
def test_client(auth_app) -> Generator[TestClient, None, None]:
    with TestClient(auth_app) as client:
        yield client


def start_device_flow(client: TestClient, client_id: str = TEST_CLIENT_ID) -> Dict[str, Any]:
    response = client.post("/auth/device/authorize", json={"client_id": client_id})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def device_flow_starter():
    return start_device_flow



@pytest.fixture
def github_responses() -> SimpleNamespace:
    """Token endpoint bodies as GitHub returns them"""
    return SimpleNamespace(pending=dict(PENDING), slow_down=dict(SLOW_DOWN), token=dict(GITHUB_TOKEN))
