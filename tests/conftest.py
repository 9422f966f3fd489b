"""Pytest configuration and shared fixtures."""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Union

import httpx
import pytest

from xero_accounting.cache import CacheManager
from xero_accounting.config.settings import Settings
from xero_accounting.xero.client import XeroClient

API_PREFIX = "/api.xro/2.0"

Payload = Union[Any, Callable[[httpx.Request], Any]]


class FakeClock:
    """Controllable replacement for datetime.now."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeXeroAPI:
    """Serves canned Xero responses through httpx.MockTransport and records requests.

    The token endpoint and /connections are always available; API routes are
    registered per test with add(). Unregistered routes answer 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], tuple[int, Payload]] = {}
        self.connections: list[dict[str, Any]] = [
            {"id": "conn-1", "tenantId": "tenant-1", "tenantName": "Demo Company", "tenantType": "ORGANISATION"},
        ]
        self.token_status = 200
        self.token_payload: dict[str, Any] = {
            "access_token": "token-abc",
            "expires_in": 1800,
            "token_type": "Bearer",
        }

    def add(self, method: str, path: str, payload: Payload, status: int = 200) -> None:
        self.routes[(method, path)] = (status, payload)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        if not path.startswith("/connect") and path != "/connections":
            path = API_PREFIX + path
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/connect/token":
            return httpx.Response(self.token_status, json=self.token_payload)
        if path == "/connections":
            return httpx.Response(200, json=self.connections)

        key = (request.method, path[len(API_PREFIX):])
        if key not in self.routes:
            return httpx.Response(404, json={"Message": f"No route for {path}"})

        status, payload = self.routes[key]
        if callable(payload):
            payload = payload(request)
        return httpx.Response(status, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock) -> CacheManager:
    return CacheManager("test-ns", default_ttl=60, clock=clock)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "cache.db"


@pytest.fixture
def persistent_cache(db_path, clock) -> CacheManager:
    return CacheManager("test-ns", default_ttl=60, db_path=db_path, clock=clock)


@pytest.fixture
def test_settings(tmp_path: Path, monkeypatch) -> Settings:
    """Settings isolated from the environment, .env and the user's home."""
    # No stray ./config.json may supply credentials
    monkeypatch.chdir(tmp_path)
    return Settings(
        _env_file=None,
        xero_client_id="client-id",
        xero_client_secret="client-secret",
        xero_config_path=None,
        tenant_id_path=tmp_path / "tenant-id.txt",
        cache_enabled=True,
        cache_persist=False,
        cache_path=tmp_path / "cache.db",
    )


@pytest.fixture
def xero_api() -> FakeXeroAPI:
    return FakeXeroAPI()


@pytest.fixture
def xero_client(test_settings, memory_cache, xero_api) -> XeroClient:
    return XeroClient(test_settings, memory_cache, transport=xero_api.transport)
