"""
Shared fixtures: an in-memory connector store, a fixed vault key, settings
that never read the environment, and a token endpoint backed by
``httpx.MockTransport``.
"""

import base64
from dataclasses import replace
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from config.settings import Settings
from connectors.encryption import CredentialVault
from connectors.models import ConnectorConfig
from connectors.registry import build_default_registry
from connectors.token_manager import OAuthLifecycleManager
from database.session import build_engine, build_session_factory, create_tables

TEST_KEY = base64.b64encode(b"k" * 32).decode()


class InMemoryConnectorStore:
    """Same async surface as ``ConnectorStore``; counts every write."""

    def __init__(self):
        self.rows: Dict[str, ConnectorConfig] = {}
        self.writes = 0

    async def get(self, connector_type: str) -> Optional[ConnectorConfig]:
        cfg = self.rows.get(connector_type)
        return replace(cfg) if cfg else None

    async def list_all(self) -> List[ConnectorConfig]:
        return [replace(c) for c in self.rows.values()]

    async def list_enabled(self) -> List[ConnectorConfig]:
        return [c for c in await self.list_all() if c.enabled]

    async def save(self, cfg: ConnectorConfig) -> None:
        self.writes += 1
        self.rows[cfg.type] = replace(cfg)

    async def delete(self, connector_type: str) -> bool:
        self.writes += 1
        return self.rows.pop(connector_type, None) is not None


class TokenEndpoint:
    """Scriptable OAuth token endpoint; records every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.payload: Dict = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    def client_factory(self) -> Callable[..., httpx.AsyncClient]:
        transport = httpx.MockTransport(self.handler)
        return lambda **kw: httpx.AsyncClient(transport=transport, **kw)

    def form(self, index: int = -1) -> Dict[str, str]:
        body = self.requests[index].content.decode()
        return dict(httpx.QueryParams(body))


def make_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        encryption_key=TEST_KEY,
        google_client_id="google-id",
        google_client_secret="google-secret",
        yahoo_client_id="yahoo-id",
        yahoo_client_secret="yahoo-secret",
        oauth_redirect_base="http://api.test",
        app_base_url="http://app.test",
        database_url="sqlite+aiosqlite:///:memory:",
        preload_on_startup=False,
        llm_provider="openai",
        openai_api_key="sk-test",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def vault():
    return CredentialVault.from_base64_key(TEST_KEY)


@pytest.fixture
def store():
    return InMemoryConnectorStore()


@pytest.fixture
def registry(settings):
    return build_default_registry(settings)


@pytest.fixture
def token_endpoint():
    return TokenEndpoint()


@pytest.fixture
def manager(registry, store, vault, settings, token_endpoint):
    return OAuthLifecycleManager(
        registry=registry,
        store=store,
        vault=vault,
        settings=settings,
        http_client_factory=token_endpoint.client_factory(),
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()
