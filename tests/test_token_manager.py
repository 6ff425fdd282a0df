"""
Tests for the OAuth lifecycle manager: authorize, callback, refresh and
config CRUD.  The provider token endpoint is an ``httpx.MockTransport``.
"""

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from connectors.errors import (
    AuthorizationError,
    ConfigurationError,
    ConnectorNotFoundError,
    TokenExchangeError,
)
from connectors.models import STATUS_CONNECTED, STATUS_DISCONNECTED, ConnectorConfig
from connectors.token_manager import MASKED_VALUE, OAuthLifecycleManager


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _seed(store, vault, connector_type, values, **kwargs):
    store.rows[connector_type] = ConnectorConfig(
        type=connector_type,
        name=connector_type,
        encrypted_blob=vault.encrypt_json(values),
        **kwargs,
    )


def _expiry(seconds: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def _stored(store, vault, connector_type) -> dict:
    return vault.decrypt_json(store.rows[connector_type].encrypted_blob)


class TestBeginAuthorization:
    @pytest.mark.asyncio
    async def test_google_authorization_url(self, manager):
        url = await manager.begin_authorization("gmail")

        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        params = _query(url)
        assert params["client_id"] == "google-id"
        assert params["redirect_uri"] == "http://api.test/auth/gmail/callback"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert "gmail.readonly" in params["scope"]
        assert len(manager.states) == 1

    @pytest.mark.asyncio
    async def test_missing_client_credentials_redirects_with_error(self, manager):
        url = await manager.begin_authorization("outlook")

        assert url.startswith("http://app.test/settings/connectors?error=")
        assert "client ID and client secret" in _query(url)["error"]
        assert len(manager.states) == 0

    @pytest.mark.asyncio
    async def test_unknown_connector(self, manager):
        url = await manager.begin_authorization("myspace")
        assert _query(url)["error"] == "Unknown connector type: myspace"

    @pytest.mark.asyncio
    async def test_extended_stores_tenant_before_redirect(
        self, registry, store, vault, token_endpoint, settings_factory
    ):
        manager = OAuthLifecycleManager(
            registry=registry,
            store=store,
            vault=vault,
            settings=settings_factory(microsoft_client_id="ms-id", microsoft_client_secret="ms-secret"),
            http_client_factory=token_endpoint.client_factory(),
        )

        url = await manager.begin_authorization_extended(
            "outlook", {"tenant_id": "contoso", "ignored": "x"}
        )

        assert url.startswith("https://login.microsoftonline.com/contoso/oauth2/v2.0/authorize?")
        assert _stored(store, vault, "outlook") == {"tenant_id": "contoso"}
        assert store.rows["outlook"].enabled is True


class TestCompleteAuthorization:
    @pytest.mark.asyncio
    async def test_success_persists_tokens_once(self, manager, store, vault, token_endpoint):
        state = _query(await manager.begin_authorization("gmail"))["state"]

        url = await manager.complete_authorization("gmail", {"code": "c0de", "state": state})

        assert _query(url) == {"success": "Gmail connected successfully"}
        assert store.writes == 1
        row = store.rows["gmail"]
        assert row.enabled is True
        assert row.status == STATUS_CONNECTED
        assert row.last_healthy_at is not None
        values = _stored(store, vault, "gmail")
        assert values["refresh_token"] == "refresh-1"
        assert values["access_token"] == "access-1"
        assert values["access_token_expires_at"]

        form = token_endpoint.form()
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "c0de"
        assert form["client_id"] == "google-id"
        assert form["redirect_uri"] == "http://api.test/auth/gmail/callback"

    @pytest.mark.asyncio
    async def test_replayed_state_is_rejected(self, manager, store, token_endpoint):
        state = _query(await manager.begin_authorization("gmail"))["state"]
        await manager.complete_authorization("gmail", {"code": "c0de", "state": state})

        url = await manager.complete_authorization("gmail", {"code": "c0de", "state": state})

        assert _query(url)["error"] == "Invalid or expired OAuth state"
        assert store.writes == 1
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_provider_error_writes_nothing(self, manager, store, token_endpoint):
        state = _query(await manager.begin_authorization("gmail"))["state"]

        url = await manager.complete_authorization(
            "gmail", {"error": "access_denied", "state": state}
        )

        assert _query(url)["error"] == "access_denied"
        assert store.writes == 0
        assert token_endpoint.requests == []
        assert len(manager.states) == 0

    @pytest.mark.asyncio
    async def test_missing_code(self, manager, store):
        url = await manager.complete_authorization("gmail", {"state": "whatever"})
        assert _query(url)["error"] == "No authorization code received"
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_state_for_other_connector_is_rejected(self, manager, store):
        state = _query(await manager.begin_authorization("gmail"))["state"]
        url = await manager.complete_authorization("google-drive", {"code": "c", "state": state})
        assert _query(url)["error"] == "Invalid or expired OAuth state"
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_token_endpoint_failure(self, manager, store, token_endpoint):
        token_endpoint.status_code = 400
        token_endpoint.payload = {"error": "invalid_grant", "error_description": "Bad code"}
        state = _query(await manager.begin_authorization("gmail"))["state"]

        url = await manager.complete_authorization("gmail", {"code": "bad", "state": state})

        assert "Bad code" in _query(url)["error"]
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_yahoo_uses_basic_auth(self, manager, token_endpoint):
        state = _query(await manager.begin_authorization("yahoo"))["state"]

        await manager.complete_authorization("yahoo", {"code": "y", "state": state})

        request = token_endpoint.requests[-1]
        expected = base64.b64encode(b"yahoo-id:yahoo-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        form = token_endpoint.form()
        assert "client_secret" not in form
        assert "client_id" not in form


class TestTokens:
    @pytest.mark.asyncio
    async def test_refresh_without_stored_config(self, manager, token_endpoint):
        with pytest.raises(ConnectorNotFoundError, match="Gmail connector not found"):
            await manager.refresh("gmail")
        assert token_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_fresh_token_needs_no_request(self, manager, store, vault, token_endpoint):
        _seed(store, vault, "gmail", {
            "access_token": "still-good",
            "access_token_expires_at": _expiry(3600),
            "refresh_token": "r",
        })

        assert await manager.get_access_token("gmail") == "still-good"
        assert token_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_stale_token_is_refreshed(self, manager, store, vault, token_endpoint):
        _seed(store, vault, "gmail", {
            "access_token": "old",
            "access_token_expires_at": _expiry(30),
            "refresh_token": "r",
        })
        token_endpoint.payload = {"access_token": "new", "expires_in": 3600}

        assert await manager.get_access_token("gmail") == "new"

        values = _stored(store, vault, "gmail")
        assert values["access_token"] == "new"
        # provider omitted the refresh token; the stored one survives
        assert values["refresh_token"] == "r"
        assert token_endpoint.form()["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_kept(self, manager, store, vault, token_endpoint):
        _seed(store, vault, "outlook", {"tenant_id": "t", "client_id": "i", "client_secret": "s", "refresh_token": "r1"})
        token_endpoint.payload = {"access_token": "a", "refresh_token": "r2", "expires_in": 60}

        await manager.refresh("outlook")

        assert _stored(store, vault, "outlook")["refresh_token"] == "r2"
        assert "scope" in token_endpoint.form()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, manager, store, vault, token_endpoint):
        _seed(store, vault, "gmail", {"refresh_token": "r"})

        tokens = await asyncio.gather(*(manager.get_access_token("gmail") for _ in range(5)))

        assert set(tokens) == {"access-1"}
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_not_authorized(self, manager, store, vault):
        _seed(store, vault, "gmail", {"client_id": "x"})
        with pytest.raises(AuthorizationError, match="/auth/gmail"):
            await manager.get_access_token("gmail")

    @pytest.mark.asyncio
    async def test_refresh_failure_disconnects_but_keeps_credentials(self, manager, store, vault, token_endpoint):
        _seed(store, vault, "gmail", {"refresh_token": "revoked"}, status=STATUS_CONNECTED)
        token_endpoint.status_code = 400
        token_endpoint.payload = {"error": "invalid_grant"}

        with pytest.raises(TokenExchangeError):
            await manager.refresh("gmail")

        row = store.rows["gmail"]
        assert row.status == STATUS_DISCONNECTED
        assert row.error_message.startswith("Refresh failed:")
        assert _stored(store, vault, "gmail") == {"refresh_token": "revoked"}
        assert await manager.healthy_connectors() == []

    @pytest.mark.asyncio
    async def test_successful_connection_test_restores_status(self, manager, store, vault):
        _seed(store, vault, "gmail", {"refresh_token": "r"}, status=STATUS_DISCONNECTED, error_message="Refresh failed: x")
        client = MagicMock()
        client.test_connection = AsyncMock(return_value=None)
        manager.build_client = AsyncMock(return_value=client)

        assert await manager.test_connection("gmail") == {"success": True}

        row = store.rows["gmail"]
        assert row.status == STATUS_CONNECTED
        assert row.error_message is None
        assert row.last_healthy_at is not None

    @pytest.mark.asyncio
    async def test_failed_connection_test_reports_error(self, manager):
        result = await manager.test_connection("gmail")
        assert result["success"] is False
        assert "Gmail connector not found" in result["error"]


class TestConfigCrud:
    @pytest.mark.asyncio
    async def test_masked_value_keeps_stored_secret(self, manager, store, vault):
        await manager.save_config("gmail", {"client_id": "cid", "client_secret": "top-secret"})
        await manager.save_config("gmail", {"client_id": "cid2", "client_secret": MASKED_VALUE})

        values = _stored(store, vault, "gmail")
        assert values == {"client_id": "cid2", "client_secret": "top-secret"}

    @pytest.mark.asyncio
    async def test_tokens_are_not_settable(self, manager, store, vault):
        await manager.save_config("gmail", {"refresh_token": "injected"})
        assert "refresh_token" not in _stored(store, vault, "gmail")

    @pytest.mark.asyncio
    async def test_required_field_missing(self, manager, store):
        with pytest.raises(ConfigurationError, match="Tenant ID is required"):
            await manager.save_config("outlook", {"client_id": "a", "client_secret": "b"})
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_describe_masks_secrets(self, manager, store, vault):
        _seed(store, vault, "gmail", {"client_id": "cid", "client_secret": "s", "refresh_token": "r"})

        detail = await manager.describe("gmail")

        assert detail["configured"] is True
        assert detail["authorized"] is True
        assert detail["config"] == {"client_id": "cid", "client_secret": MASKED_VALUE}
        assert detail["auth_route"] == "/auth/gmail"

    @pytest.mark.asyncio
    async def test_list_connectors_covers_registry(self, manager, registry):
        listing = await manager.list_connectors()
        assert [c["type"] for c in listing] == registry.types()
        assert all(c["configured"] is False for c in listing)

    @pytest.mark.asyncio
    async def test_enable_toggle_and_delete(self, manager, store):
        await manager.save_config("gmail", {}, enabled=False)
        assert store.rows["gmail"].enabled is False
        assert await manager.healthy_connectors() == []

        assert await manager.delete_config("gmail") is True
        assert await manager.delete_config("gmail") is False
