"""
OAuth lifecycle manager — authorize / callback / refresh / store connector
credentials.

This is the single writer of connector configs.  Every read-modify-write of
a connector's encrypted blob happens under that connector type's
``asyncio.Lock`` so a rotated refresh token is never lost to a concurrent
write, and no failure path ever commits a partially updated blob.

State per connector::

    Unconfigured → AuthorizationRequested → TokenExchangePending
                 → Connected ⇄ (Refreshing) → Connected | Disconnected(error)

A refresh failure marks the connector ``disconnected`` but keeps its stored
credentials; a fresh authorization (or a successful connection test) brings
it back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx

from config.settings import Settings
from connectors.base import BaseConnectorClient, ConnectorDescriptor, HttpClientFactory
from connectors.encryption import CredentialVault
from connectors.errors import (
    AuthorizationError,
    ConfigurationError,
    ConnectorError,
    ConnectorNotFoundError,
    IntegrityError,
    TokenExchangeError,
)
from connectors.models import (
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    STATUS_PENDING,
    ConnectorConfig,
    TokenSet,
)
from connectors.oauth_state import AuthorizationStateStore
from connectors.registry import ConnectorRegistry
from connectors.store import ConnectorStore

logger = logging.getLogger(__name__)

MASKED_VALUE = "••••••••"
# refresh a little early so a token never expires mid-request
_EXPIRY_BUFFER = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or body)[:300]
    return str(body)[:300]


class OAuthLifecycleManager:
    """Generic, data-driven OAuth2 manager for every registered connector."""

    def __init__(
        self,
        *,
        registry: ConnectorRegistry,
        store: ConnectorStore,
        vault: CredentialVault,
        settings: Settings,
        state_store: AuthorizationStateStore | None = None,
        http_client_factory: HttpClientFactory = httpx.AsyncClient,
    ):
        self.registry = registry
        self.store = store
        self.vault = vault
        self.settings = settings
        self.states = state_store or AuthorizationStateStore(ttl=settings.oauth_state_ttl_seconds)
        self._http_client_factory = http_client_factory
        self._locks: Dict[str, asyncio.Lock] = {}

    # ── Helpers ─────────────────────────────────────────────────────────

    def _lock(self, connector_type: str) -> asyncio.Lock:
        return self._locks.setdefault(connector_type, asyncio.Lock())

    def redirect_uri(self, connector_type: str) -> str:
        return f"{self.settings.oauth_redirect_base.rstrip('/')}/auth/{connector_type}/callback"

    def settings_redirect(self, *, success: str | None = None, error: str | None = None) -> str:
        params = {"success": success} if success is not None else {"error": error or "Unknown error"}
        return f"{self.settings.settings_redirect_url()}?{urlencode(params, quote_via=quote)}"

    async def _load(
        self,
        connector_type: str,
        *,
        allow_missing: bool = False,
    ) -> Tuple[ConnectorDescriptor, Optional[ConnectorConfig], Dict[str, Any]]:
        descriptor = self.registry.require(connector_type)
        cfg = await self.store.get(connector_type)
        if cfg is None:
            if allow_missing:
                return descriptor, None, {}
            raise ConnectorNotFoundError(f"{descriptor.display_name} connector not found")
        values = self.vault.decrypt_json(cfg.encrypted_blob)
        if not isinstance(values, dict):
            raise IntegrityError(f"{descriptor.display_name} config is not an object")
        return descriptor, cfg, values

    def _client_credentials(
        self, descriptor: ConnectorDescriptor, values: Mapping[str, Any]
    ) -> Tuple[str, str]:
        env_id, env_secret = self.settings.client_credentials(descriptor.flow.provider_family)
        client_id = values.get("client_id") or env_id
        client_secret = values.get("client_secret") or env_secret
        if not client_id or not client_secret:
            raise ConfigurationError(
                f"{descriptor.display_name} client ID and client secret are not configured"
            )
        return client_id, client_secret

    async def _token_request(
        self,
        descriptor: ConnectorDescriptor,
        values: Mapping[str, Any],
        grant: Dict[str, str],
    ) -> TokenSet:
        client_id, client_secret = self._client_credentials(descriptor, values)
        flow = descriptor.flow
        url = flow.resolved_token_url(values)
        data, auth = flow.build_token_request(grant, client_id=client_id, client_secret=client_secret)
        action = "refresh token" if grant.get("grant_type") == "refresh_token" else "exchange code for token"

        try:
            async with self._http_client_factory(timeout=self.settings.provider_timeout_seconds) as client:
                resp = await client.post(
                    url,
                    data=data,
                    auth=auth,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Failed to {action}: {exc}") from exc

        if resp.status_code >= 400:
            raise TokenExchangeError(
                f"Failed to {action} ({resp.status_code}): {_error_detail(resp)}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TokenExchangeError(f"Failed to {action}: malformed token response") from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenExchangeError(f"Failed to {action}: token response has no access_token")

        expires_at = None
        if payload.get("expires_in") is not None:
            try:
                expires_at = _utcnow() + timedelta(seconds=int(payload["expires_in"]))
            except (TypeError, ValueError) as exc:
                raise TokenExchangeError(f"Failed to {action}: bad expires_in") from exc

        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            scope=payload.get("scope"),
        )

    @staticmethod
    def _fold_tokens(values: Mapping[str, Any], tokens: TokenSet) -> Dict[str, Any]:
        merged = dict(values)
        merged["access_token"] = tokens.access_token
        merged["access_token_expires_at"] = tokens.expires_at.isoformat() if tokens.expires_at else None
        # some providers rotate refresh tokens, others omit them on refresh
        if tokens.refresh_token:
            merged["refresh_token"] = tokens.refresh_token
        if tokens.scope:
            merged["scope"] = tokens.scope
        return merged

    @staticmethod
    def _fresh_access_token(values: Mapping[str, Any]) -> Optional[str]:
        token = values.get("access_token")
        raw_expiry = values.get("access_token_expires_at")
        if not token or not raw_expiry:
            return None
        try:
            expires_at = datetime.fromisoformat(raw_expiry)
        except (TypeError, ValueError):
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return token if expires_at - _EXPIRY_BUFFER > _utcnow() else None

    # ── Authorization: init ─────────────────────────────────────────────

    async def begin_authorization(self, connector_type: str) -> str:
        """
        Return the provider authorization URL, or a settings-page redirect
        carrying ``?error=`` when the connector cannot be authorized.
        """
        state = None
        try:
            descriptor, _, values = await self._load(connector_type, allow_missing=True)
            client_id, _ = self._client_credentials(descriptor, values)
            state = self.states.issue(connector_type)
            url = descriptor.flow.build_authorization_url(
                client_id=client_id,
                redirect_uri=self.redirect_uri(connector_type),
                state=state.nonce,
                values=values,
            )
        except ConnectorError as exc:
            if state is not None:
                self.states.discard(state.nonce)
            logger.warning("OAuth init failed for %s: %s", connector_type, exc)
            return self.settings_redirect(error=str(exc))

        logger.info("OAuth authorization requested for %s", connector_type)
        return url

    async def begin_authorization_extended(
        self,
        connector_type: str,
        extra: Mapping[str, Any],
    ) -> str:
        """
        Merge the flow's pre-registration fields (e.g. ``tenant_id``) into
        the persisted config, then continue with :meth:`begin_authorization`.
        """
        try:
            descriptor = self.registry.require(connector_type)
            fields = {
                k: str(v).strip()
                for k, v in extra.items()
                if k in descriptor.flow.extra_fields and v
            }
            if fields:
                async with self._lock(connector_type):
                    _, cfg, values = await self._load(connector_type, allow_missing=True)
                    values.update(fields)
                    await self.store.save(
                        ConnectorConfig(
                            type=connector_type,
                            name=descriptor.display_name,
                            encrypted_blob=self.vault.encrypt_json(values),
                            enabled=cfg.enabled if cfg else True,
                            status=cfg.status if cfg else STATUS_PENDING,
                            error_message=cfg.error_message if cfg else None,
                            last_healthy_at=cfg.last_healthy_at if cfg else None,
                        )
                    )
                logger.info("Stored %s for %s before authorization", sorted(fields), connector_type)
        except ConnectorError as exc:
            logger.warning("OAuth init failed for %s: %s", connector_type, exc)
            return self.settings_redirect(error=str(exc))

        return await self.begin_authorization(connector_type)

    # ── Authorization: callback ─────────────────────────────────────────

    async def complete_authorization(self, connector_type: str, query: Mapping[str, Any]) -> str:
        """
        Handle the provider redirect and return the settings-page URL to
        send the browser to (``?success=`` or ``?error=``).
        """
        descriptor = self.registry.get(connector_type)
        if descriptor is None:
            return self.settings_redirect(error=f"Unknown connector type: {connector_type}")

        error = query.get("error")
        code = query.get("code")
        state = query.get("state")

        if error:
            self.states.discard(state)
            logger.info("OAuth consent for %s ended with error=%s", connector_type, error)
            return self.settings_redirect(error=query.get("error_description") or error)

        if not code:
            self.states.discard(state)
            return self.settings_redirect(error="No authorization code received")

        if not self.states.consume(state, connector_type):
            exc = AuthorizationError("Invalid or expired OAuth state")
            logger.warning("OAuth callback for %s rejected: %s", connector_type, exc)
            return self.settings_redirect(error=str(exc))

        try:
            async with self._lock(connector_type):
                _, cfg, values = await self._load(connector_type, allow_missing=True)
                tokens = await self._token_request(
                    descriptor,
                    values,
                    {
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.redirect_uri(connector_type),
                    },
                )
                merged = self._fold_tokens(values, tokens)
                await self.store.save(
                    ConnectorConfig(
                        type=connector_type,
                        name=descriptor.display_name,
                        encrypted_blob=self.vault.encrypt_json(merged),
                        enabled=True,
                        status=STATUS_CONNECTED,
                        error_message=None,
                        last_healthy_at=_utcnow(),
                    )
                )
        except ConnectorError as exc:
            logger.error("%s OAuth callback failed: %s", descriptor.display_name, exc)
            return self.settings_redirect(error=str(exc))

        logger.info("OAuth connected: %s", connector_type)
        return self.settings_redirect(success=f"{descriptor.display_name} connected successfully")

    # ── Tokens ──────────────────────────────────────────────────────────

    async def get_access_token(self, connector_type: str) -> str:
        """Return a valid access token, refreshing lazily when it is stale."""
        _, _, values = await self._load(connector_type)
        token = self._fresh_access_token(values)
        if token:
            return token
        tokens = await self._refresh(connector_type, only_if_stale=True)
        return tokens.access_token

    async def refresh(self, connector_type: str) -> TokenSet:
        """Exchange the stored refresh token for a new access token."""
        return await self._refresh(connector_type, only_if_stale=False)

    async def _refresh(self, connector_type: str, *, only_if_stale: bool) -> TokenSet:
        async with self._lock(connector_type):
            descriptor, cfg, values = await self._load(connector_type)
            if cfg is None:
                raise ConnectorNotFoundError(f"{descriptor.display_name} connector not found")

            if only_if_stale:
                # another caller may have refreshed while we waited for the lock
                token = self._fresh_access_token(values)
                if token:
                    return TokenSet(
                        access_token=token,
                        refresh_token=values.get("refresh_token"),
                        expires_at=datetime.fromisoformat(values["access_token_expires_at"]),
                    )

            refresh_token = values.get("refresh_token")
            if not refresh_token:
                raise AuthorizationError(
                    f"{descriptor.display_name} not authorized. "
                    f"Please visit /auth/{connector_type} to complete OAuth setup."
                )

            try:
                tokens = await self._token_request(
                    descriptor,
                    values,
                    {"grant_type": "refresh_token", "refresh_token": refresh_token},
                )
            except TokenExchangeError as exc:
                await self.store.save(
                    replace(cfg, status=STATUS_DISCONNECTED, error_message=f"Refresh failed: {exc}")
                )
                logger.warning("Token refresh failed for %s: %s", connector_type, exc)
                raise

            merged = self._fold_tokens(values, tokens)
            await self.store.save(
                replace(
                    cfg,
                    encrypted_blob=self.vault.encrypt_json(merged),
                    status=STATUS_CONNECTED,
                    error_message=None,
                )
            )
            logger.info("Refreshed %s access token", connector_type)
            return tokens

    # ── Clients / health ────────────────────────────────────────────────

    async def build_client(self, connector_type: str) -> BaseConnectorClient:
        """Instantiate the connector's API client bound to this manager's tokens."""
        descriptor, _, values = await self._load(connector_type)
        public = {
            f.key: values.get(f.key)
            for f in descriptor.config_fields
            if not f.is_secret and values.get(f.key)
        }

        async def token_provider() -> str:
            return await self.get_access_token(connector_type)

        return descriptor.client_factory(
            token_provider,
            public,
            http_client_factory=self._http_client_factory,
            timeout=self.settings.provider_timeout_seconds,
        )

    async def test_connection(self, connector_type: str) -> Dict[str, Any]:
        """Run the connector's health check; on success stamp ``last_healthy_at``."""
        try:
            client = await self.build_client(connector_type)
            await client.test_connection()
        except ConnectorError as exc:
            logger.info("Connection test failed for %s: %s", connector_type, exc)
            return {"success": False, "error": str(exc)}

        async with self._lock(connector_type):
            cfg = await self.store.get(connector_type)
            if cfg is not None:
                await self.store.save(
                    replace(cfg, last_healthy_at=_utcnow(), status=STATUS_CONNECTED, error_message=None)
                )
        return {"success": True}

    async def healthy_connectors(self) -> List[ConnectorConfig]:
        """Enabled connectors whose last refresh did not fail."""
        return [
            c for c in await self.store.list_enabled()
            if c.is_healthy and self.registry.get(c.type) is not None
        ]

    # ── Config CRUD ─────────────────────────────────────────────────────

    async def describe(self, connector_type: str) -> Dict[str, Any]:
        """Metadata plus current config with secret values masked."""
        descriptor = self.registry.require(connector_type)
        cfg = await self.store.get(connector_type)
        masked: Dict[str, str] = {}
        if cfg is not None:
            try:
                values = self.vault.decrypt_json(cfg.encrypted_blob)
            except IntegrityError as exc:
                logger.error("Stored config for %s failed to decrypt: %s", connector_type, exc)
                values = {}
            for f in descriptor.config_fields:
                if values.get(f.key):
                    masked[f.key] = MASKED_VALUE if f.is_secret else values[f.key]
            authorized = bool(values.get("refresh_token"))
        else:
            authorized = False

        return {
            **descriptor.metadata(),
            "configured": cfg is not None,
            "enabled": cfg.enabled if cfg else False,
            "status": cfg.status if cfg else None,
            "authorized": authorized,
            "error_message": cfg.error_message if cfg else None,
            "last_healthy_at": cfg.last_healthy_at.isoformat() if cfg and cfg.last_healthy_at else None,
            "config": masked,
        }

    async def list_connectors(self) -> List[Dict[str, Any]]:
        return [await self.describe(d.type) for d in self.registry.all()]

    async def save_config(
        self,
        connector_type: str,
        values: Mapping[str, Any],
        enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Merge user-entered config fields into the stored config.

        Masked or empty values keep the stored value, so the UI can resubmit
        a form without re-entering secrets.  Tokens are never settable here.
        """
        descriptor = self.registry.require(connector_type)
        async with self._lock(connector_type):
            cfg = await self.store.get(connector_type)
            existing: Dict[str, Any] = {}
            if cfg is not None:
                try:
                    existing = self.vault.decrypt_json(cfg.encrypted_blob)
                except IntegrityError as exc:
                    logger.warning("Replacing undecryptable config for %s: %s", connector_type, exc)

            merged = dict(existing)
            for f in descriptor.config_fields:
                value = values.get(f.key)
                if value is None or value == "" or value == MASKED_VALUE:
                    continue
                merged[f.key] = str(value).strip()

            env_id, env_secret = self.settings.client_credentials(descriptor.flow.provider_family)
            fallbacks = {"client_id": env_id, "client_secret": env_secret}
            for f in descriptor.config_fields:
                if f.required and not (merged.get(f.key) or fallbacks.get(f.key)):
                    raise ConfigurationError(f"{f.label} is required")

            resolved_enabled = enabled if enabled is not None else (cfg.enabled if cfg else True)
            await self.store.save(
                ConnectorConfig(
                    type=connector_type,
                    name=descriptor.display_name,
                    encrypted_blob=self.vault.encrypt_json(merged),
                    enabled=resolved_enabled,
                    status=cfg.status if cfg else STATUS_PENDING,
                    error_message=cfg.error_message if cfg else None,
                    last_healthy_at=cfg.last_healthy_at if cfg else None,
                )
            )

        logger.info("Saved config for %s (enabled=%s)", connector_type, resolved_enabled)
        return {
            "type": connector_type,
            "name": descriptor.display_name,
            "configured": True,
            "enabled": resolved_enabled,
        }

    async def delete_config(self, connector_type: str) -> bool:
        self.registry.require(connector_type)
        async with self._lock(connector_type):
            deleted = await self.store.delete(connector_type)
        if deleted:
            logger.info("Deleted config for %s", connector_type)
        return deleted
