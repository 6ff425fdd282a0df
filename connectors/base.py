"""
Connector building blocks.

Per-provider OAuth differences are carried as data on an ``OAuthFlow``
(token endpoint, basic-auth switch, extra params / fields) so a single
lifecycle manager drives every provider.  A ``ConnectorDescriptor`` bundles
that flow with the connector's API client factory, tool factory, preload
keys and cache TTL.

API clients share ``BaseConnectorClient``: it owns the bearer-token lookup
and httpx error mapping, and each subclass adds the provider's calls plus a
``test_connection`` health check.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)
from urllib.parse import urlencode

import httpx

from connectors.errors import ConfigurationError, UpstreamAPIError

if TYPE_CHECKING:
    from cache.engine import ConnectorCache
    from tools import ToolDefinition

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]
HttpClientFactory = Callable[..., httpx.AsyncClient]


# ── OAuth flow strategy ──────────────────────────────────────────────────


@dataclass(frozen=True)
class OAuthFlow:
    """Data-only description of one provider's authorization-code flow."""

    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    provider_family: str
    use_basic_auth: bool = False
    authorize_params: Tuple[Tuple[str, str], ...] = ()
    token_params: Tuple[Tuple[str, str], ...] = ()
    extra_fields: Tuple[str, ...] = ()   # pre-registration fields, e.g. tenant_id

    def _resolve(self, template: str, values: Mapping[str, Any]) -> str:
        missing = [f for f in self.extra_fields if not values.get(f)]
        if missing:
            raise ConfigurationError(f"Missing required field(s): {', '.join(missing)}")
        return template.format(**{f: values[f] for f in self.extra_fields})

    def resolved_token_url(self, values: Mapping[str, Any]) -> str:
        return self._resolve(self.token_url, values)

    def build_authorization_url(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        state: str,
        values: Mapping[str, Any],
    ) -> str:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            **dict(self.authorize_params),
        }
        return f"{self._resolve(self.authorize_url, values)}?{urlencode(params)}"

    def build_token_request(
        self,
        grant: Dict[str, str],
        *,
        client_id: str,
        client_secret: str,
    ) -> Tuple[Dict[str, str], Optional[httpx.BasicAuth]]:
        """
        Return the (form body, auth) pair for a token-endpoint POST.

        With ``use_basic_auth`` the client credentials travel in the
        Authorization header instead of the body.
        """
        data = {**grant, **dict(self.token_params)}
        if self.use_basic_auth:
            return data, httpx.BasicAuth(client_id, client_secret)
        data["client_id"] = client_id
        data["client_secret"] = client_secret
        return data, None


# ── Descriptor ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    type: str = "text"          # "text" | "password" | "email"
    required: bool = True
    help_text: str = ""

    @property
    def is_secret(self) -> bool:
        return self.type == "password"


CLIENT_FIELDS: Tuple[ConfigField, ...] = (
    ConfigField("client_id", "Client ID"),
    ConfigField("client_secret", "Client Secret", type="password"),
)


@dataclass(frozen=True)
class PreloadSpec:
    key: str
    fetch: Callable[["BaseConnectorClient"], Awaitable[Any]]


@dataclass(frozen=True)
class ConnectorDescriptor:
    type: str
    display_name: str
    description: str
    flow: OAuthFlow
    client_factory: Callable[..., "BaseConnectorClient"]
    tools_factory: Callable[["BaseConnectorClient", "ConnectorCache"], List["ToolDefinition"]]
    preload: Tuple[PreloadSpec, ...] = ()
    config_fields: Tuple[ConfigField, ...] = CLIENT_FIELDS
    cache_ttl: Optional[int] = None

    def metadata(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.display_name,
            "description": self.description,
            "auth_route": f"/auth/{self.type}",
            "config_fields": [
                {
                    "key": f.key,
                    "label": f.label,
                    "type": f.type,
                    "required": f.required,
                    "help_text": f.help_text,
                }
                for f in self.config_fields
            ],
        }


# ── API client base ──────────────────────────────────────────────────────


class BaseConnectorClient(ABC):
    """Shared plumbing for provider API clients. Clients never cache."""

    error_prefix: str = "Provider API error"

    def __init__(
        self,
        token_provider: TokenProvider,
        config: Mapping[str, Any] | None = None,
        *,
        http_client_factory: HttpClientFactory = httpx.AsyncClient,
        timeout: float = 20.0,
    ):
        self._token_provider = token_provider
        self.config = dict(config or {})
        self._http_client_factory = http_client_factory
        self._timeout = timeout

    async def _access_token(self) -> str:
        return await self._token_provider()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        try:
            async with self._http_client_factory(timeout=self._timeout) as client:
                resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamAPIError(f"{self.error_prefix}: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamAPIError(
                f"{self.error_prefix} ({resp.status_code}): {resp.text[:500]}",
                status_code=resp.status_code,
            )
        return resp

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        resp = await self._request("GET", url, **kwargs)
        return resp.json()

    async def _get_text(self, url: str, **kwargs: Any) -> str:
        resp = await self._request("GET", url, **kwargs)
        return resp.text

    @abstractmethod
    async def test_connection(self) -> None:
        """Cheapest authenticated call; raises on failure."""
        ...
