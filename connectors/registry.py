"""
ConnectorRegistry — the immutable set of connector descriptors.

Built once at startup by ``build_default_registry`` and handed explicitly
to the lifecycle manager, cache preloader, chat service and routes.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config.settings import Settings
from connectors.base import CLIENT_FIELDS, ConfigField, ConnectorDescriptor, OAuthFlow, PreloadSpec
from connectors.errors import ConnectorNotFoundError
from connectors.google import (
    GmailClient,
    GoogleCalendarClient,
    GoogleDocsClient,
    GoogleDriveClient,
    GoogleSheetsClient,
)
from connectors.outlook import OutlookClient
from connectors.yahoo import YahooMailClient
from tools.google_tools import (
    build_gmail_tools,
    build_google_calendar_tools,
    build_google_docs_tools,
    build_google_drive_tools,
    build_google_sheets_tools,
    fetch_gmail_labels,
    fetch_recent_documents,
    fetch_recent_files,
    fetch_recent_spreadsheets,
    fetch_upcoming_events,
)
from tools.outlook_tools import build_outlook_tools, fetch_outlook_folders
from tools.yahoo_tools import build_yahoo_tools

logger = logging.getLogger(__name__)

# cache lifetimes (seconds)
TTL_SHORT = 5 * 60
TTL_MEDIUM = 15 * 60
TTL_LONG = 60 * 60

# ── Provider endpoints ───────────────────────────────────────────────────

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_AUTH_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/authorize"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
YAHOO_AUTH_URL = "https://api.login.yahoo.com/oauth2/request_auth"
YAHOO_TOKEN_URL = "https://api.login.yahoo.com/oauth2/get_token"

_GOOGLE_SCOPE = "https://www.googleapis.com/auth/"
_GRAPH_SCOPE = "https://graph.microsoft.com/"


def _google_flow(*scopes: str) -> OAuthFlow:
    return OAuthFlow(
        authorize_url=GOOGLE_AUTH_URL,
        token_url=GOOGLE_TOKEN_URL,
        scopes=tuple(_GOOGLE_SCOPE + s for s in scopes),
        provider_family="google",
        # offline + consent so Google always returns a refresh token
        authorize_params=(("access_type", "offline"), ("prompt", "consent")),
    )


_OUTLOOK_SCOPES = (
    _GRAPH_SCOPE + "Mail.Read",
    _GRAPH_SCOPE + "Calendars.Read",
    "offline_access",
)

_GOOGLE_HELP = "Create in Google Cloud Console > APIs & Services > Credentials"
_GOOGLE_FIELDS: Tuple[ConfigField, ...] = (
    ConfigField("client_id", "Client ID", help_text=_GOOGLE_HELP),
    ConfigField("client_secret", "Client Secret", type="password"),
)


class ConnectorRegistry:
    """Read-only mapping of connector type → descriptor."""

    def __init__(self, descriptors: Iterable[ConnectorDescriptor]):
        entries: Dict[str, ConnectorDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.type in entries:
                raise ValueError(f"Duplicate connector type: {descriptor.type}")
            entries[descriptor.type] = descriptor
        self._descriptors = MappingProxyType(entries)

    def get(self, connector_type: str) -> Optional[ConnectorDescriptor]:
        return self._descriptors.get(connector_type)

    def require(self, connector_type: str) -> ConnectorDescriptor:
        descriptor = self._descriptors.get(connector_type)
        if descriptor is None:
            raise ConnectorNotFoundError(f"Unknown connector type: {connector_type}")
        return descriptor

    def types(self) -> List[str]:
        return list(self._descriptors)

    def all(self) -> List[ConnectorDescriptor]:
        return list(self._descriptors.values())

    def list_metadata(self) -> List[Dict[str, Any]]:
        return [d.metadata() for d in self._descriptors.values()]

    def __contains__(self, connector_type: object) -> bool:
        return connector_type in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


def build_default_registry(settings: Settings) -> ConnectorRegistry:
    """Register every supported connector, applying settings TTL overrides."""

    def ttl(connector_type: str, default: int) -> int:
        return int(settings.cache_ttl_overrides.get(connector_type, default))

    descriptors = [
        ConnectorDescriptor(
            type="gmail",
            display_name="Gmail",
            description="Search and read emails from Gmail",
            flow=_google_flow("gmail.readonly"),
            client_factory=GmailClient,
            tools_factory=build_gmail_tools,
            preload=(PreloadSpec("labels", fetch_gmail_labels),),
            config_fields=_GOOGLE_FIELDS,
            cache_ttl=ttl("gmail", TTL_LONG),
        ),
        ConnectorDescriptor(
            type="google-drive",
            display_name="Google Drive",
            description="List, search, and read files from Google Drive",
            flow=_google_flow("drive.readonly", "drive.metadata.readonly"),
            client_factory=GoogleDriveClient,
            tools_factory=build_google_drive_tools,
            preload=(PreloadSpec("recent", fetch_recent_files),),
            config_fields=_GOOGLE_FIELDS,
            cache_ttl=ttl("google-drive", TTL_MEDIUM),
        ),
        ConnectorDescriptor(
            type="google-docs",
            display_name="Google Docs",
            description="Read and search Google Docs documents",
            flow=_google_flow("documents.readonly", "drive.readonly"),
            client_factory=GoogleDocsClient,
            tools_factory=build_google_docs_tools,
            preload=(PreloadSpec("recent", fetch_recent_documents),),
            config_fields=_GOOGLE_FIELDS,
            cache_ttl=ttl("google-docs", TTL_MEDIUM),
        ),
        ConnectorDescriptor(
            type="google-sheets",
            display_name="Google Sheets",
            description="Read data from Google Sheets spreadsheets",
            flow=_google_flow("spreadsheets.readonly", "drive.readonly"),
            client_factory=GoogleSheetsClient,
            tools_factory=build_google_sheets_tools,
            preload=(PreloadSpec("recent", fetch_recent_spreadsheets),),
            config_fields=_GOOGLE_FIELDS,
            cache_ttl=ttl("google-sheets", TTL_MEDIUM),
        ),
        ConnectorDescriptor(
            type="google-calendar",
            display_name="Google Calendar",
            description="View calendar events and check availability",
            flow=_google_flow("calendar.readonly", "calendar.events.readonly"),
            client_factory=GoogleCalendarClient,
            tools_factory=build_google_calendar_tools,
            preload=(PreloadSpec("events", fetch_upcoming_events),),
            config_fields=_GOOGLE_FIELDS,
            cache_ttl=ttl("google-calendar", TTL_SHORT),
        ),
        ConnectorDescriptor(
            type="outlook",
            display_name="Outlook",
            description="Search emails and calendar events",
            flow=OAuthFlow(
                authorize_url=MICROSOFT_AUTH_URL,
                token_url=MICROSOFT_TOKEN_URL,
                scopes=_OUTLOOK_SCOPES,
                provider_family="microsoft",
                # the v2.0 token endpoint wants the scope echoed back
                token_params=(("scope", " ".join(_OUTLOOK_SCOPES)),),
                extra_fields=("tenant_id",),
            ),
            client_factory=OutlookClient,
            tools_factory=build_outlook_tools,
            preload=(PreloadSpec("folders", fetch_outlook_folders),),
            config_fields=CLIENT_FIELDS + (
                ConfigField("tenant_id", "Tenant ID", help_text="Azure AD tenant ID, or 'common'"),
            ),
            cache_ttl=ttl("outlook", TTL_LONG),
        ),
        ConnectorDescriptor(
            type="yahoo",
            display_name="Yahoo Mail",
            description="Search and read emails from Yahoo Mail",
            flow=OAuthFlow(
                authorize_url=YAHOO_AUTH_URL,
                token_url=YAHOO_TOKEN_URL,
                scopes=("mail-r",),
                provider_family="yahoo",
                use_basic_auth=True,
            ),
            client_factory=YahooMailClient,
            tools_factory=build_yahoo_tools,
            preload=(PreloadSpec("folders", YahooMailClient.list_folders),),
            config_fields=CLIENT_FIELDS + (
                ConfigField("email", "Yahoo email address", type="email", help_text="Used as the IMAP login"),
            ),
            cache_ttl=ttl("yahoo", TTL_LONG),
        ),
    ]
    registry = ConnectorRegistry(descriptors)
    logger.info("Connector registry built: %s", ", ".join(registry.types()))
    return registry
