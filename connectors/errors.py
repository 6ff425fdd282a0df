"""
Error taxonomy shared by the vault, the OAuth manager, the cache and the
tool loop.

Every error carries a human-readable message that is safe to show in a
redirect or JSON payload (no secrets, no token values).
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for connector-related failures."""


class ConfigurationError(ConnectorError):
    """Missing or malformed encryption key / connector credentials. Never retried."""


class IntegrityError(ConnectorError):
    """Decryption or authentication-tag failure for a stored record."""


class EnvelopeFormatError(IntegrityError):
    """The envelope is structurally invalid (segment count, base64, lengths)."""


class AuthorizationError(ConnectorError):
    """The provider denied / the user cancelled consent, or the state did not verify."""


class TokenExchangeError(ConnectorError):
    """Network or non-2xx failure at a provider token endpoint."""


class UpstreamAPIError(ConnectorError):
    """A live provider API call failed during a cache compute or a tool call."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectorNotFoundError(ConnectorError):
    """Unknown connector type, or no persisted config for it."""
