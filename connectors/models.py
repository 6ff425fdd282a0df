"""
Connector domain records.

``ConnectorConfig`` is the in-memory view of a ``connectors`` row.  The
decrypted blob never lives on this object — only the vault envelope does.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from database.models import ConnectorRecord  # noqa: F401

STATUS_PENDING = "pending"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


@dataclass
class ConnectorConfig:
    type: str
    name: str
    encrypted_blob: str
    enabled: bool = True
    status: str = STATUS_PENDING
    error_message: Optional[str] = None
    last_healthy_at: Optional[datetime] = None

    @property
    def is_healthy(self) -> bool:
        return self.enabled and self.status != STATUS_DISCONNECTED


@dataclass
class TokenSet:
    """Transient result of a code exchange or refresh; folded into the blob before write."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "ConnectorConfig",
    "ConnectorRecord",
    "TokenSet",
    "STATUS_PENDING",
    "STATUS_CONNECTED",
    "STATUS_DISCONNECTED",
]
