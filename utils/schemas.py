"""
Pydantic schemas for the connector hub API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Connectors
# ═══════════════════════════════════════════════════════════════════════════════


class ConfigFieldInfo(BaseModel):
    key: str
    label: str
    type: str = "text"
    required: bool = True
    help_text: str = ""


class ConnectorDetail(BaseModel):
    type: str
    name: str
    description: str
    auth_route: str
    config_fields: List[ConfigFieldInfo] = Field(default_factory=list)
    configured: bool = False
    enabled: bool = False
    status: Optional[str] = None       # "pending" | "connected" | "disconnected"
    authorized: bool = False
    error_message: Optional[str] = None
    last_healthy_at: Optional[str] = None
    config: Dict[str, str] = Field(default_factory=dict)   # secrets masked


class ConnectorConfigUpdate(BaseModel):
    """
    Body of ``PUT /connectors/{type}``.

    Masked (``••••••••``) or empty values keep what is already stored.
    """

    config: Dict[str, Any] = Field(default_factory=dict)
    enabled: Optional[bool] = None


class ConnectorSaveResult(BaseModel):
    type: str
    name: str
    configured: bool
    enabled: bool


class ConnectionTestResult(BaseModel):
    success: bool
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Cache
# ═══════════════════════════════════════════════════════════════════════════════


class CacheEntryInfo(BaseModel):
    connector_type: str
    cache_key: str
    computed_at: float
    expires_at: float
    is_expired: bool
    ttl_remaining: float


class CacheStats(BaseModel):
    total_entries: int
    expired_entries: int
    bytes_approx: int
    per_connector_counts: Dict[str, int] = Field(default_factory=dict)
    in_flight: int = 0
    entries: List[CacheEntryInfo] = Field(default_factory=list)


class CacheCleanupResult(BaseModel):
    cleaned: int


class PreloadKeyStatus(BaseModel):
    cache_key: str
    has_cache: bool
    expires_at: Optional[float] = None
    is_stale: bool


class PreloadStatus(BaseModel):
    has_cache: bool
    expires_at: Optional[float] = None
    is_stale: bool
    keys: List[PreloadKeyStatus] = Field(default_factory=list)


class PreloadResult(BaseModel):
    connector_type: str
    cache_key: str
    success: bool
    from_cache: bool = False
    error: Optional[str] = None


class PreloadSummary(BaseModel):
    total: int
    successful: int
    failed: int
    from_cache: int
    results: List[PreloadResult] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Chat
# ═══════════════════════════════════════════════════════════════════════════════


class ChatRequest(BaseModel):
    chat_id: Optional[str] = None       # omitted → a new chat is created
    message: str = Field(..., min_length=1)
