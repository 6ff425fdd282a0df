"""
Connector API routes — OAuth init/callback, config CRUD, connection test.

    GET    /auth/{connector_type}            → 302 to the provider
    GET    /auth/{connector_type}/callback   → 302 to the settings page
    GET    /connectors
    GET    /connectors/{connector_type}
    PUT    /connectors/{connector_type}
    DELETE /connectors/{connector_type}
    POST   /connectors/{connector_type}/test
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from api.dependencies import get_cache, get_manager, get_registry
from cache.engine import ConnectorCache
from connectors.errors import ConfigurationError, ConnectorNotFoundError
from connectors.registry import ConnectorRegistry
from connectors.token_manager import OAuthLifecycleManager
from utils.schemas import (
    ConnectionTestResult,
    ConnectorConfigUpdate,
    ConnectorDetail,
    ConnectorSaveResult,
)

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/connectors", tags=["connectors"])


def _not_found(exc: ConnectorNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# ── OAuth ────────────────────────────────────────────────────────────────


@auth_router.get("/{connector_type}")
async def oauth_init(
    connector_type: str,
    request: Request,
    manager: OAuthLifecycleManager = Depends(get_manager),
) -> RedirectResponse:
    """
    Start the authorization-code flow.

    Extra query parameters that the connector declares as pre-registration
    fields (e.g. ``?tenant_id=`` for Outlook) are stored first.
    """
    extra = dict(request.query_params)
    if extra:
        url = await manager.begin_authorization_extended(connector_type, extra)
    else:
        url = await manager.begin_authorization(connector_type)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@auth_router.get("/{connector_type}/callback")
async def oauth_callback(
    connector_type: str,
    request: Request,
    manager: OAuthLifecycleManager = Depends(get_manager),
) -> RedirectResponse:
    """Provider redirect target; always answers with a settings-page redirect."""
    url = await manager.complete_authorization(connector_type, dict(request.query_params))
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


# ── Config CRUD ──────────────────────────────────────────────────────────


@router.get("", response_model=List[ConnectorDetail])
async def list_connectors(
    manager: OAuthLifecycleManager = Depends(get_manager),
) -> List[Dict[str, Any]]:
    return await manager.list_connectors()


@router.get("/{connector_type}", response_model=ConnectorDetail)
async def get_connector(
    connector_type: str,
    manager: OAuthLifecycleManager = Depends(get_manager),
) -> Dict[str, Any]:
    try:
        return await manager.describe(connector_type)
    except ConnectorNotFoundError as exc:
        raise _not_found(exc)


@router.put("/{connector_type}", response_model=ConnectorSaveResult)
async def update_connector(
    connector_type: str,
    body: ConnectorConfigUpdate,
    manager: OAuthLifecycleManager = Depends(get_manager),
) -> Dict[str, Any]:
    try:
        return await manager.save_config(connector_type, body.config, body.enabled)
    except ConnectorNotFoundError as exc:
        raise _not_found(exc)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.delete("/{connector_type}")
async def delete_connector(
    connector_type: str,
    manager: OAuthLifecycleManager = Depends(get_manager),
    cache: ConnectorCache = Depends(get_cache),
) -> Dict[str, Any]:
    try:
        deleted = await manager.delete_config(connector_type)
    except ConnectorNotFoundError as exc:
        raise _not_found(exc)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connector not configured")
    cache.invalidate(connector_type)
    return {"success": True, "type": connector_type}


@router.post("/{connector_type}/test", response_model=ConnectionTestResult)
async def test_connector(
    connector_type: str,
    manager: OAuthLifecycleManager = Depends(get_manager),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    if connector_type not in registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown connector type: {connector_type}")
    return await manager.test_connection(connector_type)
