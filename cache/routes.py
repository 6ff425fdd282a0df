"""
Cache admin routes.

    GET    /cache            → stats + entries
    DELETE /cache            → sweep expired entries (or drop one connector's)
    GET    /cache/preload    → per-connector preload status
    POST   /cache/preload    → warm every connector's preload keys
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_cache, get_preloader
from cache.engine import ConnectorCache
from cache.preloader import CachePreloader
from utils.schemas import CacheCleanupResult, CacheStats, PreloadStatus, PreloadSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("", response_model=CacheStats)
async def cache_stats(cache: ConnectorCache = Depends(get_cache)) -> Dict[str, Any]:
    return {**cache.stats(), "entries": cache.entries()}


@router.delete("", response_model=CacheCleanupResult)
async def cache_cleanup(
    connector_type: Optional[str] = Query(None, description="Drop every entry of this connector"),
    cache: ConnectorCache = Depends(get_cache),
) -> Dict[str, int]:
    if connector_type:
        cleaned = cache.invalidate(connector_type)
        logger.info("Cache invalidated for %s (%d entries)", connector_type, cleaned)
    else:
        cleaned = cache.cleanup_expired()
    return {"cleaned": cleaned}


@router.get("/preload", response_model=Dict[str, PreloadStatus])
async def preload_status(preloader: CachePreloader = Depends(get_preloader)) -> Dict[str, Any]:
    return preloader.status()


@router.post("/preload", response_model=PreloadSummary)
async def preload(preloader: CachePreloader = Depends(get_preloader)) -> Dict[str, Any]:
    results = await preloader.preload_all()
    successful = sum(1 for r in results if r["success"])
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "from_cache": sum(1 for r in results if r["from_cache"]),
        "results": results,
    }
