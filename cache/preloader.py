"""
Cache preloader — warms every connector's preload keys and reports cache
status per connector.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from cache.engine import ConnectorCache
from connectors.errors import ConnectorError
from connectors.registry import ConnectorRegistry
from connectors.token_manager import OAuthLifecycleManager

logger = logging.getLogger(__name__)


def _result(
    connector_type: str,
    key: str,
    *,
    success: bool,
    from_cache: bool = False,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "connector_type": connector_type,
        "cache_key": f"{connector_type}:{key}",
        "success": success,
        "from_cache": from_cache,
    }
    if error is not None:
        result["error"] = error
    return result


class CachePreloader:
    def __init__(
        self,
        cache: ConnectorCache,
        registry: ConnectorRegistry,
        manager: OAuthLifecycleManager,
    ):
        self.cache = cache
        self.registry = registry
        self.manager = manager

    async def preload_all(self) -> List[Dict[str, Any]]:
        """
        Warm the preload keys of every enabled, non-disconnected connector
        concurrently.  One connector failing never affects the others.
        """
        connectors = await self.manager.healthy_connectors()
        batches = await asyncio.gather(
            *(self._preload_connector(cfg.type) for cfg in connectors)
        )
        results = [r for batch in batches for r in batch]
        ok = sum(1 for r in results if r["success"])
        logger.info("Cache preload: %d/%d keys succeeded", ok, len(results))
        return results

    async def _preload_connector(self, connector_type: str) -> List[Dict[str, Any]]:
        descriptor = self.registry.require(connector_type)
        if not descriptor.preload:
            return []

        try:
            client = await self.manager.build_client(connector_type)
        except ConnectorError as exc:
            logger.warning("Preload skipped for %s: %s", connector_type, exc)
            return [
                _result(connector_type, item.key, success=False, error=str(exc))
                for item in descriptor.preload
            ]

        results = []
        for item in descriptor.preload:
            try:
                _, from_cache = await self.cache.get(
                    connector_type,
                    item.key,
                    lambda item=item: item.fetch(client),
                )
            except Exception as exc:
                logger.warning("Preload of %s:%s failed: %s", connector_type, item.key, exc)
                results.append(_result(connector_type, item.key, success=False, error=str(exc)))
            else:
                results.append(_result(connector_type, item.key, success=True, from_cache=from_cache))
        return results

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Per-connector view of the preload keys; never mutates the cache."""
        now = self.cache.now()
        report: Dict[str, Dict[str, Any]] = {}
        for descriptor in self.registry.all():
            keys = []
            for item in descriptor.preload:
                entry = self.cache.peek(descriptor.type, item.key)
                keys.append(
                    {
                        "cache_key": f"{descriptor.type}:{item.key}",
                        "has_cache": entry is not None,
                        "expires_at": entry.expires_at if entry else None,
                        "is_stale": entry is None or not entry.is_live(now),
                    }
                )
            expiries = [k["expires_at"] for k in keys if k["expires_at"] is not None]
            report[descriptor.type] = {
                "has_cache": any(k["has_cache"] for k in keys),
                "expires_at": min(expiries) if expiries else None,
                "is_stale": any(k["is_stale"] for k in keys) if keys else False,
                "keys": keys,
            }
        return report
