"""
ConnectorCache — TTL cache of provider API responses.

Entries are keyed by ``(connector_type, key)``.  ``get`` guarantees at most
one in-flight computation per key: the first caller starts ``compute`` in a
task of its own and every caller, the first included, awaits that task
through ``asyncio.shield``.  All of them observe the same payload or the
same exception, and a caller that is cancelled leaves the others waiting.

The cache lives in process memory and is owned exclusively by this class;
connector clients never cache on their own.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    connector_type: str
    key: str
    payload: Any
    computed_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class ConnectorCache:
    """Per-connector TTL cache with single-flight computation."""

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        ttl_by_connector: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._ttl_by_connector: Dict[str, float] = dict(ttl_by_connector or {})
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Future] = {}

    def now(self) -> float:
        return self._clock()

    # ── TTL ─────────────────────────────────────────────────────────────

    def ttl_for(self, connector_type: str) -> float:
        return self._ttl_by_connector.get(connector_type, self.default_ttl)

    def set_ttl(self, connector_type: str, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl_by_connector[connector_type] = ttl

    # ── Read path ───────────────────────────────────────────────────────

    def peek(self, connector_type: str, key: str) -> Optional[CacheEntry]:
        """Return the stored entry (live or not) without side effects."""
        return self._entries.get((connector_type, key))

    async def get(
        self,
        connector_type: str,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        ttl: float | None = None,
    ) -> Tuple[Any, bool]:
        """
        Return ``(payload, from_cache)``.

        A live entry is served as-is.  Otherwise ``compute`` runs (once per
        key, however many callers arrive meanwhile) and its result is
        stored with the connector's TTL.

        Raises
        ------
        ValueError
            If the effective TTL is not positive.  Nothing is computed.
        """
        cache_key = (connector_type, key)
        entry = self._entries.get(cache_key)
        if entry is not None and entry.is_live(self._clock()):
            return entry.payload, True

        lifetime = ttl if ttl is not None else self.ttl_for(connector_type)
        if lifetime <= 0:
            raise ValueError("ttl must be positive")

        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._compute(connector_type, key, compute, lifetime))
            self._inflight[cache_key] = task
            task.add_done_callback(lambda t: self._settle(cache_key, t))

        # cancelling one caller never cancels the shared computation
        payload = await asyncio.shield(task)
        return payload, False

    async def _compute(
        self,
        connector_type: str,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        lifetime: float,
    ) -> Any:
        payload = await compute()
        self._store(connector_type, key, payload, lifetime)
        return payload

    def _settle(self, cache_key: CacheKey, task: asyncio.Future) -> None:
        if self._inflight.get(cache_key) is task:
            del self._inflight[cache_key]
        # mark retrieved so a failure nobody awaited is not logged by asyncio;
        # callers still get the exception from ``await``
        if not task.cancelled():
            task.exception()

    def _store(self, connector_type: str, key: str, payload: Any, lifetime: float) -> None:
        now = self._clock()
        # last write wins on (connector_type, key)
        self._entries[(connector_type, key)] = CacheEntry(
            connector_type=connector_type,
            key=key,
            payload=payload,
            computed_at=now,
            expires_at=now + lifetime,
        )

    # ── Maintenance ─────────────────────────────────────────────────────

    def cleanup_expired(self) -> int:
        """Remove every entry with ``expires_at <= now``; return the count."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not e.is_live(now)]
        for cache_key in expired:
            del self._entries[cache_key]
        if expired:
            logger.info("Cache cleanup removed %d expired entries", len(expired))
        return len(expired)

    def invalidate(self, connector_type: str, key: str | None = None) -> int:
        """Drop one key, or every key of a connector when ``key`` is None."""
        if key is not None:
            return 1 if self._entries.pop((connector_type, key), None) is not None else 0
        doomed = [k for k in self._entries if k[0] == connector_type]
        for cache_key in doomed:
            del self._entries[cache_key]
        return len(doomed)

    # ── Reporting ───────────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        per_connector: Dict[str, int] = {}
        expired = 0
        size = 0
        for entry in self._entries.values():
            per_connector[entry.connector_type] = per_connector.get(entry.connector_type, 0) + 1
            if not entry.is_live(now):
                expired += 1
            size += _approx_size(entry.payload)
        return {
            "total_entries": len(self._entries),
            "expired_entries": expired,
            "bytes_approx": size,
            "per_connector_counts": per_connector,
            "in_flight": len(self._inflight),
        }

    def entries(self) -> list[Dict[str, Any]]:
        """Per-entry view for the admin endpoint (payloads omitted)."""
        now = self._clock()
        return [
            {
                "connector_type": e.connector_type,
                "cache_key": e.key,
                "computed_at": e.computed_at,
                "expires_at": e.expires_at,
                "is_expired": not e.is_live(now),
                "ttl_remaining": max(0.0, e.expires_at - now),
            }
            for e in sorted(self._entries.values(), key=lambda e: e.computed_at, reverse=True)
        ]


def _approx_size(payload: Any) -> int:
    try:
        return len(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        return len(repr(payload))
