"""
Connector config persistence — one ``connectors`` row per connector type.

Only the OAuth lifecycle manager and health checks write through this
store; nothing else reads the encrypted blob.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.models import ConnectorConfig, ConnectorRecord

logger = logging.getLogger(__name__)


def _to_config(row: ConnectorRecord) -> ConnectorConfig:
    return ConnectorConfig(
        type=row.type,
        name=row.name,
        encrypted_blob=row.config,
        enabled=bool(row.enabled),
        status=row.status,
        error_message=row.error_message,
        last_healthy_at=row.last_healthy_at,
    )


class ConnectorStore:
    """SQLAlchemy-backed store; every call uses its own short session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, connector_type: str) -> Optional[ConnectorConfig]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConnectorRecord).where(ConnectorRecord.type == connector_type)
            )
            row = result.scalar_one_or_none()
            return _to_config(row) if row else None

    async def list_all(self) -> List[ConnectorConfig]:
        async with self._session_factory() as session:
            result = await session.execute(select(ConnectorRecord).order_by(ConnectorRecord.type))
            return [_to_config(r) for r in result.scalars().all()]

    async def list_enabled(self) -> List[ConnectorConfig]:
        return [c for c in await self.list_all() if c.enabled]

    async def save(self, cfg: ConnectorConfig) -> None:
        """Insert or fully replace the row for ``cfg.type``."""
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(ConnectorRecord).where(ConnectorRecord.type == cfg.type)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = ConnectorRecord(type=cfg.type)
                    session.add(row)
                row.name = cfg.name
                row.config = cfg.encrypted_blob
                row.enabled = cfg.enabled
                row.status = cfg.status
                row.error_message = cfg.error_message
                row.last_healthy_at = cfg.last_healthy_at
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def delete(self, connector_type: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ConnectorRecord).where(ConnectorRecord.type == connector_type)
            )
            await session.commit()
            return (result.rowcount or 0) > 0
