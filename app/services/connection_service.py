"""
Connection store.

Every write is a single-row UPDATE scoped by id that bumps `version`, so a
manual sync racing a scheduled one simply leaves the last writer's status.
Timestamps are moved forward with a CASE guard and never regress.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import DateTime, case, delete, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.enums import ConnectionStatus, MarketplaceId, SyncStatus
from app.core.exceptions import ConnectionNotFoundError, ValidationError
from app.core.utils import utcnow
from app.models.connection import MarketplaceConnection

logger = logging.getLogger(__name__)


def _forward_only(column, now: datetime):
    """SQL expression that moves a timestamp column to `now` unless it is already later."""
    value = literal(now, type_=DateTime(timezone=True))
    return case((or_(column.is_(None), column < value), value), else_=column)


class ConnectionService:
    """CRUD and sync bookkeeping for marketplace connections."""

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    # --- Queries ---

    async def list_active(self) -> List[MarketplaceConnection]:
        """Connections eligible for a sync cycle."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(MarketplaceConnection)
                .where(MarketplaceConnection.status == ConnectionStatus.CONNECTED.value)
                .order_by(MarketplaceConnection.created_at, MarketplaceConnection.id)
            )
            return list(result.scalars().all())

    async def list_connections(
        self,
        organization_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> List[MarketplaceConnection]:
        stmt = select(MarketplaceConnection)
        if organization_id:
            stmt = stmt.where(MarketplaceConnection.organization_id == organization_id)
        if tenant_id:
            stmt = stmt.where(MarketplaceConnection.tenant_id == tenant_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(MarketplaceConnection.created_at))
            return list(result.scalars().all())

    async def get(self, connection_id: str) -> Optional[MarketplaceConnection]:
        async with self.session_factory() as session:
            return await session.get(MarketplaceConnection, connection_id)

    async def find_active(self, organization_id: str, marketplace_id: str) -> Optional[MarketplaceConnection]:
        """The organization's connected link to a marketplace, if any."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(MarketplaceConnection)
                .where(
                    MarketplaceConnection.organization_id == organization_id,
                    MarketplaceConnection.marketplace_id == marketplace_id,
                    MarketplaceConnection.status == ConnectionStatus.CONNECTED.value,
                )
                .order_by(MarketplaceConnection.created_at)
                .limit(1)
            )
            return result.scalars().first()

    async def get_or_raise(self, connection_id: str) -> MarketplaceConnection:
        connection = await self.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return connection

    # --- Connection management (status / credentials only) ---

    async def create(
        self,
        tenant_id: str,
        organization_id: str,
        marketplace_id: str,
        credential_reference: str,
        status: str = ConnectionStatus.CONNECTED.value,
    ) -> MarketplaceConnection:
        try:
            marketplace = MarketplaceId(marketplace_id)
            status = ConnectionStatus(status)
        except ValueError as e:
            raise ValidationError(str(e))

        connection = MarketplaceConnection(
            tenant_id=tenant_id,
            organization_id=organization_id,
            marketplace_id=marketplace.value,
            credential_reference=credential_reference,
            status=status.value,
            sync_status=SyncStatus.IDLE.value,
            version=0,
            created_at=self.clock(),
        )
        async with self.session_factory() as session:
            session.add(connection)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError(
                    f"Tenant {tenant_id} already has a {marketplace.value} connection"
                )
        logger.info("Created %s connection %s for tenant %s", marketplace.value, connection.id, tenant_id)
        return connection

    async def update(
        self,
        connection_id: str,
        status: Optional[str] = None,
        credential_reference: Optional[str] = None,
    ) -> MarketplaceConnection:
        values = {}
        if status is not None:
            try:
                values["status"] = ConnectionStatus(status).value
            except ValueError as e:
                raise ValidationError(str(e))
        if credential_reference is not None:
            values["credential_reference"] = credential_reference

        if values:
            updated = await self._update(connection_id, **values)
            if not updated:
                raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return await self.get_or_raise(connection_id)

    async def delete(self, connection_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(MarketplaceConnection).where(MarketplaceConnection.id == connection_id)
            )
            await session.commit()
        return result.rowcount > 0

    # --- Sync bookkeeping (orchestrator only) ---

    async def mark_in_progress(self, connection_id: str, now: datetime) -> bool:
        """Flag a sync as started. False when the connection no longer exists."""
        return await self._update(
            connection_id,
            sync_status=SyncStatus.IN_PROGRESS.value,
            sync_started_at=now,
            last_checked=_forward_only(MarketplaceConnection.last_checked, now),
        )

    async def record_outcome(
        self,
        connection_id: str,
        sync_status: SyncStatus,
        error: Optional[str],
        now: datetime,
        synced_at: Optional[datetime] = None,
    ) -> bool:
        """
        Persist the terminal state of a sync attempt.

        `synced_at` is the new watermark, or None to leave `last_synced_at`
        untouched.
        """
        values = dict(
            sync_status=SyncStatus(sync_status).value,
            last_error=error,
            sync_started_at=None,
            last_checked=_forward_only(MarketplaceConnection.last_checked, now),
        )
        if synced_at is not None:
            values["last_synced_at"] = _forward_only(MarketplaceConnection.last_synced_at, synced_at)
        return await self._update(connection_id, **values)

    async def reset_stale_in_progress(self, cutoff: datetime) -> int:
        """Move syncs that started before `cutoff` and never finished to error."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(MarketplaceConnection)
                .where(
                    MarketplaceConnection.sync_status == SyncStatus.IN_PROGRESS.value,
                    or_(
                        MarketplaceConnection.sync_started_at.is_(None),
                        MarketplaceConnection.sync_started_at < literal(cutoff, type_=DateTime(timezone=True)),
                    ),
                )
                .values(
                    sync_status=SyncStatus.ERROR.value,
                    last_error="Sync interrupted before completion",
                    sync_started_at=None,
                    version=MarketplaceConnection.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount:
            logger.warning("Reset %s stale in_progress connection(s)", result.rowcount)
        return result.rowcount

    async def _update(self, connection_id: str, **values) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(MarketplaceConnection)
                .where(MarketplaceConnection.id == connection_id)
                .values(version=MarketplaceConnection.version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount > 0
