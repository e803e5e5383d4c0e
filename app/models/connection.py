# app/models/connection.py
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func

from app.database import Base
from app.core.utils import utcnow
from app.core.enums import ConnectionStatus, SyncStatus


class MarketplaceConnection(Base):
    """
    A tenant's link to one external marketplace.

    `status` and `credential_reference` belong to the connection management API.
    The sync_* columns, `last_checked`, `last_synced_at` and `last_error` are
    only ever written by the sync orchestrator.
    """
    __tablename__ = "marketplace_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=False, index=True)
    marketplace_id = Column(String(32), nullable=False, index=True)

    # Opaque key handed to the credential provider, never the secret itself
    credential_reference = Column(String(255), nullable=False)

    status = Column(String(32), nullable=False, default=ConnectionStatus.CONNECTED.value, index=True)

    # --- Sync bookkeeping ---
    sync_status = Column(String(32), nullable=False, default=SyncStatus.IDLE.value, index=True)
    last_checked = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)  # watermark for incremental fetches
    sync_started_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    # Bumped on every write; last writer wins
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "marketplace_id", name="uq_connection_tenant_marketplace"),
    )

    def __repr__(self):
        return (f"<MarketplaceConnection(id={self.id}, tenant='{self.tenant_id}', "
                f"marketplace='{self.marketplace_id}', status='{self.status}', sync='{self.sync_status}')>")
