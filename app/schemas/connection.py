from datetime import datetime
from typing import Optional

from app.core.enums import ConnectionStatus, MarketplaceId, SyncStatus
from app.schemas.base import CamelSchema


class ConnectionCreate(CamelSchema):
    tenant_id: str
    marketplace_id: MarketplaceId
    credential_reference: str
    status: ConnectionStatus = ConnectionStatus.CONNECTED


class ConnectionUpdate(CamelSchema):
    """Only management-owned fields; sync state is never set through the API."""
    status: Optional[ConnectionStatus] = None
    credential_reference: Optional[str] = None


class ConnectionResponse(CamelSchema):
    id: str
    tenant_id: str
    organization_id: str
    marketplace_id: MarketplaceId
    status: ConnectionStatus
    sync_status: SyncStatus
    last_checked: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
