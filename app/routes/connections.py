# app/routes/connections.py
"""
Connection management, scoped to the caller's organization.

Only status and credential reference can be changed here; sync state belongs
to the orchestrator.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.exceptions import ConnectionNotFoundError, ValidationError
from app.dependencies import get_connection_service, get_organization_id
from app.models.connection import MarketplaceConnection
from app.schemas.connection import ConnectionCreate, ConnectionResponse, ConnectionUpdate
from app.services.connection_service import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


async def _owned_connection(
    connection_id: str,
    organization_id: str,
    service: ConnectionService,
) -> MarketplaceConnection:
    connection = await service.get(connection_id)
    if connection is None:
        raise HTTPException(status_code=404, detail=f"Connection {connection_id} not found")
    if connection.organization_id != organization_id:
        raise HTTPException(status_code=403, detail="Connection belongs to another organization")
    return connection


@router.get("", response_model=List[ConnectionResponse])
async def list_connections(
    organization_id: str = Depends(get_organization_id),
    service: ConnectionService = Depends(get_connection_service),
):
    return await service.list_connections(organization_id=organization_id)


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    payload: ConnectionCreate,
    organization_id: str = Depends(get_organization_id),
    service: ConnectionService = Depends(get_connection_service),
):
    try:
        return await service.create(
            tenant_id=payload.tenant_id,
            organization_id=organization_id,
            marketplace_id=payload.marketplace_id.value,
            credential_reference=payload.credential_reference,
            status=payload.status.value,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{connection_id}", response_model=ConnectionResponse)
async def get_connection(
    connection_id: str,
    organization_id: str = Depends(get_organization_id),
    service: ConnectionService = Depends(get_connection_service),
):
    return await _owned_connection(connection_id, organization_id, service)


@router.patch("/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: str,
    payload: ConnectionUpdate,
    organization_id: str = Depends(get_organization_id),
    service: ConnectionService = Depends(get_connection_service),
):
    await _owned_connection(connection_id, organization_id, service)
    try:
        return await service.update(
            connection_id,
            status=payload.status.value if payload.status else None,
            credential_reference=payload.credential_reference,
        )
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{connection_id}")
async def delete_connection(
    connection_id: str,
    organization_id: str = Depends(get_organization_id),
    service: ConnectionService = Depends(get_connection_service),
):
    await _owned_connection(connection_id, organization_id, service)
    await service.delete(connection_id)
    logger.info("Deleted connection %s for organization %s", connection_id, organization_id)
    return {"message": f"Connection {connection_id} deleted"}
