from typing import AsyncGenerator, Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import async_session
from app.services.bootstrap import ServiceContainer
from app.services.buybox_service import BuyBoxService
from app.services.connection_service import ConnectionService
from app.services.repricing_scheduler import RepricingScheduler
from app.services.repricing_service import RepricingService
from app.services.sync_orchestrator import SyncOrchestrator


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialised")
    return services


def get_sync_orchestrator(request: Request) -> SyncOrchestrator:
    return get_services(request).orchestrator


def get_repricing_scheduler(request: Request) -> RepricingScheduler:
    return get_services(request).repricing_scheduler


def get_connection_service(request: Request) -> ConnectionService:
    return get_services(request).connections


def get_repricing_service(request: Request) -> RepricingService:
    return get_services(request).repricing


def get_buybox_service(request: Request) -> BuyBoxService:
    return get_services(request).buybox


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> str:
    """Organization scope for management endpoints, from the x-organization-id header."""
    if not x_organization_id:
        raise HTTPException(status_code=400, detail="x-organization-id header is required")
    return x_organization_id
