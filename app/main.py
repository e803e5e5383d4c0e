# app/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.core.security import get_current_username, require_auth
from app.routes import connections, health, repricing, sync
from app.services.bootstrap import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()

    if settings.CREATE_TABLES_ON_STARTUP:
        from app.database import Base, engine
        from app import models  # noqa: F401  registers the tables

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    services = build_services(settings=settings)
    app.state.services = services

    if settings.SYNC_SCHEDULE_ENABLED:
        services.orchestrator.start(settings.SYNC_INTERVAL_MINUTES)
    else:
        logger.info("In-process sync driver disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    if settings.REPRICING_SCHEDULE_ENABLED:
        services.repricing_scheduler.start(settings.REPRICING_INTERVAL_MINUTES)

    try:
        yield  # This is where the app runs
    finally:
        services.shutdown()


app = FastAPI(
    title="Marketplace Sync Service",
    lifespan=lifespan
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    response = await call_next(request)
    return response


# Include routers with authentication
app.include_router(sync.router, dependencies=[require_auth()])
app.include_router(connections.router, dependencies=[require_auth()])
app.include_router(repricing.router, dependencies=[require_auth()])
app.include_router(sync.scheduler_router)  # Scheduler webhooks use the shared secret instead
app.include_router(repricing.scheduler_router)
app.include_router(health.router)  # Health check should be accessible without auth


@app.get("/", dependencies=[Depends(get_current_username)])
async def root():
    return {"service": "Marketplace Sync Service", "status": "/sync/status"}
