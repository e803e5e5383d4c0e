# app/routes/sync.py
"""
Marketplace sync endpoints.

Triggers are fire-and-acknowledge: a 202 only means the work was queued.
Outcomes are visible through GET /sync/status and the logs.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ConnectionNotFoundError, ValidationError
from app.dependencies import get_sync_orchestrator
from app.schemas.sync import (
    AcceptedResponse,
    ConnectionSyncResponse,
    IntervalRequest,
    SyncStatusResponse,
    TriggerRequest,
)
from app.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Called by an external cron; authenticated by shared secret, not Basic auth
scheduler_router = APIRouter(tags=["scheduler"])


def _validation_detail(error: PydanticValidationError) -> str:
    return "; ".join(e["msg"] for e in error.errors())


async def run_cycle_background(orchestrator: SyncOrchestrator, source: str) -> None:
    try:
        report = await orchestrator.run_cycle()
        logger.info("%s sync cycle finished: success=%s", source, report.success)
    except Exception:
        logger.exception("%s sync cycle failed", source)


async def force_many_background(orchestrator: SyncOrchestrator, connection_ids: Sequence[str]) -> None:
    try:
        results = await orchestrator.force_many(connection_ids)
        succeeded = sum(1 for r in results if r["success"])
        logger.info("Forced sync finished: %s/%s succeeded", succeeded, len(results))
    except Exception:
        logger.exception("Forced sync of %s failed", list(connection_ids))


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    return orchestrator.status()


@router.post("/start", response_model=SyncStatusResponse)
async def start_sync(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    orchestrator.start()
    return {**orchestrator.status(), "message": "Sync orchestrator started"}


@router.post("/stop", response_model=SyncStatusResponse)
async def stop_sync(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    orchestrator.stop()
    return {**orchestrator.status(), "message": "Sync orchestrator stopped"}


@router.post("/interval", response_model=SyncStatusResponse)
async def set_sync_interval(
    payload: Optional[Dict[str, Any]] = Body(None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        request = IntervalRequest.model_validate(payload or {})
        orchestrator.set_interval(request.interval_minutes)
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=_validation_detail(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {**orchestrator.status(), "message": f"Sync interval set to {request.interval_minutes:g} minutes"}


@router.post("/trigger", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    payload: Optional[Dict[str, Any]] = Body(None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        request = TriggerRequest.model_validate(payload or {})
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=_validation_detail(e))

    background_tasks.add_task(force_many_background, orchestrator, request.connection_ids)
    return {"message": "Sync triggered", "connection_ids": request.connection_ids}


@router.post("/run-full", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def run_full_sync(
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    background_tasks.add_task(run_cycle_background, orchestrator, "Manual")
    return {"message": "Full sync cycle started"}


@router.post("/connections/{connection_id}", response_model=ConnectionSyncResponse)
async def sync_connection(
    connection_id: str,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Synchronous retry of one connection."""
    try:
        result = await orchestrator.sync_one(connection_id)
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return result.to_dict()


@scheduler_router.post("/sync/scheduler", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def scheduler_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    if not orchestrator.validate_scheduler_request(request.headers):
        logger.warning("Rejected scheduler sync request from %s", request.client.host if request.client else "unknown")
        raise HTTPException(status_code=403, detail="Invalid scheduler credentials")

    background_tasks.add_task(run_cycle_background, orchestrator, "Scheduled")
    return {"message": "Sync cycle started"}
