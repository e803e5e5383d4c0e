# app/routes/repricing.py
"""
Repricing rules, events, Buy Box monitoring and the repricing driver.

Every management endpoint is scoped by the x-organization-id header: an
unknown rule is a 404, another organization's rule a 403.
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from app.core.enums import MarketplaceId
from app.core.exceptions import MonitoredProductNotFoundError, RuleNotFoundError, ValidationError
from app.dependencies import (
    get_buybox_service,
    get_organization_id,
    get_repricing_scheduler,
    get_repricing_service,
)
from app.models.repricing import RepricingRule
from app.schemas.repricing import (
    EventResponse,
    MonitoredProductResponse,
    MonitoringRequest,
    RepricingRunResponse,
    RuleCreate,
    RuleEventsResponse,
    RuleResponse,
    RuleUpdate,
    SchedulerStatusResponse,
)
from app.schemas.sync import AcceptedResponse
from app.services.buybox_service import BuyBoxService
from app.services.repricing_scheduler import RepricingScheduler
from app.services.repricing_service import RepricingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repricing", tags=["repricing"])

# Called by an external cron; authenticated by shared secret, not Basic auth
scheduler_router = APIRouter(tags=["scheduler"])

EventLimit = Query(100, ge=1, le=500)


async def _owned_rule(rule_id: str, organization_id: str, service: RepricingService) -> RepricingRule:
    try:
        rule = await service.get_rule(rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if rule.organization_id != organization_id:
        raise HTTPException(status_code=403, detail="Rule belongs to another organization")
    return rule


async def run_repricing_background(scheduler: RepricingScheduler, source: str) -> None:
    try:
        report = await scheduler.run_cycle()
        logger.info("%s repricing cycle finished: %s", source, report.to_dict())
    except Exception:
        logger.exception("%s repricing cycle failed", source)


# --- Rules ---

@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    active_only: bool = False,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    return await service.list_rules(organization_id, active_only=active_only)


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: RuleCreate,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    try:
        return await service.create_rule(organization_id, payload.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: str,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    return await _owned_rule(rule_id, organization_id, service)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    payload: RuleUpdate,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    await _owned_rule(rule_id, organization_id, service)
    try:
        return await service.update_rule(rule_id, payload.model_dump(exclude_unset=True))
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: str,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    await _owned_rule(rule_id, organization_id, service)
    try:
        await service.delete_rule(rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": f"Rule {rule_id} deleted"}


@router.post("/rules/{rule_id}/execute", response_model=RepricingRunResponse)
async def execute_rule(
    rule_id: str,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
    scheduler: RepricingScheduler = Depends(get_repricing_scheduler),
):
    await _owned_rule(rule_id, organization_id, service)
    try:
        report = await scheduler.execute_rule(rule_id, organization_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


@router.get("/rules/{rule_id}/events", response_model=RuleEventsResponse)
async def get_rule_events(
    rule_id: str,
    limit: int = EventLimit,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    await _owned_rule(rule_id, organization_id, service)
    events = await service.get_rule_events(rule_id, limit=limit)
    stats = await service.get_rule_success_rate(rule_id)
    return {"events": events, "stats": stats}


# --- Events ---

@router.get("/products/{product_id}/events", response_model=List[EventResponse])
async def get_product_events(
    product_id: str,
    limit: int = EventLimit,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    return await service.get_product_events(organization_id, product_id, limit=limit)


@router.get("/marketplaces/{marketplace_id}/events", response_model=List[EventResponse])
async def get_marketplace_events(
    marketplace_id: MarketplaceId,
    limit: int = EventLimit,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    return await service.get_marketplace_events(organization_id, marketplace_id.value, limit=limit)


@router.get("/events/recent", response_model=List[EventResponse])
async def get_recent_events(
    limit: int = EventLimit,
    organization_id: str = Depends(get_organization_id),
    service: RepricingService = Depends(get_repricing_service),
):
    return await service.get_recent_events(organization_id, limit=limit)


# --- Buy Box monitoring ---

@router.get("/monitoring", response_model=List[MonitoredProductResponse])
async def list_monitored_products(
    due_only: bool = False,
    organization_id: str = Depends(get_organization_id),
    buybox: BuyBoxService = Depends(get_buybox_service),
):
    if due_only:
        return await buybox.get_products_due(organization_id=organization_id)
    return await buybox.list_products(organization_id=organization_id)


@router.post("/monitoring", response_model=MonitoredProductResponse, status_code=status.HTTP_201_CREATED)
async def start_monitoring(
    payload: MonitoringRequest,
    organization_id: str = Depends(get_organization_id),
    buybox: BuyBoxService = Depends(get_buybox_service),
):
    try:
        return await buybox.start_monitoring(
            product_id=payload.product_id,
            marketplace_id=payload.marketplace_id.value,
            organization_id=organization_id,
            sku=payload.sku,
            marketplace_product_id=payload.marketplace_product_id,
            monitoring_frequency=payload.monitoring_frequency,
            current_price=payload.current_price,
            cost_price=payload.cost_price,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/monitoring/{marketplace_id}/{product_id}", response_model=MonitoredProductResponse)
async def stop_monitoring(
    marketplace_id: MarketplaceId,
    product_id: str,
    organization_id: str = Depends(get_organization_id),
    buybox: BuyBoxService = Depends(get_buybox_service),
):
    product = await buybox.get(product_id, marketplace_id.value)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product {product_id} is not monitored on {marketplace_id.value}")
    if product.organization_id != organization_id:
        raise HTTPException(status_code=403, detail="Product belongs to another organization")
    try:
        return await buybox.stop_monitoring(product_id, marketplace_id.value)
    except MonitoredProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# --- In-process driver ---

@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def repricing_status(scheduler: RepricingScheduler = Depends(get_repricing_scheduler)):
    return scheduler.status()


@router.post("/scheduler/start", response_model=SchedulerStatusResponse)
async def start_repricing(scheduler: RepricingScheduler = Depends(get_repricing_scheduler)):
    scheduler.start()
    return scheduler.status()


@router.post("/scheduler/stop", response_model=SchedulerStatusResponse)
async def stop_repricing(scheduler: RepricingScheduler = Depends(get_repricing_scheduler)):
    scheduler.stop()
    return scheduler.status()


@scheduler_router.post("/repricing/scheduler", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def scheduler_repricing(
    request: Request,
    background_tasks: BackgroundTasks,
    scheduler: RepricingScheduler = Depends(get_repricing_scheduler),
):
    if not scheduler.validate_scheduler_request(request.headers):
        logger.warning("Rejected scheduler repricing request")
        raise HTTPException(status_code=403, detail="Invalid scheduler credentials")

    background_tasks.add_task(run_repricing_background, scheduler, "Scheduled")
    return {"message": "Repricing cycle started"}
