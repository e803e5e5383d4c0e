from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, model_validator

from app.core.enums import MarketplaceId, RepricingStrategy
from app.schemas.base import CamelSchema

# Accepts the rule builder's name for the interval as well
INTERVAL_ALIASES = AliasChoices("updateFrequency", "intervalMinutes", "interval_minutes")


class RuleBase(CamelSchema):
    @model_validator(mode="after")
    def check_price_bounds(self):
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("minPrice cannot be greater than maxPrice")
        return self


class RuleCreate(RuleBase):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    strategy: RepricingStrategy
    parameters: Dict[str, Any] = Field(default_factory=dict)
    min_price: Optional[float] = Field(default=None, gt=0)
    max_price: Optional[float] = Field(default=None, gt=0)
    marketplaces: List[MarketplaceId] = Field(default_factory=list)
    interval_minutes: int = Field(default=60, ge=5, le=1440, validation_alias=INTERVAL_ALIASES)
    priority: int = Field(default=1, ge=1, le=100)
    is_active: bool = True


class RuleUpdate(RuleBase):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    strategy: Optional[RepricingStrategy] = None
    parameters: Optional[Dict[str, Any]] = None
    min_price: Optional[float] = Field(default=None, gt=0)
    max_price: Optional[float] = Field(default=None, gt=0)
    marketplaces: Optional[List[MarketplaceId]] = None
    interval_minutes: Optional[int] = Field(default=None, ge=5, le=1440, validation_alias=INTERVAL_ALIASES)
    priority: Optional[int] = Field(default=None, ge=1, le=100)
    is_active: Optional[bool] = None


class RuleResponse(CamelSchema):
    id: str
    organization_id: str
    user_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    strategy: RepricingStrategy
    parameters: Dict[str, Any]
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    marketplaces: List[str]
    interval_minutes: int
    priority: int
    is_active: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EventResponse(CamelSchema):
    id: int
    rule_id: Optional[str] = None
    product_id: str
    sku: Optional[str] = None
    marketplace_id: str
    success: bool
    strategy: Optional[str] = None
    action: str
    previous_price: Optional[float] = None
    new_price: Optional[float] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime


class SuccessRate(CamelSchema):
    success_rate: float
    total_events: int
    successful_events: int


class RuleEventsResponse(CamelSchema):
    events: List[EventResponse]
    stats: SuccessRate


class RepricingRunResponse(CamelSchema):
    rules_due: int
    products_due: int
    products_evaluated: int
    successful_events: int
    failed_events: int
    price_changes: int
    errors: List[Dict[str, str]] = Field(default_factory=list)
    execution_time: float = 0.0


class MonitoringRequest(CamelSchema):
    product_id: str
    marketplace_id: MarketplaceId
    sku: Optional[str] = None
    marketplace_product_id: Optional[str] = None
    monitoring_frequency: Optional[int] = Field(default=None, ge=0, le=1440)
    current_price: Optional[float] = Field(default=None, gt=0)
    cost_price: Optional[float] = Field(default=None, ge=0)


class MonitoredProductResponse(CamelSchema):
    id: str
    product_id: str
    sku: Optional[str] = None
    organization_id: str
    marketplace_id: str
    marketplace_product_id: Optional[str] = None
    is_monitoring: bool
    monitoring_frequency: int
    last_checked: Optional[datetime] = None
    current_price: Optional[float] = None
    cost_price: Optional[float] = None
    buy_box_win_percentage: float = 0.0
    last_snapshot: Optional[Dict[str, Any]] = None


class SchedulerStatusResponse(CamelSchema):
    is_running: bool
    is_scheduled: bool
    interval_minutes: float
    cycle_in_progress: bool = False
    last_run_at: Optional[datetime] = None
    last_report: Optional[Dict[str, Any]] = None
