from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import field_validator

from app.core.utils import MAX_INTERVAL_MINUTES, is_valid_interval
from app.schemas.base import CamelSchema


class SyncStatusResponse(CamelSchema):
    is_running: bool
    is_scheduled: bool
    interval_minutes: float
    cycle_in_progress: bool = False
    last_run_at: Optional[datetime] = None
    last_report: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


class IntervalRequest(CamelSchema):
    interval_minutes: float

    @field_validator("interval_minutes", mode="before")
    @classmethod
    def positive_number(cls, value):
        if not is_valid_interval(value):
            raise ValueError(f"intervalMinutes must be a positive number no greater than {MAX_INTERVAL_MINUTES}")
        return value


class TriggerRequest(CamelSchema):
    connection_ids: List[str]

    @field_validator("connection_ids", mode="before")
    @classmethod
    def non_empty(cls, value):
        if not isinstance(value, list) or not value:
            raise ValueError("connectionIds must be a non-empty array")
        if not all(isinstance(item, str) and item for item in value):
            raise ValueError("connectionIds must contain connection id strings")
        return value


class AcceptedResponse(CamelSchema):
    message: str
    connection_ids: Optional[List[str]] = None


class ConnectionSyncResponse(CamelSchema):
    connection_id: str
    success: bool
    message: str
    orders_processed: int = 0
    products_processed: int = 0
