"""
Buy Box monitoring contract, one implementation per marketplace.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import BuyBoxOwnershipStatus
from app.core.utils import utcnow
from app.integrations.base import Credentials


class BuyBoxSnapshot(BaseModel):
    """Competitive state of one listing at one point in time."""
    ownership_status: BuyBoxOwnershipStatus = BuyBoxOwnershipStatus.UNKNOWN
    our_price: Optional[float] = None
    buy_box_price: Optional[float] = None
    lowest_price: Optional[float] = None
    competitor_count: int = 0
    buy_box_winner: Optional[str] = None
    checked_at: datetime = Field(default_factory=utcnow)

    @property
    def is_winning(self) -> bool:
        return self.ownership_status in (BuyBoxOwnershipStatus.OWNED, BuyBoxOwnershipStatus.SHARED)


class BuyBoxMonitor(ABC):
    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    @abstractmethod
    async def check_buy_box_status(self, marketplace_product_id: str) -> BuyBoxSnapshot:
        """Fetch the current Buy Box state for a listing"""
        pass

    @abstractmethod
    async def update_price(self, marketplace_product_id: str, new_price: float) -> bool:
        """Push a new price to the marketplace; True when accepted"""
        pass
