"""
Marketplace adapter contract.

Adapters are the only code that speaks a marketplace's wire protocol. The sync
orchestrator only ever sees this interface, resolved through the registry.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from app.core.enums import MarketplaceId


class Credentials(BaseModel):
    """Resolved API credentials for one connection."""
    marketplace_id: MarketplaceId
    values: Dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class MarketplaceAdapter(ABC):
    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    @abstractmethod
    async def fetch_orders(self, since: datetime, limit: int) -> List[Dict[str, Any]]:
        """Orders created or changed at or after `since`, at most `limit` of them"""
        pass

    @abstractmethod
    async def fetch_products(self, since: datetime, limit: int) -> List[Dict[str, Any]]:
        """Products/inventory changed at or after `since`, at most `limit` of them"""
        pass
