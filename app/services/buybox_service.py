"""
Buy Box monitoring store.

Tracks which products are watched on which marketplace, how often they are
re-checked and how often we held the Buy Box across the snapshots seen.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.enums import MarketplaceId
from app.core.exceptions import MonitoredProductNotFoundError, ValidationError
from app.core.utils import as_utc, utcnow
from app.integrations.buybox import BuyBoxSnapshot
from app.models.buybox import MonitoredProduct, monitored_product_id

logger = logging.getLogger(__name__)


def is_due(product: MonitoredProduct, now: datetime) -> bool:
    """
    True when a product should get a competitive price check at `now`.

    Never-checked products and a non-positive frequency are always due.
    """
    if not product.is_monitoring:
        return False
    frequency = product.monitoring_frequency
    if frequency is None or frequency <= 0:
        return True
    last_checked = as_utc(product.last_checked)
    if last_checked is None:
        return True
    return now >= last_checked + timedelta(minutes=frequency)


class BuyBoxService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    async def get(self, product_id: str, marketplace_id: str) -> Optional[MonitoredProduct]:
        async with self.session_factory() as session:
            return await session.get(MonitoredProduct, monitored_product_id(product_id, marketplace_id))

    async def get_or_raise(self, product_id: str, marketplace_id: str) -> MonitoredProduct:
        product = await self.get(product_id, marketplace_id)
        if product is None:
            raise MonitoredProductNotFoundError(f"Product {product_id} is not monitored on {marketplace_id}")
        return product

    async def list_products(
        self,
        organization_id: Optional[str] = None,
        marketplace_id: Optional[str] = None,
        monitoring_only: bool = False,
    ) -> List[MonitoredProduct]:
        stmt = select(MonitoredProduct)
        if organization_id:
            stmt = stmt.where(MonitoredProduct.organization_id == organization_id)
        if marketplace_id:
            stmt = stmt.where(MonitoredProduct.marketplace_id == marketplace_id)
        if monitoring_only:
            stmt = stmt.where(MonitoredProduct.is_monitoring.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(MonitoredProduct.id))
            return list(result.scalars().all())

    async def get_products_due(
        self,
        now: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[MonitoredProduct]:
        """Monitored products whose check interval has elapsed. Reads only."""
        now = now or self.clock()
        products = await self.list_products(organization_id=organization_id, monitoring_only=True)
        return [product for product in products if is_due(product, now)]

    async def start_monitoring(
        self,
        product_id: str,
        marketplace_id: str,
        organization_id: str,
        sku: Optional[str] = None,
        marketplace_product_id: Optional[str] = None,
        monitoring_frequency: Optional[int] = None,
        current_price: Optional[float] = None,
        cost_price: Optional[float] = None,
    ) -> MonitoredProduct:
        try:
            marketplace_id = MarketplaceId(marketplace_id).value
        except ValueError as e:
            raise ValidationError(str(e))

        if monitoring_frequency is None:
            monitoring_frequency = self.settings.REPRICING_DEFAULT_MONITORING_FREQUENCY

        async with self.session_factory() as session:
            key = monitored_product_id(product_id, marketplace_id)
            product = await session.get(MonitoredProduct, key)
            if product is None:
                product = MonitoredProduct(
                    id=key,
                    product_id=product_id,
                    marketplace_id=marketplace_id,
                    organization_id=organization_id,
                    snapshot_count=0,
                    win_count=0,
                    buy_box_win_percentage=0.0,
                    created_at=self.clock(),
                )
                session.add(product)
            elif product.organization_id != organization_id:
                raise ValidationError(f"Product {product_id} belongs to another organization")

            product.is_monitoring = True
            product.monitoring_frequency = monitoring_frequency
            if sku is not None:
                product.sku = sku
            if marketplace_product_id is not None:
                product.marketplace_product_id = marketplace_product_id
            if current_price is not None:
                product.current_price = current_price
            if cost_price is not None:
                product.cost_price = cost_price

            await session.commit()

        logger.info("Monitoring %s on %s every %s minutes", product_id, marketplace_id, monitoring_frequency)
        return product

    async def stop_monitoring(self, product_id: str, marketplace_id: str) -> MonitoredProduct:
        async with self.session_factory() as session:
            product = await session.get(MonitoredProduct, monitored_product_id(product_id, marketplace_id))
            if product is None:
                raise MonitoredProductNotFoundError(f"Product {product_id} is not monitored on {marketplace_id}")
            product.is_monitoring = False
            await session.commit()
        logger.info("Stopped monitoring %s on %s", product_id, marketplace_id)
        return product

    async def record_snapshot(
        self,
        product: MonitoredProduct,
        snapshot: BuyBoxSnapshot,
        now: Optional[datetime] = None,
    ) -> MonitoredProduct:
        """Store a fresh competitive snapshot and update the running win percentage."""
        now = now or self.clock()
        async with self.session_factory() as session:
            row = await session.get(MonitoredProduct, product.id)
            if row is None:
                raise MonitoredProductNotFoundError(f"Monitored product {product.id} not found")

            row.snapshot_count = (row.snapshot_count or 0) + 1
            if snapshot.is_winning:
                row.win_count = (row.win_count or 0) + 1
            row.buy_box_win_percentage = round(row.win_count / row.snapshot_count * 100, 2)
            row.last_snapshot = snapshot.model_dump(mode="json")
            row.last_checked = now
            if snapshot.our_price is not None:
                row.current_price = snapshot.our_price

            await session.commit()
        return row

    async def mark_checked(self, product: MonitoredProduct, now: Optional[datetime] = None) -> None:
        """Record a check attempt that produced no snapshot."""
        async with self.session_factory() as session:
            row = await session.get(MonitoredProduct, product.id)
            if row is not None:
                row.last_checked = now or self.clock()
                await session.commit()

    async def set_price(self, product: MonitoredProduct, new_price: float) -> None:
        async with self.session_factory() as session:
            row = await session.get(MonitoredProduct, product.id)
            if row is None:
                raise MonitoredProductNotFoundError(f"Monitored product {product.id} not found")
            row.current_price = new_price
            await session.commit()
