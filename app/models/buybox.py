# app/models/buybox.py
from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, JSON
from sqlalchemy.sql import func

from app.database import Base
from app.core.utils import utcnow


def monitored_product_id(product_id: str, marketplace_id: str) -> str:
    return f"{product_id}_{marketplace_id}"


class MonitoredProduct(Base):
    """
    Buy Box history for one product on one marketplace.

    A product is due for a competitive check once `monitoring_frequency`
    minutes have passed since `last_checked`.
    """
    __tablename__ = "monitored_products"

    id = Column(String(160), primary_key=True)  # "{product_id}_{marketplace_id}"
    product_id = Column(String(64), nullable=False, index=True)
    sku = Column(String(128), nullable=True, index=True)
    organization_id = Column(String(64), nullable=False, index=True)
    marketplace_id = Column(String(32), nullable=False, index=True)
    marketplace_product_id = Column(String(128), nullable=True)

    # --- Monitoring ---
    is_monitoring = Column(Boolean, default=True, nullable=False, index=True)
    monitoring_frequency = Column(Integer, default=60, nullable=False)  # minutes
    last_checked = Column(DateTime(timezone=True), nullable=True, index=True)

    # --- Pricing ---
    current_price = Column(Float, nullable=True)
    cost_price = Column(Float, nullable=True)

    # --- Competitive state ---
    last_snapshot = Column(JSON, nullable=True)
    snapshot_count = Column(Integer, default=0, nullable=False)
    win_count = Column(Integer, default=0, nullable=False)
    buy_box_win_percentage = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    def __repr__(self):
        return (f"<MonitoredProduct(id='{self.id}', marketplace='{self.marketplace_id}', "
                f"monitoring={self.is_monitoring}, every={self.monitoring_frequency}m)>")
