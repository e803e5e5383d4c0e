# app/models/repricing.py
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, JSON, Text
from sqlalchemy.sql import func

from app.database import Base
from app.core.utils import utcnow


class RepricingRule(Base):
    """An organisation's pricing strategy, evaluated on its own cadence."""
    __tablename__ = "repricing_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    priority = Column(Integer, default=1, nullable=False)  # higher wins

    # --- Rule body ---
    strategy = Column(String(50), nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)
    min_price = Column(Float, nullable=True)
    max_price = Column(Float, nullable=True)
    marketplaces = Column(JSON, nullable=False, default=list)  # empty list = every marketplace

    # --- Scheduling (written by the repricing scheduler only) ---
    interval_minutes = Column(Integer, default=60, nullable=False)
    last_run = Column(DateTime(timezone=True), nullable=True)
    next_run = Column(DateTime(timezone=True), nullable=True, index=True)  # null = due now

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    def applies_to(self, marketplace_id: str) -> bool:
        return not self.marketplaces or marketplace_id in self.marketplaces

    def __repr__(self):
        return (f"<RepricingRule(id={self.id}, org='{self.organization_id}', name='{self.name}', "
                f"strategy='{self.strategy}', priority={self.priority}, active={self.is_active})>")


class RepricingEvent(Base):
    """
    Immutable record of one rule evaluation against one product.
    Rows are only ever inserted.
    """
    __tablename__ = "repricing_events"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(String(36), nullable=True, index=True)  # null when no rule matched
    organization_id = Column(String(64), nullable=True, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    sku = Column(String(128), nullable=True)
    marketplace_id = Column(String(32), nullable=False, index=True)

    success = Column(Boolean, nullable=False, index=True)
    strategy = Column(String(50), nullable=True)
    action = Column(String(20), nullable=False)
    previous_price = Column(Float, nullable=True)
    new_price = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)

    def __repr__(self):
        return (f"<RepricingEvent(id={self.id}, rule={self.rule_id}, product='{self.product_id}', "
                f"success={self.success}, action='{self.action}', price={self.previous_price}->{self.new_price})>")
