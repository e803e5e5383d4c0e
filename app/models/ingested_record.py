# app/models/ingested_record.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func

from app.database import Base
from app.core.utils import utcnow


class IngestedRecord(Base):
    """
    Raw marketplace record staged for the system of record.

    Keyed by (tenant, marketplace, entity type, external id); `checksum`
    lets re-delivered unchanged records be skipped.
    """
    __tablename__ = "ingested_records"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    marketplace_id = Column(String(32), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False, index=True)  # order / product
    external_id = Column(String(255), nullable=False)
    checksum = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)

    first_seen_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "marketplace_id", "entity_type", "external_id",
            name="uq_ingested_record_identity",
        ),
    )

    def __repr__(self):
        return (f"<IngestedRecord(id={self.id}, tenant='{self.tenant_id}', "
                f"{self.marketplace_id}/{self.entity_type}/{self.external_id})>")
