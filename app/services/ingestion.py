"""
Ingestion pipelines that receive fetched marketplace batches.

The orchestrator only depends on IngestionService. StagingIngestionService is
the concrete pipeline used by the service: it stages raw records in
`ingested_records` and reports what changed.
"""
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.enums import IngestionEntity
from app.core.exceptions import IngestionError
from app.core.utils import utcnow
from app.models.ingested_record import IngestedRecord

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped

    def to_dict(self) -> Dict[str, int]:
        return {"created": self.created, "updated": self.updated, "skipped": self.skipped}


class IngestionService(ABC):
    @abstractmethod
    async def ingest(self, marketplace_id: str, tenant_id: str, records: Sequence[Dict[str, Any]]) -> IngestResult:
        """Store a batch of records fetched for one tenant on one marketplace"""
        pass


# Keys tried, in order, to find a record's marketplace-side identifier
EXTERNAL_ID_KEYS: Dict[IngestionEntity, Tuple[str, ...]] = {
    IngestionEntity.ORDER: ("id", "order_id", "orderId", "order_number"),
    IngestionEntity.PRODUCT: ("id", "product_id", "productId", "sku"),
}


def normalise_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip through JSON so datetimes, Decimals and the like are stored as strings."""
    return json.loads(json.dumps(record, default=str))


def record_checksum(record: Dict[str, Any]) -> str:
    payload = json.dumps(record, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StagingIngestionService(IngestionService):
    """Upserts raw records keyed by (tenant, marketplace, entity, external id)."""

    def __init__(
        self,
        entity: IngestionEntity,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.entity = IngestionEntity(entity)
        self.session_factory = session_factory
        self.clock = clock

    def external_id(self, record: Dict[str, Any]) -> Optional[str]:
        for key in EXTERNAL_ID_KEYS[self.entity]:
            value = record.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    async def ingest(self, marketplace_id: str, tenant_id: str, records: Sequence[Dict[str, Any]]) -> IngestResult:
        result = IngestResult()

        # Later duplicates in a batch replace earlier ones
        incoming: Dict[str, Dict[str, Any]] = {}
        for record in records:
            if not isinstance(record, dict):
                result.skipped += 1
                continue
            external_id = self.external_id(record)
            if external_id is None:
                logger.warning("Skipping %s from %s without an identifier", self.entity.value, marketplace_id)
                result.skipped += 1
                continue
            if external_id in incoming:
                result.skipped += 1
            incoming[external_id] = normalise_record(record)

        if not incoming:
            return result

        now = self.clock()
        try:
            async with self.session_factory() as session:
                existing_rows = await session.execute(
                    select(IngestedRecord).where(
                        IngestedRecord.tenant_id == tenant_id,
                        IngestedRecord.marketplace_id == marketplace_id,
                        IngestedRecord.entity_type == self.entity.value,
                        IngestedRecord.external_id.in_(list(incoming)),
                    )
                )
                existing = {row.external_id: row for row in existing_rows.scalars().all()}

                for external_id, record in incoming.items():
                    checksum = record_checksum(record)
                    row = existing.get(external_id)
                    if row is None:
                        session.add(IngestedRecord(
                            tenant_id=tenant_id,
                            marketplace_id=marketplace_id,
                            entity_type=self.entity.value,
                            external_id=external_id,
                            checksum=checksum,
                            payload=record,
                            first_seen_at=now,
                            last_seen_at=now,
                        ))
                        result.created += 1
                    elif row.checksum == checksum:
                        row.last_seen_at = now
                        result.skipped += 1
                    else:
                        row.checksum = checksum
                        row.payload = record
                        row.last_seen_at = now
                        result.updated += 1

                await session.commit()
        except Exception as e:
            logger.exception("Failed to stage %s batch for tenant %s on %s", self.entity.value, tenant_id, marketplace_id)
            raise IngestionError(f"Failed to stage {self.entity.value}s: {e}") from e

        logger.info(
            "Staged %ss for tenant %s on %s: %s",
            self.entity.value, tenant_id, marketplace_id, result.to_dict(),
        )
        return result
