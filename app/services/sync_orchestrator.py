"""
Marketplace sync orchestration.

One cycle lists the active connections and, for each one independently,
resolves credentials, fetches orders and products since the connection's
watermark, hands non-empty batches to ingestion and records the outcome.
A failing tenant never stops the others: per-connection errors are counted
in the run report, only a failure to list connections escapes run_cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from app.core.config import Settings, get_settings
from app.core.enums import ConnectionStatus, IngestionEntity, MarketplaceId, SyncStatus
from app.core.exceptions import ConnectionNotFoundError, MarketplaceAPIError, SyncError, ValidationError
from app.core.security import validate_scheduler_headers
from app.core.utils import EPOCH, MAX_INTERVAL_MINUTES, as_utc, is_valid_interval, utcnow
from app.integrations.base import Credentials, MarketplaceAdapter
from app.integrations.registry import MarketplaceRegistry
from app.models.connection import MarketplaceConnection
from app.scheduler import IntervalDriver
from app.services.connection_service import ConnectionService
from app.services.credentials import CredentialProvider
from app.services.ingestion import IngestionService

logger = logging.getLogger(__name__)


@dataclass
class ConnectionFailure:
    connection_id: str
    marketplace_id: str
    error: str


@dataclass
class ConnectionSyncResult:
    connection_id: str
    success: bool
    message: str
    orders_processed: int = 0
    products_processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncRunReport:
    total_connections: int = 0
    successful_connections: int = 0
    failed_connections: int = 0
    errors: List[ConnectionFailure] = field(default_factory=list)
    skipped_connections: List[str] = field(default_factory=list)  # vanished mid-cycle
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    execution_time: float = 0.0

    @property
    def success(self) -> bool:
        """False only when at least one connection ran and every one of them failed."""
        return not (self.failed_connections > 0 and self.successful_connections == 0)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class _SideOutcome:
    processed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class SyncOrchestrator:
    """Owns the sync cycle and, optionally, an in-process driver that repeats it."""

    def __init__(
        self,
        store: ConnectionService,
        credential_provider: CredentialProvider,
        adapters: MarketplaceRegistry[MarketplaceAdapter],
        order_ingestion: IngestionService,
        product_ingestion: IngestionService,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        driver: Optional[IntervalDriver] = None,
    ):
        self.store = store
        self.credential_provider = credential_provider
        self.adapters = adapters
        self.ingestion = {
            IngestionEntity.ORDER: order_ingestion,
            IngestionEntity.PRODUCT: product_ingestion,
        }
        self.settings = settings or get_settings()
        self.clock = clock
        self.driver = driver or IntervalDriver("marketplace_sync")

        self.interval_minutes = self.settings.SYNC_INTERVAL_MINUTES
        self.page_size = self.settings.SYNC_PAGE_SIZE
        self.call_timeout = self.settings.SYNC_CALL_TIMEOUT_SECONDS

        self._running = False
        self._cycle_lock = asyncio.Lock()
        self.last_run_at: Optional[datetime] = None
        self.last_report: Optional[SyncRunReport] = None

    # --- Cycle ---

    async def run_cycle(self) -> SyncRunReport:
        """
        One full pass over every active connection.

        Cycles never overlap; a second caller waits for the running one.
        Raises SyncError only when the connection list itself cannot be loaded.
        """
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> SyncRunReport:
        start_time = time.monotonic()
        report = SyncRunReport(started_at=self.clock())
        logger.info("Starting marketplace sync cycle")

        await self._reset_stale(report.started_at)

        try:
            connections = await self.store.list_active()
        except Exception as e:
            logger.exception("Failed to list active marketplace connections")
            raise SyncError(f"Failed to list active connections: {_describe(e)}") from e

        report.total_connections = len(connections)
        logger.info("Found %s active marketplace connection(s)", len(connections))

        semaphore = asyncio.Semaphore(self.settings.SYNC_MAX_CONCURRENT)

        async def worker(connection: MarketplaceConnection) -> ConnectionSyncResult:
            async with semaphore:
                return await self._sync_connection(connection)

        results = await asyncio.gather(*(worker(c) for c in connections), return_exceptions=True)

        for connection, result in zip(connections, results):
            if isinstance(result, ConnectionNotFoundError):
                logger.warning("Connection %s disappeared during the cycle, skipping", connection.id)
                report.skipped_connections.append(connection.id)
            elif isinstance(result, BaseException):
                logger.error(
                    "Unexpected error syncing connection %s: %s",
                    connection.id, _describe(result), exc_info=result,
                )
                report.failed_connections += 1
                report.errors.append(ConnectionFailure(connection.id, connection.marketplace_id, _describe(result)))
            elif result.success:
                report.successful_connections += 1
            else:
                report.failed_connections += 1
                report.errors.append(ConnectionFailure(connection.id, connection.marketplace_id, result.message))

        report.finished_at = self.clock()
        report.execution_time = round(time.monotonic() - start_time, 3)
        self.last_run_at = report.finished_at
        self.last_report = report

        logger.info(
            "Sync cycle completed in %.2fs: %s successful, %s failed, %s skipped of %s",
            report.execution_time,
            report.successful_connections,
            report.failed_connections,
            len(report.skipped_connections),
            report.total_connections,
        )
        return report

    async def _reset_stale(self, now: datetime) -> None:
        cutoff = now - timedelta(minutes=self.settings.SYNC_STALE_AFTER_MINUTES)
        try:
            await self.store.reset_stale_in_progress(cutoff)
        except Exception:
            logger.exception("Failed to reset stale in_progress connections")

    # --- Manual triggers ---

    async def sync_one(self, connection_id: str) -> ConnectionSyncResult:
        """
        Sync a single connection now.

        Raises ConnectionNotFoundError for an unknown id. A connection that is
        not `connected` is refused without touching its adapter.
        """
        connection = await self.store.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")

        if connection.status != ConnectionStatus.CONNECTED.value:
            logger.info("Refusing to sync connection %s with status %s", connection_id, connection.status)
            return ConnectionSyncResult(
                connection_id=connection_id,
                success=False,
                message=f"Connection is not active (status: {connection.status})",
            )

        return await self._sync_connection(connection)

    async def force_many(self, connection_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Sync the given connections one after another; one failure never stops the rest."""
        results = []
        for connection_id in connection_ids:
            try:
                result = await self.sync_one(connection_id)
                results.append({"connection_id": connection_id, "success": result.success, "message": result.message})
            except ConnectionNotFoundError as e:
                logger.warning("Forced sync skipped: %s", e)
                results.append({"connection_id": connection_id, "success": False, "message": str(e)})
            except Exception as e:
                logger.exception("Forced sync of connection %s failed", connection_id)
                results.append({"connection_id": connection_id, "success": False, "message": _describe(e)})
        return results

    # --- Per connection ---

    async def _call(self, awaitable: Awaitable[Any], what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError:
            raise MarketplaceAPIError(f"{what} timed out after {self.call_timeout:g}s")

    async def _sync_connection(self, connection: MarketplaceConnection) -> ConnectionSyncResult:
        connection_id = connection.id
        label = self._label(connection.marketplace_id)
        started_at = self.clock()

        logger.info(
            "Processing connection %s (%s) for tenant %s",
            connection_id, connection.marketplace_id, connection.tenant_id,
        )

        # Persisted before any network I/O
        if not await self.store.mark_in_progress(connection_id, started_at):
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")

        try:
            values = await self._call(
                self.credential_provider.get_credentials(connection.credential_reference),
                "Credential lookup",
            )
            credentials = Credentials(marketplace_id=connection.marketplace_id, values=values or {})
            adapter = self.adapters.get(connection.marketplace_id, credentials)
        except Exception as e:
            message = f"Failed to prepare {label} sync: {_describe(e)}"
            logger.error("Connection %s: %s", connection_id, message)
            await self.store.record_outcome(connection_id, SyncStatus.ERROR, message, now=self.clock())
            return ConnectionSyncResult(connection_id=connection_id, success=False, message=message)

        since = as_utc(connection.last_synced_at) or EPOCH

        orders = await self._sync_entity(IngestionEntity.ORDER, adapter.fetch_orders, connection, since)
        products = await self._sync_entity(IngestionEntity.PRODUCT, adapter.fetch_products, connection, since)

        sync_status, message, advance = self._classify(label, orders, products)
        await self.store.record_outcome(
            connection_id,
            sync_status,
            None if sync_status == SyncStatus.SUCCESS else message,
            now=self.clock(),
            synced_at=started_at if advance else None,
        )

        if sync_status == SyncStatus.SUCCESS:
            logger.info("Connection %s: %s", connection_id, message)
        else:
            logger.error("Connection %s: %s", connection_id, message)

        return ConnectionSyncResult(
            connection_id=connection_id,
            success=sync_status == SyncStatus.SUCCESS,
            message=message,
            orders_processed=orders.processed,
            products_processed=products.processed,
        )

    async def _sync_entity(
        self,
        entity: IngestionEntity,
        fetch: Callable[[datetime, int], Awaitable[List[Dict[str, Any]]]],
        connection: MarketplaceConnection,
        since: datetime,
    ) -> _SideOutcome:
        name = f"{entity.value}s"
        try:
            records = await self._call(fetch(since, self.page_size), f"Fetching {name}")
        except Exception as e:
            logger.error("Failed to fetch %s for connection %s: %s", name, connection.id, _describe(e))
            return _SideOutcome(error=_describe(e))

        if not records:
            logger.debug("No new %s for connection %s", name, connection.id)
            return _SideOutcome()

        try:
            result = await self._call(
                self.ingestion[entity].ingest(connection.marketplace_id, connection.tenant_id, records),
                f"Ingesting {name}",
            )
        except Exception as e:
            logger.error("Failed to ingest %s for connection %s: %s", name, connection.id, _describe(e))
            return _SideOutcome(error=_describe(e))

        logger.info("Ingested %s %s for connection %s: %s", len(records), name, connection.id, result)
        return _SideOutcome(processed=len(records))

    def _classify(self, label: str, orders: _SideOutcome, products: _SideOutcome) -> Tuple[SyncStatus, str, bool]:
        """Terminal status, message and whether the watermark may advance."""
        if orders.ok and products.ok:
            return (
                SyncStatus.SUCCESS,
                f"Synced {orders.processed} orders and {products.processed} products from {label}",
                True,
            )
        if not orders.ok and not products.ok:
            return (
                SyncStatus.ERROR,
                f"Failed to fetch both orders and products from {label}: "
                f"orders: {orders.error}; products: {products.error}",
                False,
            )
        advance = self.settings.SYNC_ADVANCE_WATERMARK_ON_PARTIAL
        if not orders.ok:
            return SyncStatus.ERROR, f"Failed to fetch orders from {label}: {orders.error}", advance
        return SyncStatus.ERROR, f"Failed to fetch products from {label}: {products.error}", advance

    @staticmethod
    def _label(marketplace_id: str) -> str:
        try:
            return MarketplaceId(marketplace_id).label
        except ValueError:
            return marketplace_id

    # --- In-process driver ---

    def start(self, interval_minutes: Optional[int] = None) -> None:
        """Start periodic syncing; the first cycle runs immediately. Starting twice is a no-op."""
        if self._running:
            logger.warning("Sync orchestrator is already running")
            return
        if interval_minutes is not None:
            self._validate_interval(interval_minutes)
            self.interval_minutes = interval_minutes

        self.driver.start(self.run_cycle, self.interval_minutes)
        self._running = True
        logger.info("Sync orchestrator started with %s minute interval", self.interval_minutes)

    def stop(self) -> None:
        if not self._running:
            logger.info("Sync orchestrator is not running")
            return
        self.driver.stop()
        self._running = False
        logger.info("Sync orchestrator stopped")

    def set_interval(self, minutes: int) -> None:
        """Change the interval; a running driver is restarted on the new timer."""
        self._validate_interval(minutes)
        self.interval_minutes = minutes
        if self._running:
            self.driver.reschedule(minutes)
        logger.info("Sync interval set to %s minutes", minutes)

    @staticmethod
    def _validate_interval(minutes: Any) -> None:
        if not is_valid_interval(minutes):
            raise ValidationError(f"Interval must be a positive number of minutes no greater than {MAX_INTERVAL_MINUTES}")

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "is_scheduled": self.driver.is_scheduled,
            "interval_minutes": self.interval_minutes,
            "cycle_in_progress": self._cycle_lock.locked(),
            "last_run_at": self.last_run_at,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }

    def validate_scheduler_request(self, headers: Mapping[str, str]) -> bool:
        return validate_scheduler_headers(headers, self.settings)

    def shutdown(self) -> None:
        self.stop()
        self.driver.shutdown()
