"""
Repricing scheduler.

Each cycle picks the monitored products whose check interval has elapsed,
refreshes their Buy Box snapshot, lets the engine apply the best due rule of
their organization and records the outcome as an immutable event.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from app.core.config import Settings, get_settings
from app.core.enums import RepricingAction
from app.core.exceptions import AdapterNotRegisteredError, ValidationError
from app.core.security import validate_scheduler_headers
from app.core.utils import MAX_INTERVAL_MINUTES, is_valid_interval, utcnow
from app.integrations.base import Credentials
from app.integrations.buybox import BuyBoxMonitor, BuyBoxSnapshot
from app.integrations.registry import MarketplaceRegistry
from app.models.buybox import MonitoredProduct
from app.models.repricing import RepricingEvent, RepricingRule
from app.scheduler import IntervalDriver
from app.services.buybox_service import BuyBoxService
from app.services.connection_service import ConnectionService
from app.services.credentials import CredentialProvider
from app.services.repricing_engine import RepricingEngine
from app.services.repricing_service import RepricingService

logger = logging.getLogger(__name__)


@dataclass
class RepricingRunReport:
    rules_due: int = 0
    products_due: int = 0
    products_evaluated: int = 0
    successful_events: int = 0
    failed_events: int = 0
    price_changes: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


class RepricingScheduler:
    def __init__(
        self,
        rules: RepricingService,
        buybox: BuyBoxService,
        connections: ConnectionService,
        credential_provider: CredentialProvider,
        monitors: MarketplaceRegistry[BuyBoxMonitor],
        engine: Optional[RepricingEngine] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        driver: Optional[IntervalDriver] = None,
    ):
        self.rules = rules
        self.buybox = buybox
        self.connections = connections
        self.credential_provider = credential_provider
        self.monitors = monitors
        self.engine = engine or RepricingEngine()
        self.settings = settings or get_settings()
        self.clock = clock
        self.driver = driver or IntervalDriver("repricing")

        self.interval_minutes = self.settings.REPRICING_INTERVAL_MINUTES
        self.call_timeout = self.settings.SYNC_CALL_TIMEOUT_SECONDS

        self._running = False
        self._cycle_lock = asyncio.Lock()
        self.last_run_at: Optional[datetime] = None
        self.last_report: Optional[RepricingRunReport] = None

    async def run_cycle(self) -> RepricingRunReport:
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> RepricingRunReport:
        start_time = time.monotonic()
        now = self.clock()
        report = RepricingRunReport(started_at=now)

        rules = await self.rules.get_active_rules_due_for_execution(now)
        products = await self.buybox.get_products_due(now)
        report.rules_due = len(rules)
        report.products_due = len(products)
        logger.info("Repricing cycle: %s rule(s) due, %s product(s) due", len(rules), len(products))

        rules_by_org: Dict[str, List[RepricingRule]] = defaultdict(list)
        for rule in rules:
            rules_by_org[rule.organization_id].append(rule)

        for product in products:
            rule = self.engine.select_rule(product, rules_by_org.get(product.organization_id, []))
            if rule is None:
                continue
            report.products_evaluated += 1
            try:
                event = await self.process_product(product, rule, now)
            except Exception as e:
                logger.exception("Repricing %s failed unexpectedly", product.id)
                report.failed_events += 1
                report.errors.append({"product_id": product.id, "error": str(e) or e.__class__.__name__})
                continue
            self._count(report, event, product)

        report.execution_time = round(time.monotonic() - start_time, 3)
        self.last_run_at = self.clock()
        self.last_report = report
        logger.info(
            "Repricing cycle completed in %.2fs: %s evaluated, %s successful, %s failed, %s price change(s)",
            report.execution_time, report.products_evaluated, report.successful_events,
            report.failed_events, report.price_changes,
        )
        return report

    async def execute_rule(self, rule_id: str, organization_id: Optional[str] = None) -> RepricingRunReport:
        """Run one rule now over every monitored product it covers, ignoring schedules."""
        rule = await self.rules.get_rule(rule_id)
        if organization_id is not None and rule.organization_id != organization_id:
            raise ValidationError(f"Rule {rule_id} belongs to another organization")
        if not rule.is_active:
            raise ValidationError(f"Rule {rule_id} is not active")

        now = self.clock()
        report = RepricingRunReport(rules_due=1, started_at=now)
        products = await self.buybox.list_products(organization_id=rule.organization_id, monitoring_only=True)
        for product in products:
            if not rule.applies_to(product.marketplace_id):
                continue
            report.products_due += 1
            report.products_evaluated += 1
            try:
                event = await self.process_product(product, rule, now)
            except Exception as e:
                logger.exception("Executing rule %s on %s failed", rule_id, product.id)
                report.failed_events += 1
                report.errors.append({"product_id": product.id, "error": str(e) or e.__class__.__name__})
                continue
            self._count(report, event, product)

        logger.info("Executed rule %s over %s product(s)", rule_id, report.products_evaluated)
        return report

    async def process_product(self, product: MonitoredProduct, rule: RepricingRule, now: datetime) -> RepricingEvent:
        """Check, evaluate, apply and record one product against one rule."""
        monitor: Optional[BuyBoxMonitor] = None
        snapshot: Optional[BuyBoxSnapshot] = None
        check_error: Optional[str] = None

        try:
            monitor = await self._monitor_for(product)
            snapshot = await asyncio.wait_for(
                monitor.check_buy_box_status(product.marketplace_product_id or product.product_id),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            check_error = f"Buy Box check timed out after {self.call_timeout:g}s"
        except Exception as e:
            check_error = f"Buy Box check failed: {str(e) or e.__class__.__name__}"

        if snapshot is not None:
            product = await self.buybox.record_snapshot(product, snapshot, now)
            event = self.engine.evaluate(product, [rule], snapshot, now)
        else:
            logger.error("Product %s: %s", product.id, check_error)
            await self.buybox.mark_checked(product, now)
            event = self.engine.evaluate(product, [rule], None, now)
            event.success = False
            event.action = RepricingAction.NONE.value
            event.new_price = None
            event.error = check_error

        if event.success and event.action != RepricingAction.MAINTAIN.value:
            await self._apply_price(monitor, product, event)

        await self.rules.record_outcome(rule, event, now)
        return event

    async def _apply_price(self, monitor: BuyBoxMonitor, product: MonitoredProduct, event: RepricingEvent) -> None:
        try:
            accepted = await asyncio.wait_for(
                monitor.update_price(product.marketplace_product_id or product.product_id, event.new_price),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            accepted, error = False, f"Price update timed out after {self.call_timeout:g}s"
        except Exception as e:
            accepted, error = False, f"Price update failed: {str(e) or e.__class__.__name__}"
        else:
            error = None if accepted else "Price update rejected by marketplace"

        if not accepted:
            logger.error("Product %s: %s", product.id, error)
            event.success = False
            event.error = error
            return

        await self.buybox.set_price(product, event.new_price)
        logger.info(
            "Repriced %s on %s: %s -> %s (%s)",
            product.product_id, product.marketplace_id, event.previous_price, event.new_price, event.reason,
        )

    async def _monitor_for(self, product: MonitoredProduct) -> BuyBoxMonitor:
        """Build the marketplace monitor with the organization's connection credentials."""
        if not self.monitors.is_registered(product.marketplace_id):
            raise AdapterNotRegisteredError(f"No Buy Box monitor registered for '{product.marketplace_id}'")

        connection = await self.connections.find_active(product.organization_id, product.marketplace_id)

        values: Dict[str, Any] = {}
        if connection is not None:
            values = await asyncio.wait_for(
                self.credential_provider.get_credentials(connection.credential_reference),
                timeout=self.call_timeout,
            )
        credentials = Credentials(marketplace_id=product.marketplace_id, values=values or {})
        return self.monitors.get(product.marketplace_id, credentials)

    @staticmethod
    def _count(report: RepricingRunReport, event: RepricingEvent, product: MonitoredProduct) -> None:
        if event.success:
            report.successful_events += 1
            if event.action in (RepricingAction.INCREASE.value, RepricingAction.DECREASE.value):
                report.price_changes += 1
        else:
            report.failed_events += 1
            report.errors.append({"product_id": product.id, "error": event.error or "unknown error"})

    # --- In-process driver ---

    def start(self, interval_minutes: Optional[int] = None) -> None:
        if self._running:
            logger.warning("Repricing scheduler is already running")
            return
        if interval_minutes is not None:
            if not is_valid_interval(interval_minutes):
                raise ValidationError(f"Interval must be a positive number of minutes no greater than {MAX_INTERVAL_MINUTES}")
            self.interval_minutes = interval_minutes
        self.driver.start(self.run_cycle, self.interval_minutes)
        self._running = True
        logger.info("Repricing scheduler started with %s minute interval", self.interval_minutes)

    def stop(self) -> None:
        if not self._running:
            return
        self.driver.stop()
        self._running = False
        logger.info("Repricing scheduler stopped")

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
