"""
Repricing rules and the append-only repricing event log.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import DateTime, case, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.enums import RepricingStrategy
from app.core.exceptions import RuleNotFoundError, ValidationError
from app.core.utils import utcnow
from app.models.repricing import RepricingEvent, RepricingRule

logger = logging.getLogger(__name__)

# Fields a caller may set on a rule; scheduling fields are owned by the scheduler
RULE_FIELDS = (
    "name",
    "description",
    "is_active",
    "priority",
    "strategy",
    "parameters",
    "min_price",
    "max_price",
    "marketplaces",
    "interval_minutes",
    "user_id",
)


class RepricingService:
    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    # --- Rules ---

    async def list_rules(self, organization_id: str, active_only: bool = False) -> List[RepricingRule]:
        stmt = select(RepricingRule).where(RepricingRule.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(RepricingRule.is_active.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(RepricingRule.priority.desc(), RepricingRule.created_at))
            return list(result.scalars().all())

    async def get_rule(self, rule_id: str) -> RepricingRule:
        async with self.session_factory() as session:
            rule = await session.get(RepricingRule, rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Repricing rule {rule_id} not found")
        return rule

    async def create_rule(self, organization_id: str, data: Dict[str, Any]) -> RepricingRule:
        values = self._clean(data)
        if "name" not in values or "strategy" not in values:
            raise ValidationError("A rule needs a name and a strategy")

        rule = RepricingRule(
            organization_id=organization_id,
            is_active=values.pop("is_active", True),
            priority=values.pop("priority", 1),
            parameters=values.pop("parameters", None) or {},
            marketplaces=values.pop("marketplaces", None) or [],
            interval_minutes=values.pop("interval_minutes", 60),
            next_run=None,  # fires on the next cycle
            created_at=self.clock(),
            **values,
        )
        self._check_bounds(rule.min_price, rule.max_price)

        async with self.session_factory() as session:
            session.add(rule)
            await session.commit()
        logger.info("Created repricing rule %s (%s) for organization %s", rule.id, rule.strategy, organization_id)
        return rule

    async def update_rule(self, rule_id: str, data: Dict[str, Any]) -> RepricingRule:
        values = self._clean(data)
        async with self.session_factory() as session:
            rule = await session.get(RepricingRule, rule_id)
            if rule is None:
                raise RuleNotFoundError(f"Repricing rule {rule_id} not found")
            for key, value in values.items():
                setattr(rule, key, value)
            self._check_bounds(rule.min_price, rule.max_price)
            await session.commit()
        return rule

    async def delete_rule(self, rule_id: str) -> None:
        async with self.session_factory() as session:
            rule = await session.get(RepricingRule, rule_id)
            if rule is None:
                raise RuleNotFoundError(f"Repricing rule {rule_id} not found")
            await session.delete(rule)
            await session.commit()
        logger.info("Deleted repricing rule %s", rule_id)

    async def get_active_rules_due_for_execution(self, now: Optional[datetime] = None) -> List[RepricingRule]:
        """Active rules with no next_run or one in the past, highest priority first."""
        now = now or self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepricingRule)
                .where(
                    RepricingRule.is_active.is_(True),
                    or_(
                        RepricingRule.next_run.is_(None),
                        RepricingRule.next_run <= literal(now, type_=DateTime(timezone=True)),
                    ),
                )
                .order_by(RepricingRule.priority.desc(), RepricingRule.created_at, RepricingRule.id)
            )
            return list(result.scalars().all())

    # --- Events ---

    async def record_outcome(
        self,
        rule: RepricingRule,
        event: RepricingEvent,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Append the event and move the rule's schedule forward in one transaction.

        The schedule only moves if last_run is older than `now`, so several
        events recorded for the same rule in one cycle advance it once.
        Returns True when the schedule moved.
        """
        now = now or self.clock()
        event.rule_id = rule.id
        if event.organization_id is None:
            event.organization_id = rule.organization_id
        if event.created_at is None:
            event.created_at = now

        now_value = literal(now, type_=DateTime(timezone=True))
        async with self.session_factory() as session:
            session.add(event)
            result = await session.execute(
                update(RepricingRule)
                .where(
                    RepricingRule.id == rule.id,
                    or_(RepricingRule.last_run.is_(None), RepricingRule.last_run < now_value),
                )
                .values(last_run=now, next_run=now + timedelta(minutes=rule.interval_minutes or 0))
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        advanced = result.rowcount > 0
        if advanced:
            rule.last_run = now
            rule.next_run = now + timedelta(minutes=rule.interval_minutes or 0)
        return advanced

    async def get_rule_events(self, rule_id: str, limit: int = 100) -> List[RepricingEvent]:
        return await self._events(RepricingEvent.rule_id == rule_id, limit=limit)

    async def get_product_events(self, organization_id: str, product_id: str, limit: int = 100) -> List[RepricingEvent]:
        return await self._events(
            RepricingEvent.organization_id == organization_id,
            RepricingEvent.product_id == product_id,
            limit=limit,
        )

    async def get_marketplace_events(self, organization_id: str, marketplace_id: str, limit: int = 100) -> List[RepricingEvent]:
        return await self._events(
            RepricingEvent.organization_id == organization_id,
            RepricingEvent.marketplace_id == marketplace_id,
            limit=limit,
        )

    async def get_recent_events(self, organization_id: str, limit: int = 100) -> List[RepricingEvent]:
        return await self._events(RepricingEvent.organization_id == organization_id, limit=limit)

    async def get_rule_success_rate(self, rule_id: str) -> Dict[str, Any]:
        """Success percentage over every recorded event of a rule, from the event log."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    func.count(RepricingEvent.id),
                    func.coalesce(func.sum(case((RepricingEvent.success.is_(True), 1), else_=0)), 0),
                ).where(RepricingEvent.rule_id == rule_id)
            )
            total, successful = result.one()

        total = int(total or 0)
        successful = int(successful or 0)
        rate = round(successful / total * 100, 2) if total else 0.0
        return {"success_rate": rate, "total_events": total, "successful_events": successful}

    async def _events(self, *conditions, limit: int = 100) -> List[RepricingEvent]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepricingEvent)
                .where(*conditions)
                .order_by(RepricingEvent.created_at.desc(), RepricingEvent.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- Helpers ---

    @staticmethod
    def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
        values = {key: value for key, value in data.items() if key in RULE_FIELDS}
        if "strategy" in values:
            try:
                values["strategy"] = RepricingStrategy(values["strategy"]).value
            except ValueError as e:
                raise ValidationError(str(e))
        if "marketplaces" in values and values["marketplaces"] is not None:
            values["marketplaces"] = [getattr(m, "value", m) for m in values["marketplaces"]]
        return values

    @staticmethod
    def _check_bounds(min_price: Optional[float], max_price: Optional[float]) -> None:
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError("min_price cannot be greater than max_price")
