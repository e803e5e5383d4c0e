"""
Rule-based price decisions.

The engine is pure: it reads a product, its latest Buy Box snapshot and the
candidate rules, and returns an unsaved RepricingEvent. Strategy failures are
reported on the event, never raised.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from app.core.enums import AdjustmentDirection, BuyBoxOwnershipStatus, RepricingAction, RepricingStrategy
from app.core.exceptions import PricingStrategyError
from app.core.utils import utcnow
from app.integrations.buybox import BuyBoxSnapshot
from app.models.buybox import MonitoredProduct
from app.models.repricing import RepricingEvent, RepricingRule

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Parameter defaults offered by the rule builder
DEFAULT_PARAMETERS: Dict[RepricingStrategy, Dict[str, Any]] = {
    RepricingStrategy.MATCH_BUY_BOX: {},
    RepricingStrategy.BEAT_BUY_BOX: {"amount": 0.01},
    RepricingStrategy.MATCH_LOWEST: {},
    RepricingStrategy.BEAT_LOWEST: {"amount": 0.01},
    RepricingStrategy.PERCENTAGE_ADJUSTMENT: {"percentage": 5, "direction": AdjustmentDirection.DECREASE.value},
    RepricingStrategy.FIXED_ADJUSTMENT: {"amount": 1, "direction": AdjustmentDirection.DECREASE.value},
    RepricingStrategy.MAINTAIN_MARGIN: {"min_margin_percent": 15, "target_margin_percent": 20},
}

BUY_BOX_STRATEGIES = frozenset({RepricingStrategy.MATCH_BUY_BOX, RepricingStrategy.BEAT_BUY_BOX})


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _required(value: Optional[float], what: str) -> Decimal:
    if value is None:
        raise PricingStrategyError(f"No {what} available")
    return Decimal(str(value))


def _direction(parameters: Dict[str, Any]) -> int:
    try:
        direction = AdjustmentDirection(parameters.get("direction", AdjustmentDirection.DECREASE.value))
    except ValueError:
        raise PricingStrategyError(f"Unknown adjustment direction '{parameters.get('direction')}'")
    return 1 if direction == AdjustmentDirection.INCREASE else -1


def _margin_price(cost: Decimal, margin_percent: Any) -> Decimal:
    """Selling price that leaves `margin_percent` of it as margin over cost."""
    margin = Decimal(str(margin_percent)) / 100
    if margin >= 1:
        raise PricingStrategyError("Margin percent must be below 100")
    return cost / (1 - margin)


def calculate_price(
    strategy: RepricingStrategy,
    parameters: Dict[str, Any],
    current_price: Optional[float],
    snapshot: Optional[BuyBoxSnapshot],
    cost_price: Optional[float] = None,
) -> Tuple[Decimal, str]:
    """Unclamped target price and a short reason for one strategy."""
    params = {**DEFAULT_PARAMETERS[strategy], **(parameters or {})}
    buy_box_price = snapshot.buy_box_price if snapshot else None
    lowest_price = snapshot.lowest_price if snapshot else None

    if strategy == RepricingStrategy.MATCH_BUY_BOX:
        return _required(buy_box_price, "Buy Box price"), "Matched Buy Box price"

    if strategy == RepricingStrategy.BEAT_BUY_BOX:
        amount = Decimal(str(params["amount"]))
        return _required(buy_box_price, "Buy Box price") - amount, f"Beat Buy Box price by {amount}"

    if strategy == RepricingStrategy.MATCH_LOWEST:
        return _required(lowest_price, "lowest competitor price"), "Matched lowest price"

    if strategy == RepricingStrategy.BEAT_LOWEST:
        amount = Decimal(str(params["amount"]))
        return _required(lowest_price, "lowest competitor price") - amount, f"Beat lowest price by {amount}"

    if strategy == RepricingStrategy.PERCENTAGE_ADJUSTMENT:
        current = _required(current_price, "current price")
        percentage = Decimal(str(params["percentage"]))
        sign = _direction(params)
        return current * (1 + sign * percentage / 100), f"Adjusted price by {'+' if sign > 0 else '-'}{percentage}%"

    if strategy == RepricingStrategy.FIXED_ADJUSTMENT:
        current = _required(current_price, "current price")
        amount = Decimal(str(params["amount"]))
        sign = _direction(params)
        return current + sign * amount, f"Adjusted price by {'+' if sign > 0 else '-'}{amount}"

    if strategy == RepricingStrategy.MAINTAIN_MARGIN:
        cost = _required(cost_price, "cost price")
        floor = _margin_price(cost, params["min_margin_percent"])
        target = _margin_price(cost, params["target_margin_percent"])
        competitor = buy_box_price if buy_box_price is not None else lowest_price
        if competitor is None:
            return target, "Priced at target margin"
        competitor = Decimal(str(competitor))
        if competitor >= floor:
            return min(competitor, max(target, floor)), "Followed competition within margin"
        return floor, "Held minimum margin"

    raise PricingStrategyError(f"Unsupported strategy '{strategy}'")


class RepricingEngine:
    def select_rule(self, product: MonitoredProduct, rules: Iterable[RepricingRule]) -> Optional[RepricingRule]:
        """Highest priority active rule of the product's organization covering its marketplace."""
        best = None
        for rule in rules:
            if not rule.is_active or rule.organization_id != product.organization_id:
                continue
            if not rule.applies_to(product.marketplace_id):
                continue
            if best is None or (rule.priority or 0) > (best.priority or 0):
                best = rule
        return best

    def evaluate(
        self,
        product: MonitoredProduct,
        rules: Iterable[RepricingRule],
        snapshot: Optional[BuyBoxSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> RepricingEvent:
        now = now or utcnow()
        rule = self.select_rule(product, rules)
        previous_price = product.current_price
        if previous_price is None and snapshot is not None:
            previous_price = snapshot.our_price

        event = RepricingEvent(
            rule_id=rule.id if rule else None,
            organization_id=product.organization_id,
            product_id=product.product_id,
            sku=product.sku,
            marketplace_id=product.marketplace_id,
            strategy=rule.strategy if rule else None,
            previous_price=previous_price,
            created_at=now,
        )

        if rule is None:
            return self._failed(event, "No active rule applies to this product")

        try:
            strategy = RepricingStrategy(rule.strategy)

            if (
                strategy in BUY_BOX_STRATEGIES
                and snapshot is not None
                and snapshot.ownership_status == BuyBoxOwnershipStatus.OWNED
                and previous_price is not None
            ):
                new_price, reason = Decimal(str(previous_price)), "Buy Box already owned"
            else:
                new_price, reason = calculate_price(
                    strategy, rule.parameters, previous_price, snapshot, product.cost_price,
                )

            new_price, reason = self._clamp(new_price, reason, rule)
            new_price = _money(new_price)
            if new_price <= 0:
                raise PricingStrategyError(f"Calculated price {new_price} is not positive")
        except (PricingStrategyError, ValueError, KeyError, ArithmeticError) as e:
            logger.warning("Rule %s could not price %s: %s", rule.id, product.id, e)
            return self._failed(event, str(e) or e.__class__.__name__)

        event.success = True
        event.new_price = float(new_price)
        event.action = self._action(previous_price, new_price).value
        event.reason = reason
        return event

    @staticmethod
    def _clamp(price: Decimal, reason: str, rule: RepricingRule) -> Tuple[Decimal, str]:
        if rule.min_price is not None and price < Decimal(str(rule.min_price)):
            return Decimal(str(rule.min_price)), f"{reason}, raised to minimum price"
        if rule.max_price is not None and price > Decimal(str(rule.max_price)):
            return Decimal(str(rule.max_price)), f"{reason}, capped at maximum price"
        return price, reason

    @staticmethod
    def _action(previous_price: Optional[float], new_price: Decimal) -> RepricingAction:
        if previous_price is None:
            return RepricingAction.INCREASE
        previous = _money(previous_price)
        if new_price > previous:
            return RepricingAction.INCREASE
        if new_price < previous:
            return RepricingAction.DECREASE
        return RepricingAction.MAINTAIN

    @staticmethod
    def _failed(event: RepricingEvent, error: str) -> RepricingEvent:
        event.success = False
        event.action = RepricingAction.NONE.value
        event.error = error
        return event
