"""
Registry of marketplace integrations keyed by the closed MarketplaceId enum.

One registry instance holds sync adapters, another holds Buy Box monitors.
Concrete integrations register a factory (usually the class itself) that is
called with the connection's resolved credentials:

    adapters = MarketplaceRegistry("adapter")

    @adapters.register(MarketplaceId.SHOPIFY)
    class ShopifyAdapter(MarketplaceAdapter):
        ...
"""
import logging
from typing import Callable, Dict, Generic, List, TypeVar, Union

from app.core.enums import MarketplaceId
from app.core.exceptions import AdapterNotRegisteredError
from app.integrations.base import Credentials

logger = logging.getLogger(__name__)

T = TypeVar("T")
Factory = Callable[[Credentials], T]


class MarketplaceRegistry(Generic[T]):
    def __init__(self, kind: str = "adapter"):
        self.kind = kind
        self._factories: Dict[MarketplaceId, Factory] = {}

    def register(self, marketplace_id: Union[MarketplaceId, str]):
        """Class decorator form of register_factory."""
        def decorator(factory: Factory) -> Factory:
            self.register_factory(marketplace_id, factory)
            return factory
        return decorator

    def register_factory(self, marketplace_id: Union[MarketplaceId, str], factory: Factory) -> None:
        key = MarketplaceId(marketplace_id)
        if key in self._factories:
            logger.warning("Replacing %s registered for %s", self.kind, key.value)
        self._factories[key] = factory
        logger.debug("Registered %s for %s", self.kind, key.value)

    def unregister(self, marketplace_id: Union[MarketplaceId, str]) -> None:
        self._factories.pop(MarketplaceId(marketplace_id), None)

    def is_registered(self, marketplace_id: Union[MarketplaceId, str]) -> bool:
        try:
            return MarketplaceId(marketplace_id) in self._factories
        except ValueError:
            return False

    def registered(self) -> List[MarketplaceId]:
        return list(self._factories)

    def get(self, marketplace_id: Union[MarketplaceId, str], credentials: Credentials) -> T:
        """
        Build the integration for a marketplace.

        Raises AdapterNotRegisteredError for values outside the enum as well as
        enum members nobody registered.
        """
        try:
            key = MarketplaceId(marketplace_id)
        except ValueError:
            raise AdapterNotRegisteredError(f"Unknown marketplace '{marketplace_id}'")

        factory = self._factories.get(key)
        if factory is None:
            raise AdapterNotRegisteredError(f"No {self.kind} registered for marketplace '{key.value}'")
        return factory(credentials)


# Default registries concrete integrations register themselves with
adapter_registry: MarketplaceRegistry = MarketplaceRegistry("adapter")
monitor_registry: MarketplaceRegistry = MarketplaceRegistry("Buy Box monitor")
