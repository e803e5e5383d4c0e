from .connection import MarketplaceConnection
from .buybox import MonitoredProduct, monitored_product_id
from .repricing import RepricingRule, RepricingEvent
from .ingested_record import IngestedRecord

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'MarketplaceConnection',
    'MonitoredProduct',
    'monitored_product_id',
    'RepricingRule',
    'RepricingEvent',
    'IngestedRecord',
]
