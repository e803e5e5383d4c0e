"""
Shared enums and constants used across the application.
"""

from enum import Enum

class MarketplaceId(str, Enum):
    AMAZON = "amazon"
    SHOPIFY = "shopify"
    TAKEALOT = "takealot"
    XERO = "xero"

    @property
    def label(self):
        return self.value.capitalize()


class ConnectionStatus(str, Enum):
    """Whether a marketplace connection is usable at all"""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SyncStatus(str, Enum):
    """State of the most recent (or ongoing) sync attempt of a connection."""
    IDLE = "idle"                # Never synced
    IN_PROGRESS = "in_progress"  # Sync currently running
    SUCCESS = "success"          # Orders and products both fetched
    ERROR = "error"              # Either side (or setup) failed


class IngestionEntity(str, Enum):
    ORDER = "order"
    PRODUCT = "product"


class RepricingStrategy(str, Enum):
    MATCH_BUY_BOX = "match_buy_box"
    BEAT_BUY_BOX = "beat_buy_box"
    MATCH_LOWEST = "match_lowest"
    BEAT_LOWEST = "beat_lowest"
    PERCENTAGE_ADJUSTMENT = "percentage_adjustment"
    FIXED_ADJUSTMENT = "fixed_adjustment"
    MAINTAIN_MARGIN = "maintain_margin"


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class BuyBoxOwnershipStatus(str, Enum):
    OWNED = "owned"
    SHARED = "shared"
    NOT_OWNED = "not_owned"
    NO_BUY_BOX = "no_buy_box"
    UNKNOWN = "unknown"


class RepricingAction(str, Enum):
    """What a repricing event did to the price"""
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"
    NONE = "none"  # Evaluation failed, nothing applied
