"""
Core module exports.
"""
from .enums import (
    MarketplaceId,
    ConnectionStatus,
    SyncStatus,
    RepricingStrategy,
    BuyBoxOwnershipStatus,
)

from .exceptions import (
    BaseServiceError,
    ConnectionNotFoundError,
    AdapterNotRegisteredError,
    CredentialError,
    MarketplaceAPIError,
    IngestionError,
    SyncError,
    RepricingError,
    RuleNotFoundError,
    ValidationError,
)

from .utils import (
    utcnow,
    as_utc,
    is_valid_interval,
    MAX_INTERVAL_MINUTES,
)
