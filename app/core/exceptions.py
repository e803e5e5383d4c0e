class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class ConnectionServiceError(BaseServiceError):
    """Base exception for marketplace connection errors."""
    pass

class ConnectionNotFoundError(ConnectionServiceError):
    """Raised when a marketplace connection does not exist."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for marketplace platform errors."""
    pass

class AdapterNotRegisteredError(PlatformServiceError):
    """Raised when no adapter or monitor is registered for a marketplace."""
    pass

class MarketplaceAPIError(PlatformServiceError):
    """Raised when a marketplace API call fails."""
    pass

class CredentialError(PlatformServiceError):
    """Raised when a credential reference cannot be resolved."""
    pass

class IngestionError(BaseServiceError):
    """Raised when an ingestion pipeline rejects a batch."""
    pass

class SyncError(BaseServiceError):
    """Raised when a sync cycle cannot run at all."""
    pass

class RepricingError(BaseServiceError):
    """Base exception for repricing errors."""
    pass

class RuleNotFoundError(RepricingError):
    """Raised when a repricing rule is not found."""
    pass

class MonitoredProductNotFoundError(RepricingError):
    """Raised when a monitored product is not found."""
    pass

class PricingStrategyError(RepricingError):
    """Raised when a pricing strategy cannot produce a price."""
    pass

class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    pass
