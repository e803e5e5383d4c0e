"""
Credential providers resolve a connection's opaque reference to API credentials.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from app.core.config import Settings, get_settings
from app.core.exceptions import CredentialError

logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    @abstractmethod
    async def get_credentials(self, reference: str) -> Dict[str, Any]:
        """Return the credential values for `reference` or raise CredentialError"""
        pass


class SettingsCredentialProvider(CredentialProvider):
    """Reads credentials from the MARKETPLACE_CREDENTIALS setting."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def get_credentials(self, reference: str) -> Dict[str, Any]:
        values = self.settings.MARKETPLACE_CREDENTIALS.get(reference)
        if not values:
            logger.warning("No credentials configured for reference '%s'", reference)
            raise CredentialError(f"No credentials found for reference '{reference}'")
        return dict(values)
