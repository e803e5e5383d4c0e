"""
Wires the long-lived services together.

Called once by the FastAPI lifespan and by the CLI commands; nothing here
runs at import time.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.enums import IngestionEntity
from app.core.utils import utcnow
from app.integrations.registry import MarketplaceRegistry, adapter_registry, monitor_registry
from app.services.buybox_service import BuyBoxService
from app.services.connection_service import ConnectionService
from app.services.credentials import CredentialProvider, SettingsCredentialProvider
from app.services.ingestion import StagingIngestionService
from app.services.repricing_engine import RepricingEngine
from app.services.repricing_scheduler import RepricingScheduler
from app.services.repricing_service import RepricingService
from app.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    connections: ConnectionService
    buybox: BuyBoxService
    repricing: RepricingService
    orchestrator: SyncOrchestrator
    repricing_scheduler: RepricingScheduler

    def shutdown(self) -> None:
        self.orchestrator.shutdown()
        self.repricing_scheduler.shutdown()


def build_services(
    session_factory: Optional[async_sessionmaker] = None,
    settings: Optional[Settings] = None,
    credential_provider: Optional[CredentialProvider] = None,
    adapters: Optional[MarketplaceRegistry] = None,
    monitors: Optional[MarketplaceRegistry] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceContainer:
    settings = settings or get_settings()
    if session_factory is None:
        from app.database import async_session
        session_factory = async_session

    credential_provider = credential_provider or SettingsCredentialProvider(settings)
    adapters = adapters if adapters is not None else adapter_registry
    monitors = monitors if monitors is not None else monitor_registry

    connections = ConnectionService(session_factory, clock=clock)
    buybox = BuyBoxService(session_factory, settings=settings, clock=clock)
    repricing = RepricingService(session_factory, clock=clock)

    orchestrator = SyncOrchestrator(
        store=connections,
        credential_provider=credential_provider,
        adapters=adapters,
        order_ingestion=StagingIngestionService(IngestionEntity.ORDER, session_factory, clock=clock),
        product_ingestion=StagingIngestionService(IngestionEntity.PRODUCT, session_factory, clock=clock),
        settings=settings,
        clock=clock,
    )
    repricing_scheduler = RepricingScheduler(
        rules=repricing,
        buybox=buybox,
        connections=connections,
        credential_provider=credential_provider,
        monitors=monitors,
        engine=RepricingEngine(),
        settings=settings,
        clock=clock,
    )

    registered = [m.value for m in adapters.registered()]
    logger.info("Services built; adapters registered for: %s", ", ".join(registered) or "none")

    return ServiceContainer(
        connections=connections,
        buybox=buybox,
        repricing=repricing,
        orchestrator=orchestrator,
        repricing_scheduler=repricing_scheduler,
    )
