# syncbridge/context.py
"""
Explicitly constructed service graph.

Everything that used to be a module-level singleton (rate limiter state,
cached service instances) hangs off one EngineContext built at startup and
handed to the routes, the scheduler and the event bus.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from syncbridge.core.config import Settings
from syncbridge.core.utils import utcnow
from syncbridge.database import build_engine, build_session_factory
from syncbridge.integrations.base import ErpClient, StorefrontClient
from syncbridge.integrations.netsuite import NetSuiteClient
from syncbridge.integrations.shopify import ShopifyClient
from syncbridge.services.alert_service import AlertService
from syncbridge.services.change_tracker import ChangeTracker
from syncbridge.services.currency import CurrencyService, StaticRateCurrencyService
from syncbridge.services.event_bus import EventBus, EventStore, HandlerContext, default_subscriptions
from syncbridge.services.mapping_store import EntityMappingStore
from syncbridge.services.rate_gate import RateGate
from syncbridge.services.rollback_service import RollbackService
from syncbridge.services.snapshot_service import RestorePointService, SnapshotService
from syncbridge.services.sync.runner import SyncRunner

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    settings: Settings
    session_factory: async_sessionmaker
    storefront: StorefrontClient
    erp: ErpClient
    alert_service: AlertService
    rate_gate: RateGate
    mappings: EntityMappingStore
    change_tracker: ChangeTracker
    snapshots: SnapshotService
    restore_points: RestorePointService
    rollback: RollbackService
    event_store: EventStore
    event_bus: EventBus
    runner: SyncRunner
    currency: CurrencyService
    engine: Optional[AsyncEngine] = None

    async def close(self):
        if self.event_bus.running:
            await self.event_bus.stop()
        if self.engine is not None:
            await self.engine.dispose()


def build_context(
    settings: Settings,
    storefront: Optional[StorefrontClient] = None,
    erp: Optional[ErpClient] = None,
    session_factory: Optional[async_sessionmaker] = None,
    currency: Optional[CurrencyService] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    register_default_subscriptions: bool = True,
) -> EngineContext:
    """
    Wire every service against one session factory.

    Args:
        settings: Application settings
        storefront: Storefront client; defaults to a ShopifyClient from settings
        erp: ERP client; defaults to a NetSuiteClient from settings
        session_factory: Reuse an existing factory (tests); otherwise an engine
            is built from DATABASE_URL and owned by the context
        currency: Currency service; defaults to static configured rates
        clock: Time source for the rate gate and event bus
        sleep: Awaitable sleep used for rate limit and retry waits

    Returns:
        EngineContext
    """
    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    storefront = storefront or ShopifyClient(
        settings.SHOPIFY_SHOP_URL,
        settings.SHOPIFY_ADMIN_API_ACCESS_TOKEN,
        settings.SHOPIFY_API_VERSION,
    )
    erp = erp or NetSuiteClient(settings.NETSUITE_ACCOUNT_ID, settings.NETSUITE_ACCESS_TOKEN)
    currency = currency or StaticRateCurrencyService(settings.BASE_CURRENCY, settings.CURRENCY_RATES)

    alert_service = AlertService(session_factory)
    event_store = EventStore(session_factory)
    event_bus = EventBus(
        event_store,
        settings,
        context=HandlerContext(alert_service=alert_service),
        alert_service=alert_service,
        clock=clock,
    )
    rate_gate = RateGate(
        session_factory,
        settings,
        alert_service=alert_service,
        event_publisher=event_bus.publish_rate_limited,
        clock=clock,
        sleep=sleep,
    )
    mappings = EntityMappingStore(session_factory)
    change_tracker = ChangeTracker(session_factory)
    snapshots = SnapshotService(session_factory)
    restore_points = RestorePointService(session_factory, snapshots)
    rollback = RollbackService(session_factory, snapshots, change_tracker, alert_service)
    runner = SyncRunner(
        session_factory,
        settings,
        storefront,
        erp,
        rate_gate,
        mappings,
        change_tracker,
        snapshots,
        alert_service=alert_service,
        currency=currency,
        sleep=sleep,
    )
    event_bus.context.trigger_sync = runner.run

    if register_default_subscriptions:
        for subscription in default_subscriptions():
            event_bus.subscribe(subscription)

    logger.info(f"Engine context built ({settings.ENVIRONMENT})")
    return EngineContext(
        settings=settings,
        session_factory=session_factory,
        storefront=storefront,
        erp=erp,
        alert_service=alert_service,
        rate_gate=rate_gate,
        mappings=mappings,
        change_tracker=change_tracker,
        snapshots=snapshots,
        restore_points=restore_points,
        rollback=rollback,
        event_store=event_store,
        event_bus=event_bus,
        runner=runner,
        currency=currency,
        engine=engine,
    )
