# syncbridge/services/sync/context.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.config import Settings
from syncbridge.core.enums import EntityType, PlatformName
from syncbridge.core.utils import to_jsonable, utcnow
from syncbridge.database import insert_or_get
from syncbridge.integrations.base import ErpClient, StorefrontClient
from syncbridge.models.product import Product
from syncbridge.models.sync_log import SyncHistory, SystemMetric
from syncbridge.services.batch_runner import with_retry
from syncbridge.services.change_tracker import ChangeTracker
from syncbridge.services.currency import CurrencyService
from syncbridge.services.mapping_store import EntityMappingStore
from syncbridge.services.rate_gate import RateGate
from syncbridge.services.snapshot_service import SnapshotService
from syncbridge.services.sync.normalizers import CatalogRecord, Transform, identity_transform

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one sync run needs, passed explicitly to each pass."""
    user_id: str
    settings: Settings
    session_factory: async_sessionmaker
    storefront: StorefrontClient
    erp: ErpClient
    rate_gate: RateGate
    mappings: EntityMappingStore
    change_tracker: ChangeTracker
    snapshots: SnapshotService
    currency: Optional[CurrencyService] = None
    sync_log_id: Optional[int] = None
    transform: Transform = identity_transform
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _concurrency: Dict[str, int] = field(default_factory=dict)
    _locks: Dict[Tuple[str, str], asyncio.Lock] = field(default_factory=dict)

    def lock_for(self, kind: str, key: str) -> asyncio.Lock:
        """Lock for one logical record (e.g. a customer) shared by every item of this run."""
        lock_key = (kind, str(key))
        if lock_key not in self._locks:
            self._locks[lock_key] = asyncio.Lock()
        return self._locks[lock_key]

    def client_for(self, platform: PlatformName):
        return self.storefront if PlatformName(platform) == PlatformName.SHOPIFY else self.erp

    async def call(self, platform: PlatformName, fn: Callable[..., Awaitable[Any]], *args, **kwargs):
        """
        Outbound platform call: transient-failure retries wrapped around the
        rate gate, which owns rate-limit waits and retries.
        """
        description = getattr(fn, "__name__", "call")

        async def gated():
            return await self.rate_gate.call(self.user_id, platform, lambda: fn(*args, **kwargs), description)

        return await with_retry(
            gated,
            max_retries=self.settings.RETRY_MAX_RETRIES,
            base_delay=self.settings.RETRY_BASE_DELAY_SECONDS,
            backoff_factor=self.settings.RETRY_BACKOFF_FACTOR,
            jitter_ms=self.settings.RETRY_JITTER_MS,
            sleep=self.sleep,
        )

    async def concurrency(self, platform: PlatformName) -> int:
        """Batch width for calls to a platform: its configured burst limit."""
        key = PlatformName(platform).value
        if key not in self._concurrency:
            config = await self.rate_gate.get_config(platform)
            self._concurrency[key] = max(1, int(config.burst_limit))
        return self._concurrency[key]

    async def get_mirror(self, platform: PlatformName, external_id: str) -> Optional[Product]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product).where(
                    Product.user_id == self.user_id,
                    Product.platform == PlatformName(platform).value,
                    Product.platform_product_id == str(external_id),
                )
            )
            return result.scalar_one_or_none()

    async def upsert_mirror(self, record: CatalogRecord) -> Product:
        """Refresh the local mirror row for a platform record."""
        async with self.session_factory() as session:
            product = await insert_or_get(
                session,
                Product,
                {
                    "user_id": self.user_id,
                    "platform": record.platform.value,
                    "platform_product_id": record.external_id,
                    "is_active": True,
                    "attributes": {},
                },
                ["user_id", "platform", "platform_product_id"],
            )
            for name, value in record.mirror_values().items():
                setattr(product, name, to_jsonable(value) if name == "attributes" else value)
            product.last_platform_sync = utcnow()
            await session.commit()
            return product

    async def record_history(
        self,
        entity_type: EntityType,
        source_id: str,
        target_id: Optional[str],
        platform: PlatformName,
        operation: str,
        status: str,
        started: float,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        async with self.session_factory() as session:
            session.add(SyncHistory(
                sync_log_id=self.sync_log_id,
                user_id=self.user_id,
                entity_type=EntityType(entity_type).value,
                source_id=str(source_id),
                target_id=str(target_id) if target_id is not None else None,
                platform=PlatformName(platform).value,
                operation=operation,
                status=status,
                error_message=error,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                details=to_jsonable(details or {}),
            ))
            await session.commit()

    async def record_metric(
        self,
        metric_name: str,
        metric_type: str,
        value: float,
        unit: Optional[str] = None,
        platform: Optional[PlatformName] = None,
        tags: Optional[Dict[str, Any]] = None,
    ):
        async with self.session_factory() as session:
            session.add(SystemMetric(
                user_id=self.user_id,
                metric_name=metric_name,
                metric_type=metric_type,
                metric_value=value,
                unit=unit,
                platform=PlatformName(platform).value if platform else None,
                tags=to_jsonable(tags or {}),
            ))
            await session.commit()

    async def update_mirror_quantity(self, platform: PlatformName, external_id: str, quantity: int):
        """Keep the mirrored stock level current after an inventory write."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product).where(
                    Product.user_id == self.user_id,
                    Product.platform == PlatformName(platform).value,
                    Product.platform_product_id == str(external_id),
                )
            )
            product = result.scalar_one_or_none()
            if product is None:
                return
            product.inventory_quantity = quantity
            product.last_platform_sync = utcnow()
            await session.commit()
