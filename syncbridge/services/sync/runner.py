# syncbridge/services/sync/runner.py
import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.config import Settings
from syncbridge.core.enums import AlertSeverity, AlertType, SyncDataType, SyncDirection, SyncRunStatus
from syncbridge.core.exceptions import BaseServiceError, SyncInProgressError
from syncbridge.core.utils import to_jsonable, utcnow
from syncbridge.integrations.base import ErpClient, StorefrontClient
from syncbridge.models.sync_log import SyncLog
from syncbridge.services.alert_service import AlertService
from syncbridge.services.change_tracker import ChangeTracker
from syncbridge.services.currency import CurrencyService
from syncbridge.services.mapping_store import EntityMappingStore
from syncbridge.services.rate_gate import RateGate
from syncbridge.services.snapshot_service import SnapshotService
from syncbridge.services.sync.context import SyncContext
from syncbridge.services.sync.inventory_sync import InventorySyncService
from syncbridge.services.sync.normalizers import Transform, identity_transform
from syncbridge.services.sync.order_sync import OrderSyncService
from syncbridge.services.sync.product_sync import ProductSyncService, leg_direction
from syncbridge.services.sync.types import ItemError, PassResult, SyncRequest, SyncRunResult

logger = logging.getLogger(__name__)

# Catalog first so inventory and orders can rely on item mappings
PASS_ORDER = (SyncDataType.PRODUCTS, SyncDataType.INVENTORY, SyncDataType.ORDERS)


def aggregate_status(succeeded: int, failed: int) -> SyncRunStatus:
    if failed == 0:
        return SyncRunStatus.COMPLETED
    if succeeded > 0:
        return SyncRunStatus.PARTIAL_SUCCESS
    return SyncRunStatus.FAILED


class SyncRunner:
    """
    Entry point for a sync run: one run per user at a time, every pass of the
    request executed in order, and the outcome recorded on a sync_logs row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        storefront: StorefrontClient,
        erp: ErpClient,
        rate_gate: RateGate,
        mappings: EntityMappingStore,
        change_tracker: ChangeTracker,
        snapshots: SnapshotService,
        alert_service: Optional[AlertService] = None,
        currency: Optional[CurrencyService] = None,
        transform: Transform = identity_transform,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.storefront = storefront
        self.erp = erp
        self.rate_gate = rate_gate
        self.mappings = mappings
        self.change_tracker = change_tracker
        self.snapshots = snapshots
        self.alert_service = alert_service
        self.currency = currency
        self.transform = transform
        self.sleep = sleep
        self._user_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._user_locks:
            self._user_locks[user_id] = asyncio.Lock()
        return self._user_locks[user_id]

    async def _start_log(self, user_id: str, request: SyncRequest) -> SyncLog:
        """
        Create the running sync log, refusing if one is already running.
        The check is advisory: it does not hold a database lock.
        """
        async with self._lock_for(user_id):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncLog.id).where(
                        SyncLog.user_id == user_id,
                        SyncLog.status == SyncRunStatus.RUNNING.value,
                    ).limit(1)
                )
                running_id = result.scalar_one_or_none()
                if running_id is not None:
                    raise SyncInProgressError(user_id, running_id)

                sync_log = SyncLog(
                    user_id=user_id,
                    direction=request.direction.value,
                    data_types=[SyncDataType(d).value for d in request.data_types],
                    filters=to_jsonable(request.filters.to_dict()),
                    status=SyncRunStatus.RUNNING.value,
                    errors=[],
                    warnings=[],
                    details={"triggered_by": request.triggered_by},
                    started_at=utcnow(),
                )
                session.add(sync_log)
                await session.commit()
                return sync_log

    async def last_completed_at(self, user_id: str, before_id: Optional[int] = None) -> Optional[datetime]:
        """Start time of the user's last completed run; the "changed since" cursor."""
        query = select(SyncLog.started_at).where(
            SyncLog.user_id == user_id,
            SyncLog.status == SyncRunStatus.COMPLETED.value,
        )
        if before_id is not None:
            query = query.where(SyncLog.id < before_id)
        query = query.order_by(SyncLog.started_at.desc()).limit(1)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    def _context(self, user_id: str, sync_log_id: int) -> SyncContext:
        return SyncContext(
            user_id=user_id,
            settings=self.settings,
            session_factory=self.session_factory,
            storefront=self.storefront,
            erp=self.erp,
            rate_gate=self.rate_gate,
            mappings=self.mappings,
            change_tracker=self.change_tracker,
            snapshots=self.snapshots,
            currency=self.currency,
            sync_log_id=sync_log_id,
            transform=self.transform,
            sleep=self.sleep,
        )

    async def run(self, user_id: str, request: Optional[SyncRequest] = None) -> SyncRunResult:
        """
        Run every requested pass for ``user_id``.

        Raises:
            SyncInProgressError: another run for the user is still marked running
        """
        request = request or SyncRequest()
        sync_log = await self._start_log(user_id, request)
        started = time.monotonic()
        logger.info(
            f"Sync {sync_log.id} started for user {user_id}: {request.direction.value} "
            f"{[SyncDataType(d).value for d in request.data_types]} ({request.triggered_by})"
        )

        passes = []
        try:
            since = request.filters.date_from
            if request.filters.changed_since_last_sync and not request.filters.full_sync:
                since = await self.last_completed_at(user_id, before_id=sync_log.id) or since

            ctx = self._context(user_id, sync_log.id)
            services = {
                SyncDataType.PRODUCTS: ProductSyncService(ctx),
                SyncDataType.INVENTORY: InventorySyncService(ctx),
                SyncDataType.ORDERS: OrderSyncService(ctx),
            }
            requested = {SyncDataType(d) for d in request.data_types}

            for data_type in PASS_ORDER:
                if data_type not in requested:
                    continue
                for source, target in request.direction.legs():
                    passes.append(await self._run_pass(services[data_type], data_type, source, target, request, since))
        except Exception as exc:
            logger.exception(f"Sync {sync_log.id} for user {user_id} failed")
            return await self._fail(sync_log, passes, exc, started)

        return await self._finish(sync_log, passes, started)

    async def _run_pass(self, service, data_type, source, target, request, since) -> PassResult:
        """A pass that cannot even list its records fails as a whole; sibling passes still run."""
        try:
            if data_type == SyncDataType.INVENTORY:
                return await service.sync(source, target, request.filters)
            return await service.sync(source, target, request.filters, since)
        except BaseServiceError as exc:
            logger.error(f"{data_type.value} pass {source.value} -> {target.value} failed: {exc}")
            result = PassResult(data_type, leg_direction(source, target))
            result.record_failure(f"{data_type.value}:{source.value}->{target.value}", exc)
            return result

    async def _finish(self, sync_log: SyncLog, passes, started: float) -> SyncRunResult:
        total = PassResult(SyncDataType.PRODUCTS, SyncDirection(sync_log.direction))
        for item in passes:
            total.merge(item)

        status = aggregate_status(total.items_succeeded, total.items_failed)
        result = SyncRunResult(
            sync_log_id=sync_log.id,
            status=status,
            items_processed=total.items_processed,
            items_succeeded=total.items_succeeded,
            items_failed=total.items_failed,
            errors=total.errors[:self.settings.SYNC_ERROR_LIST_LIMIT],
            warnings=total.warnings[:self.settings.SYNC_ERROR_LIST_LIMIT],
            passes=passes,
        )
        await self._save(sync_log.id, result, started)

        log = logger.info if status == SyncRunStatus.COMPLETED else logger.warning
        log(
            f"Sync {sync_log.id} {status.value}: {result.items_succeeded}/{result.items_processed} succeeded, "
            f"{result.items_failed} failed"
        )
        if status == SyncRunStatus.FAILED and self.alert_service:
            await self.alert_service.create_alert(
                AlertType.SYNC_FAILURE,
                AlertSeverity.HIGH,
                f"Sync {sync_log.id} failed for every item",
                "; ".join(e.error for e in result.errors[:5]),
                user_id=sync_log.user_id,
                source="sync_runner",
                metadata={"sync_log_id": sync_log.id},
            )
        return result

    async def _fail(self, sync_log: SyncLog, passes, exc: Exception, started: float) -> SyncRunResult:
        errors = [e for p in passes for e in p.errors]
        errors.append(ItemError(f"sync_log:{sync_log.id}", str(exc)))
        result = SyncRunResult(
            sync_log_id=sync_log.id,
            status=SyncRunStatus.FAILED,
            items_processed=sum(p.items_processed for p in passes),
            items_succeeded=sum(p.items_succeeded for p in passes),
            items_failed=sum(p.items_failed for p in passes),
            errors=errors[:self.settings.SYNC_ERROR_LIST_LIMIT],
            warnings=[w for p in passes for w in p.warnings][:self.settings.SYNC_ERROR_LIST_LIMIT],
            passes=passes,
            error_message=str(exc),
        )
        await self._save(sync_log.id, result, started)

        if self.alert_service:
            await self.alert_service.create_alert(
                AlertType.SYNC_FAILURE,
                AlertSeverity.CRITICAL,
                f"Sync {sync_log.id} aborted",
                str(exc),
                user_id=sync_log.user_id,
                source="sync_runner",
                metadata={"sync_log_id": sync_log.id, "error_type": type(exc).__name__},
            )
        return result

    async def _save(self, sync_log_id: int, result: SyncRunResult, started: float):
        async with self.session_factory() as session:
            sync_log = await session.get(SyncLog, sync_log_id)
            sync_log.status = result.status.value
            sync_log.items_processed = result.items_processed
            sync_log.items_succeeded = result.items_succeeded
            sync_log.items_failed = result.items_failed
            sync_log.errors = [e.to_dict() for e in result.errors]
            sync_log.warnings = list(result.warnings)
            sync_log.details = {
                **(sync_log.details or {}),
                "passes": [p.to_dict() for p in result.passes],
            }
            sync_log.error_message = result.error_message
            sync_log.completed_at = utcnow()
            sync_log.duration_ms = int((time.monotonic() - started) * 1000)
            await session.commit()

    async def get_sync_log(self, sync_log_id: int) -> Optional[SyncLog]:
        async with self.session_factory() as session:
            return await session.get(SyncLog, sync_log_id)
