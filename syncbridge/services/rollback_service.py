# syncbridge/services/rollback_service.py
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.enums import (
    AlertSeverity,
    AlertType,
    ChangeOperation,
    ChangeSource,
    EntityType,
    PlatformName,
    RestorePointStatus,
    RollbackStatus,
    SnapshotType,
)
from syncbridge.core.exceptions import RestorePointNotFoundError, SnapshotIntegrityError, ValidationError
from syncbridge.core.utils import ensure_utc, to_jsonable, utcnow
from syncbridge.models.product import Product
from syncbridge.models.snapshot import ProductSnapshot, RestorePoint, RollbackOperation
from syncbridge.services.change_tracker import ChangeTracker, FieldChange
from syncbridge.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    success: bool
    items_restored: int = 0
    items_failed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rollback_operation_id: Optional[int] = None
    dry_run: bool = False


@dataclass
class RollbackValidation:
    valid: bool
    snapshot_count: int = 0
    invalid_snapshot_ids: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class RollbackService:
    """
    Restores mirrored entities from snapshots, either those linked to a
    restore point or the latest ones taken before a timestamp.

    This is the only code path that writes snapshot contents back into live
    entities.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        snapshot_service: SnapshotService,
        change_tracker: ChangeTracker,
        alert_service=None,
    ):
        self.session_factory = session_factory
        self.snapshot_service = snapshot_service
        self.change_tracker = change_tracker
        self.alert_service = alert_service

    async def rollback(
        self,
        user_id: str,
        restore_point_id: Optional[int] = None,
        target_timestamp: Optional[datetime] = None,
        dry_run: bool = False,
        platforms: Optional[Sequence[PlatformName]] = None,
        entity_ids: Optional[Sequence[str]] = None,
    ) -> RollbackResult:
        """
        Roll entities back to a restore point or a point in time.

        Args:
            user_id: Owner of the entities
            restore_point_id: Restore to the snapshots linked to this restore point
            target_timestamp: Restore each entity to its latest snapshot at or before this time
            dry_run: Count what would be restored without writing anything
            platforms: Limit to these platforms (default: all)
            entity_ids: Limit to these entity ids (default: all)

        Returns:
            RollbackResult. A dry run reports the same counts a real run would.
        """
        if (restore_point_id is None) == (target_timestamp is None):
            raise ValidationError("Provide exactly one of restore_point_id or target_timestamp")

        platform_values = [PlatformName(p).value for p in platforms] if platforms else [p.value for p in PlatformName]
        operation = await self._start_operation(
            user_id, restore_point_id, target_timestamp, dry_run, platform_values, entity_ids
        )
        result = RollbackResult(success=False, rollback_operation_id=operation.id, dry_run=dry_run)

        try:
            if restore_point_id is not None:
                snapshots = await self._plan_from_restore_point(
                    user_id, restore_point_id, platform_values, entity_ids, result
                )
            else:
                snapshots = await self._plan_from_timestamp(
                    user_id, ensure_utc(target_timestamp), platform_values, entity_ids, result
                )

            for snapshot in snapshots:
                try:
                    SnapshotService.assert_valid(snapshot)
                    if not dry_run:
                        await self._restore(user_id, snapshot, operation.id)
                    result.items_restored += 1
                except SnapshotIntegrityError as e:
                    result.items_failed += 1
                    result.errors.append(f"{snapshot.platform}:{snapshot.entity_id}: {e}")
                    logger.error(f"Rollback {operation.id}: {e}")
                    await self._integrity_alert(user_id, snapshot, e)
                except Exception as e:
                    result.items_failed += 1
                    result.errors.append(f"{snapshot.platform}:{snapshot.entity_id}: {e}")
                    logger.error(f"Rollback {operation.id}: failed to restore {snapshot.platform}:{snapshot.entity_id}: {e}", exc_info=True)

            result.success = result.items_failed == 0
        except RestorePointNotFoundError as e:
            result.errors.append(str(e))
            await self._finish_operation(operation.id, result)
            raise
        except Exception as e:
            logger.error(f"Rollback {operation.id} aborted: {e}", exc_info=True)
            result.errors.append(str(e))
            result.success = False

        await self._finish_operation(operation.id, result)

        if result.success and not dry_run and restore_point_id is not None:
            await self._mark_restored(restore_point_id)

        logger.info(
            f"Rollback {operation.id} ({'dry run' if dry_run else 'live'}) for user {user_id}: "
            f"{result.items_restored} restored, {result.items_failed} failed, {len(result.warnings)} warnings"
        )
        return result

    async def validate_rollback(
        self,
        user_id: str,
        restore_point_id: int,
        platforms: Optional[Sequence[PlatformName]] = None,
    ) -> RollbackValidation:
        """Check that a restore point exists, is usable, and its snapshots are intact."""
        async with self.session_factory() as session:
            restore_point = await session.get(RestorePoint, restore_point_id)
        if restore_point is None or restore_point.user_id != user_id:
            raise RestorePointNotFoundError(f"Restore point {restore_point_id} not found")

        validation = RollbackValidation(valid=True)
        if restore_point.status in (RestorePointStatus.EXPIRED.value, RestorePointStatus.ARCHIVED.value):
            validation.warnings.append(f"Restore point is {restore_point.status}")

        snapshots = await self.snapshot_service.list_for_restore_point(restore_point_id)
        if platforms:
            wanted = {PlatformName(p).value for p in platforms}
            snapshots = [s for s in snapshots if s.platform in wanted]
        validation.snapshot_count = len(snapshots)
        if not snapshots:
            validation.valid = False
            validation.warnings.append("Restore point has no snapshots for the requested platforms")

        for snapshot in snapshots:
            if not SnapshotService.verify(snapshot):
                validation.invalid_snapshot_ids.append(snapshot.id)
        if validation.invalid_snapshot_ids:
            validation.valid = False
        return validation

    async def _plan_from_restore_point(
        self,
        user_id: str,
        restore_point_id: int,
        platform_values: List[str],
        entity_ids: Optional[Sequence[str]],
        result: RollbackResult,
    ) -> List[ProductSnapshot]:
        async with self.session_factory() as session:
            restore_point = await session.get(RestorePoint, restore_point_id)
        if restore_point is None or restore_point.user_id != user_id:
            raise RestorePointNotFoundError(f"Restore point {restore_point_id} not found")

        snapshots = [
            s for s in await self.snapshot_service.list_for_restore_point(restore_point_id)
            if s.platform in platform_values
        ]
        if entity_ids:
            wanted = {str(e) for e in entity_ids}
            snapshots = [s for s in snapshots if s.entity_id in wanted]
            found = {s.entity_id for s in snapshots}
            for entity_id in sorted(wanted - found):
                result.warnings.append(f"No snapshot for entity {entity_id} in restore point {restore_point_id}")
        return snapshots

    async def _plan_from_timestamp(
        self,
        user_id: str,
        target_timestamp: datetime,
        platform_values: List[str],
        entity_ids: Optional[Sequence[str]],
        result: RollbackResult,
    ) -> List[ProductSnapshot]:
        query = select(Product.platform_product_id, Product.platform).where(
            Product.user_id == user_id,
            Product.platform.in_(platform_values),
        ).order_by(Product.id)
        if entity_ids:
            query = query.where(Product.platform_product_id.in_([str(e) for e in entity_ids]))

        async with self.session_factory() as session:
            entities = (await session.execute(query)).all()

        if entity_ids:
            known = {row.platform_product_id for row in entities}
            for entity_id in sorted({str(e) for e in entity_ids} - known):
                result.warnings.append(f"Entity {entity_id} not found")

        snapshots = []
        for entity_id, platform in entities:
            snapshot = await self.snapshot_service.get_at_time(user_id, entity_id, platform, target_timestamp)
            if snapshot is None:
                result.warnings.append(
                    f"No snapshot of {platform}:{entity_id} at or before {target_timestamp.isoformat()}"
                )
                continue
            snapshots.append(snapshot)
        return snapshots

    async def _restore(self, user_id: str, snapshot: ProductSnapshot, operation_id: int) -> bool:
        """Write one snapshot back into the mirror. Returns False when nothing had to change."""
        data = snapshot.data or {}
        target_state = {f: data[f] for f in Product.RESTORABLE_FIELDS if f in data}

        async with self.session_factory() as session:
            result = await session.execute(
                select(Product).where(
                    Product.user_id == user_id,
                    Product.platform == snapshot.platform,
                    Product.platform_product_id == snapshot.entity_id,
                )
            )
            product = result.scalar_one_or_none()

            if product is not None:
                current = to_jsonable({f: getattr(product, f) for f in target_state})
                if current == to_jsonable(target_state):
                    logger.debug(f"{snapshot.platform}:{snapshot.entity_id} already matches snapshot {snapshot.id}")
                    return False
                before = await self.snapshot_service.insert_snapshot(
                    session, user_id, snapshot.entity_id, snapshot.platform, product.state(), SnapshotType.MANUAL
                )
                old_state = product.state()
            else:
                before = None
                old_state = None
                product = Product(
                    user_id=user_id,
                    platform=snapshot.platform,
                    platform_product_id=snapshot.entity_id,
                )
                session.add(product)

            for name, value in target_state.items():
                setattr(product, name, value)

            session.add(self.change_tracker.build_entry(
                FieldChange(
                    user_id=user_id,
                    entity_type=EntityType.PRODUCT,
                    entity_id=snapshot.entity_id,
                    platform=snapshot.platform,
                    operation=ChangeOperation.UPDATE,
                    field_name="_restored",
                    old_value=old_state,
                    new_value=f"restored_from_snapshot_{snapshot.id}",
                    triggered_by=f"rollback_operation_{operation_id}",
                    before_snapshot_id=before.id if before else None,
                    after_snapshot_id=snapshot.id,
                ),
                ChangeSource.ROLLBACK,
            ))
            await session.commit()
        return True

    async def _start_operation(self, user_id, restore_point_id, target_timestamp, dry_run, platform_values, entity_ids) -> RollbackOperation:
        operation = RollbackOperation(
            user_id=user_id,
            restore_point_id=restore_point_id,
            target_timestamp=target_timestamp,
            dry_run=dry_run,
            platforms=platform_values,
            entity_ids=[str(e) for e in entity_ids] if entity_ids else None,
            status=RollbackStatus.RUNNING.value,
        )
        async with self.session_factory() as session:
            session.add(operation)
            await session.commit()
        return operation

    async def _finish_operation(self, operation_id: int, result: RollbackResult):
        async with self.session_factory() as session:
            operation = await session.get(RollbackOperation, operation_id)
            operation.status = (RollbackStatus.COMPLETED if result.success else RollbackStatus.FAILED).value
            operation.items_restored = result.items_restored
            operation.items_failed = result.items_failed
            operation.errors = list(result.errors)
            operation.warnings = list(result.warnings)
            operation.completed_at = utcnow()
            await session.commit()

    async def _mark_restored(self, restore_point_id: int):
        async with self.session_factory() as session:
            restore_point = await session.get(RestorePoint, restore_point_id)
            restore_point.status = RestorePointStatus.RESTORED.value
            restore_point.restored_at = utcnow()
            await session.commit()

    async def _integrity_alert(self, user_id: str, snapshot: ProductSnapshot, error: SnapshotIntegrityError):
        if not self.alert_service:
            return
        await self.alert_service.create_alert(
            AlertType.DATA_INTEGRITY,
            AlertSeverity.HIGH,
            "Snapshot integrity check failed",
            str(error),
            user_id=user_id,
            source="rollback",
            metadata={"snapshot_id": snapshot.id, "entity_id": snapshot.entity_id, "platform": snapshot.platform},
        )

    async def get_operation(self, operation_id: int) -> Optional[RollbackOperation]:
        async with self.session_factory() as session:
            return await session.get(RollbackOperation, operation_id)
