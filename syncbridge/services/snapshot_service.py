# syncbridge/services/snapshot_service.py
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from syncbridge.core.enums import PlatformName, RestorePointStatus, RestorePointType, SnapshotType
from syncbridge.core.exceptions import SnapshotIntegrityError, SnapshotNotFoundError, ValidationError
from syncbridge.core.utils import compute_checksum, to_jsonable, utcnow
from syncbridge.models.product import Product
from syncbridge.models.snapshot import ProductSnapshot, RestorePoint

logger = logging.getLogger(__name__)


class SnapshotService:
    """
    Append-only, versioned captures of mirrored catalog records.

    Versions count up per (user, platform, entity) and every snapshot points
    at its predecessor.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _fetch_entity(self, session: AsyncSession, user_id: str, entity_id: str, platform: PlatformName) -> Optional[Product]:
        result = await session.execute(
            select(Product).where(
                Product.user_id == user_id,
                Product.platform == PlatformName(platform).value,
                Product.platform_product_id == str(entity_id),
            )
        )
        return result.scalar_one_or_none()

    async def _latest(self, session: AsyncSession, user_id: str, entity_id: str, platform: str) -> Optional[ProductSnapshot]:
        result = await session.execute(
            select(ProductSnapshot)
            .where(
                ProductSnapshot.user_id == user_id,
                ProductSnapshot.entity_id == str(entity_id),
                ProductSnapshot.platform == platform,
            )
            .order_by(ProductSnapshot.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def insert_snapshot(
        self,
        session: AsyncSession,
        user_id: str,
        entity_id: str,
        platform: PlatformName,
        data: Dict[str, Any],
        snapshot_type: SnapshotType,
        sync_log_id: Optional[int] = None,
        restore_point_id: Optional[int] = None,
    ) -> ProductSnapshot:
        platform_value = PlatformName(platform).value
        payload = to_jsonable(data)
        previous = await self._latest(session, user_id, entity_id, platform_value)

        snapshot = ProductSnapshot(
            user_id=user_id,
            entity_id=str(entity_id),
            platform=platform_value,
            snapshot_type=SnapshotType(snapshot_type).value,
            data=payload,
            checksum=compute_checksum(payload),
            version=(previous.version + 1) if previous else 1,
            previous_snapshot_id=previous.id if previous else None,
            sync_log_id=sync_log_id,
            restore_point_id=restore_point_id,
        )
        session.add(snapshot)
        await session.flush()
        return snapshot

    async def snapshot(
        self,
        user_id: str,
        entity_id: str,
        platform: PlatformName,
        snapshot_type: SnapshotType = SnapshotType.MANUAL,
        sync_log_id: Optional[int] = None,
        restore_point_id: Optional[int] = None,
    ) -> ProductSnapshot:
        """
        Capture the current mirrored state of one entity.

        Raises:
            ValidationError: if the entity is not in the local mirror
        """
        async with self.session_factory() as session:
            entity = await self._fetch_entity(session, user_id, entity_id, platform)
            if entity is None:
                raise ValidationError(f"No {PlatformName(platform).value} entity {entity_id} to snapshot")
            snapshot = await self.insert_snapshot(
                session, user_id, entity_id, platform, entity.state(),
                snapshot_type, sync_log_id, restore_point_id,
            )
            await session.commit()

        logger.debug(f"Snapshot {snapshot.id} v{snapshot.version} ({snapshot.snapshot_type}) for {snapshot.platform}:{entity_id}")
        return snapshot

    async def snapshot_data(
        self,
        user_id: str,
        entity_id: str,
        platform: PlatformName,
        data: Dict[str, Any],
        snapshot_type: SnapshotType = SnapshotType.MANUAL,
        sync_log_id: Optional[int] = None,
    ) -> ProductSnapshot:
        """Capture a caller-supplied payload (e.g. a remote record before it is overwritten)."""
        async with self.session_factory() as session:
            snapshot = await self.insert_snapshot(session, user_id, entity_id, platform, data, snapshot_type, sync_log_id)
            await session.commit()
        return snapshot

    async def snapshot_batch(
        self,
        user_id: str,
        entities: Sequence[Tuple[str, PlatformName]],
        snapshot_type: SnapshotType = SnapshotType.MANUAL,
        sync_log_id: Optional[int] = None,
    ) -> List[ProductSnapshot]:
        """Snapshot several entities in one transaction; unknown entities are skipped."""
        snapshots = []
        async with self.session_factory() as session:
            for entity_id, platform in entities:
                entity = await self._fetch_entity(session, user_id, entity_id, platform)
                if entity is None:
                    logger.warning(f"Skipping snapshot of missing {PlatformName(platform).value} entity {entity_id}")
                    continue
                snapshots.append(await self.insert_snapshot(
                    session, user_id, entity_id, platform, entity.state(), snapshot_type, sync_log_id
                ))
            await session.commit()
        return snapshots

    async def get(self, snapshot_id: int) -> ProductSnapshot:
        async with self.session_factory() as session:
            snapshot = await session.get(ProductSnapshot, snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found")
        return snapshot

    async def get_latest(self, user_id: str, entity_id: str, platform: PlatformName) -> Optional[ProductSnapshot]:
        async with self.session_factory() as session:
            return await self._latest(session, user_id, entity_id, PlatformName(platform).value)

    async def get_at_time(
        self,
        user_id: str,
        entity_id: str,
        platform: PlatformName,
        timestamp: datetime,
    ) -> Optional[ProductSnapshot]:
        """Most recent snapshot taken at or before ``timestamp``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProductSnapshot)
                .where(
                    ProductSnapshot.user_id == user_id,
                    ProductSnapshot.entity_id == str(entity_id),
                    ProductSnapshot.platform == PlatformName(platform).value,
                    ProductSnapshot.created_at <= timestamp,
                )
                .order_by(ProductSnapshot.created_at.desc(), ProductSnapshot.version.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_for_restore_point(self, restore_point_id: int) -> List[ProductSnapshot]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProductSnapshot)
                .where(ProductSnapshot.restore_point_id == restore_point_id)
                .order_by(ProductSnapshot.id)
            )
            return list(result.scalars().all())

    @staticmethod
    def verify(snapshot: ProductSnapshot) -> bool:
        return compute_checksum(snapshot.data) == snapshot.checksum

    @staticmethod
    def assert_valid(snapshot: ProductSnapshot):
        actual = compute_checksum(snapshot.data)
        if actual != snapshot.checksum:
            raise SnapshotIntegrityError(snapshot.id, snapshot.checksum, actual)


class RestorePointService:
    """Named, user-visible markers that group one snapshot per entity."""

    def __init__(self, session_factory: async_sessionmaker, snapshot_service: SnapshotService):
        self.session_factory = session_factory
        self.snapshot_service = snapshot_service

    async def create_restore_point(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        point_type: RestorePointType = RestorePointType.MANUAL,
        platforms: Optional[Sequence[PlatformName]] = None,
    ) -> RestorePoint:
        """
        Snapshot every mirrored entity of the user and link the snapshots to a
        new restore point. The restore point and its snapshots commit together.
        """
        async with self.session_factory() as session:
            restore_point = RestorePoint(
                user_id=user_id,
                name=name,
                description=description,
                point_type=RestorePointType(point_type).value,
                status=RestorePointStatus.ACTIVE.value,
            )
            session.add(restore_point)
            await session.flush()

            query = select(Product).where(Product.user_id == user_id).order_by(Product.id)
            if platforms:
                query = query.where(Product.platform.in_([PlatformName(p).value for p in platforms]))
            products = (await session.execute(query)).scalars().all()

            for product in products:
                await self.snapshot_service.insert_snapshot(
                    session,
                    user_id,
                    product.platform_product_id,
                    product.platform,
                    product.state(),
                    SnapshotType.MANUAL,
                    restore_point_id=restore_point.id,
                )
            restore_point.total_snapshots = len(products)
            await session.commit()

        logger.info(f"Created restore point {restore_point.id} '{name}' with {restore_point.total_snapshots} snapshots")
        return restore_point

    async def get_restore_point(self, restore_point_id: int) -> Optional[RestorePoint]:
        async with self.session_factory() as session:
            return await session.get(RestorePoint, restore_point_id)

    async def list_restore_points(self, user_id: str, limit: int = 50) -> List[RestorePoint]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RestorePoint)
                .where(RestorePoint.user_id == user_id)
                .order_by(RestorePoint.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_recent_restore_points(self, user_id: str, days: int = 14) -> List[RestorePoint]:
        since = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(RestorePoint)
                .where(RestorePoint.user_id == user_id, RestorePoint.created_at >= since)
                .order_by(RestorePoint.created_at.desc())
            )
            return list(result.scalars().all())


    async def expire_restore_points(self, older_than_days: int) -> int:
        """Mark active restore points older than the retention window as expired."""
        cutoff = utcnow() - timedelta(days=older_than_days)
        async with self.session_factory() as session:
            result = await session.execute(
                update(RestorePoint)
                .where(
                    RestorePoint.status == RestorePointStatus.ACTIVE.value,
                    RestorePoint.created_at < cutoff,
                )
                .values(status=RestorePointStatus.EXPIRED.value)
            )
            await session.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} restore point(s) older than {older_than_days} days")
        return result.rowcount
