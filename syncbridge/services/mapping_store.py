# syncbridge/services/mapping_store.py
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.enums import MappingKind, MappingStatus, PlatformName
from syncbridge.core.exceptions import MappingError
from syncbridge.core.utils import utcnow
from syncbridge.database import insert_or_get
from syncbridge.models.mappings import CustomerMapping, ItemMapping, OrderMapping

logger = logging.getLogger(__name__)

MAPPING_MODELS = {
    MappingKind.ITEM: ItemMapping,
    MappingKind.ORDER: OrderMapping,
    MappingKind.CUSTOMER: CustomerMapping,
}


def model_for(kind: MappingKind):
    return MAPPING_MODELS[MappingKind(kind)]


class EntityMappingStore:
    """
    Durable identity map between storefront and ERP records.

    Creation is a native insert-or-ignore on the unique source key, so
    concurrent callers for the same source record always end up holding the
    same row.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_or_create_mapping(
        self,
        kind: MappingKind,
        user_id: str,
        source_platform: PlatformName,
        source_system_id: str,
        target_platform: PlatformName,
        extra: Optional[Dict[str, Any]] = None,
    ):
        """
        Return the mapping for a source record, creating an unbound one if needed.

        Args:
            kind: item, order or customer
            user_id: Owner of both records
            source_platform: Platform the record was read from
            source_system_id: Record id on the source platform
            target_platform: Platform the record is mirrored to
            extra: Kind-specific columns (sku, email, order_number, ...) used on insert only

        Returns:
            The stored mapping row
        """
        model = model_for(kind)
        values = {
            "user_id": user_id,
            "source_platform": PlatformName(source_platform).value,
            "source_system_id": str(source_system_id),
            "target_platform": PlatformName(target_platform).value,
            "sync_status": MappingStatus.PENDING.value,
            "mapping_metadata": {},
        }
        if extra:
            values.update(extra)

        async with self.session_factory() as session:
            mapping = await insert_or_get(
                session, model, values, ["user_id", "source_platform", "source_system_id"]
            )
            await session.commit()
        return mapping

    @staticmethod
    def resolve_target(mapping) -> Optional[str]:
        return mapping.target_system_id if mapping is not None else None

    async def get_mapping(
        self,
        kind: MappingKind,
        user_id: str,
        source_platform: PlatformName,
        source_system_id: str,
    ):
        model = model_for(kind)
        async with self.session_factory() as session:
            result = await session.execute(
                select(model).where(
                    model.user_id == user_id,
                    model.source_platform == PlatformName(source_platform).value,
                    model.source_system_id == str(source_system_id),
                )
            )
            return result.scalar_one_or_none()

    async def find_by_target(
        self,
        kind: MappingKind,
        user_id: str,
        target_platform: PlatformName,
        target_system_id: str,
    ):
        model = model_for(kind)
        async with self.session_factory() as session:
            result = await session.execute(
                select(model).where(
                    model.user_id == user_id,
                    model.target_platform == PlatformName(target_platform).value,
                    model.target_system_id == str(target_system_id),
                ).order_by(model.id).limit(1)
            )
            return result.scalar_one_or_none()

    async def bind_target(
        self,
        kind: MappingKind,
        mapping_id: int,
        target_system_id: str,
        rebind: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Record the target id for a mapping and mark it completed.

        A bound target never changes unless ``rebind`` is set (the target
        record was deleted and recreated). The write is a conditional update,
        so of two concurrent binds to different targets exactly one wins and
        the other raises.

        Raises:
            MappingError: the mapping is missing or already bound elsewhere
        """
        model = model_for(kind)
        label = MappingKind(kind).value
        target_system_id = str(target_system_id)
        async with self.session_factory() as session:
            mapping = await session.get(model, mapping_id)
            if mapping is None:
                raise MappingError(f"{label} mapping {mapping_id} not found")

            current = mapping.target_system_id
            if current and current != target_system_id and rebind:
                logger.warning(f"Rebinding {label} mapping {mapping_id} from {current} to {target_system_id}")

            values: Dict[str, Any] = {
                "target_system_id": target_system_id,
                "sync_status": MappingStatus.COMPLETED.value,
                "last_synced": utcnow(),
                "error_message": None,
                "updated_at": utcnow(),
            }
            if metadata:
                values["mapping_metadata"] = {**(mapping.mapping_metadata or {}), **metadata}

            stmt = update(model).where(model.id == mapping_id)
            if not rebind:
                stmt = stmt.where(or_(
                    model.target_system_id.is_(None),
                    model.target_system_id == target_system_id,
                ))
            result = await session.execute(stmt.values(**values))
            await session.commit()

            bound = await session.get(model, mapping_id, populate_existing=True)
            if result.rowcount == 0:
                raise MappingError(
                    f"{label} mapping {mapping_id} is already bound to "
                    f"{bound.target_platform}:{bound.target_system_id}"
                )
            return bound

    async def link_reverse(
        self,
        kind: MappingKind,
        user_id: str,
        source_platform: PlatformName,
        source_system_id: str,
        target_platform: PlatformName,
        target_system_id: str,
    ):
        """
        Make sure the opposite direction knows about a pair we just created,
        so a bidirectional pass does not create the record a second time.
        """
        reverse = await self.find_or_create_mapping(
            kind, user_id, target_platform, target_system_id, source_platform
        )
        if reverse.target_system_id in (None, str(source_system_id)):
            return await self.bind_target(kind, reverse.id, source_system_id)
        logger.warning(
            f"Reverse {MappingKind(kind).value} mapping {reverse.id} already points at "
            f"{reverse.target_system_id}; leaving it untouched"
        )
        return reverse

    async def mark_status(
        self,
        kind: MappingKind,
        mapping_id: int,
        status: MappingStatus,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        model = model_for(kind)
        values: Dict[str, Any] = {
            "sync_status": MappingStatus(status).value,
            "error_message": error_message[:1000] if error_message else None,
            "updated_at": utcnow(),
        }
        if status == MappingStatus.COMPLETED:
            values["last_synced"] = utcnow()

        async with self.session_factory() as session:
            if metadata:
                mapping = await session.get(model, mapping_id)
                if mapping is None:
                    raise MappingError(f"{MappingKind(kind).value} mapping {mapping_id} not found")
                values["mapping_metadata"] = {**(mapping.mapping_metadata or {}), **metadata}
            await session.execute(update(model).where(model.id == mapping_id).values(**values))
            await session.commit()

    async def update_fields(self, kind: MappingKind, mapping_id: int, **values):
        """Set kind-specific columns (currency data, email, sku) on a mapping."""
        model = model_for(kind)
        async with self.session_factory() as session:
            await session.execute(update(model).where(model.id == mapping_id).values(**values))
            await session.commit()

    async def list_bound(
        self,
        kind: MappingKind,
        user_id: str,
        source_platform: Optional[PlatformName] = None,
        source_ids: Optional[Sequence[str]] = None,
    ) -> List:
        """Mappings whose source and target ids are both known."""
        model = model_for(kind)
        query = select(model).where(
            model.user_id == user_id,
            model.target_system_id.is_not(None),
        ).order_by(model.id)
        if source_platform is not None:
            query = query.where(model.source_platform == PlatformName(source_platform).value)
        if source_ids:
            query = query.where(model.source_system_id.in_([str(s) for s in source_ids]))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
