# syncbridge/services/change_tracker.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.enums import ChangeOperation, ChangeSource, EntityType, PlatformName
from syncbridge.core.utils import canonical_json, to_jsonable
from syncbridge.models.change_log import ChangeLogEntry

logger = logging.getLogger(__name__)


def calculate_diff(old_value: Any, new_value: Any) -> Dict[str, Any]:
    """
    Shallow diff between two values.

    Scalars give ``{"type": "simple", "changed": bool}``. Mappings give a
    key-wise ``{key: {"old": ..., "new": ...}}`` for every key whose value
    differs in canonical JSON form, so 1, 1.0 and True are all distinct.
    Nested values are compared whole, not recursed into.
    """
    if isinstance(old_value, Mapping) or isinstance(new_value, Mapping):
        old_map = old_value if isinstance(old_value, Mapping) else {}
        new_map = new_value if isinstance(new_value, Mapping) else {}
        diff = {}
        for key in list(old_map) + [k for k in new_map if k not in old_map]:
            if canonical_json(old_map.get(key)) != canonical_json(new_map.get(key)):
                diff[key] = {"old": old_map.get(key), "new": new_map.get(key)}
        return diff
    return {"type": "simple", "changed": canonical_json(old_value) != canonical_json(new_value)}


@dataclass
class FieldChange:
    """One field-level change for batch logging."""
    user_id: str
    entity_type: EntityType
    entity_id: str
    platform: PlatformName
    operation: ChangeOperation
    field_name: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    sync_log_id: Optional[int] = None
    triggered_by: Optional[str] = None
    before_snapshot_id: Optional[int] = None
    after_snapshot_id: Optional[int] = None


class ChangeTracker:
    """Writes the field-level audit trail. Entries are never updated or deleted."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def build_entry(self, change: FieldChange, change_source: ChangeSource) -> ChangeLogEntry:
        """Unsaved entry, for callers that persist it inside their own transaction."""
        old_value = to_jsonable(change.old_value)
        new_value = to_jsonable(change.new_value)
        return ChangeLogEntry(
            user_id=change.user_id,
            entity_type=EntityType(change.entity_type).value,
            entity_id=str(change.entity_id),
            platform=PlatformName(change.platform).value,
            operation=ChangeOperation(change.operation).value,
            field_name=change.field_name,
            old_value=old_value,
            new_value=new_value,
            value_diff=calculate_diff(old_value, new_value),
            change_source=ChangeSource(change_source).value,
            triggered_by=change.triggered_by,
            sync_log_id=change.sync_log_id,
            before_snapshot_id=change.before_snapshot_id,
            after_snapshot_id=change.after_snapshot_id,
        )

    async def log_change(
        self,
        user_id: str,
        entity_type: EntityType,
        entity_id: str,
        platform: PlatformName,
        operation: ChangeOperation,
        field_name: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        change_source: ChangeSource = ChangeSource.SYNC,
        sync_log_id: Optional[int] = None,
        triggered_by: Optional[str] = None,
        before_snapshot_id: Optional[int] = None,
        after_snapshot_id: Optional[int] = None,
    ) -> ChangeLogEntry:
        change = FieldChange(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            platform=platform,
            operation=operation,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            sync_log_id=sync_log_id,
            triggered_by=triggered_by,
            before_snapshot_id=before_snapshot_id,
            after_snapshot_id=after_snapshot_id,
        )
        entries = await self.log_batch([change], change_source)
        return entries[0]

    async def log_batch(
        self,
        changes: List[FieldChange],
        change_source: ChangeSource = ChangeSource.SYNC,
    ) -> List[ChangeLogEntry]:
        """Persist several field changes in one transaction."""
        if not changes:
            return []
        entries = [self.build_entry(change, change_source) for change in changes]
        async with self.session_factory() as session:
            session.add_all(entries)
            await session.commit()
        logger.debug(f"Logged {len(entries)} change(s) for {changes[0].platform}:{changes[0].entity_id}")
        return entries

    async def get_entity_changes(
        self,
        user_id: str,
        entity_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        platform: Optional[PlatformName] = None,
    ) -> List[ChangeLogEntry]:
        """Change history for one entity, newest first."""
        query = select(ChangeLogEntry).where(
            ChangeLogEntry.user_id == user_id,
            ChangeLogEntry.entity_id == str(entity_id),
        )
        if platform is not None:
            query = query.where(ChangeLogEntry.platform == PlatformName(platform).value)
        if start is not None:
            query = query.where(ChangeLogEntry.changed_at >= start)
        if end is not None:
            query = query.where(ChangeLogEntry.changed_at <= end)
        query = query.order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
