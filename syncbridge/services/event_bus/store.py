import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from syncbridge.core.enums import (
    BusinessImpact,
    EntityType,
    EventPriority,
    EventSource,
    EventStatus,
    EventType,
    ProcessingResult,
)
from syncbridge.core.utils import ensure_utc, to_jsonable
from syncbridge.models.sync_event import EventProcessingHistory, SyncEventRecord
from syncbridge.services.event_bus.types import EventMetadata, ProcessingRecord, SyncEvent

logger = logging.getLogger(__name__)

PENDING_STATUSES = (EventStatus.CREATED.value, EventStatus.DISPATCHED.value, EventStatus.DEFERRED.value)


class EventStore:
    """Durable, append-only event log plus the processing history of each event."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, event: SyncEvent) -> SyncEvent:
        record = SyncEventRecord(
            id=event.id,
            event_type=event.type.value,
            source=event.source.value,
            entity_type=event.entity_type.value,
            entity_id=event.entity_id,
            user_id=event.user_id,
            payload=to_jsonable(event.payload),
            correlation_id=event.correlation_id,
            causation_id=event.causation_id,
            version=event.version,
            priority=event.metadata.priority.value,
            max_retries=event.metadata.max_retries,
            tags=list(event.metadata.tags),
            business_impact=event.metadata.business_impact.value if event.metadata.business_impact else None,
            status=event.status.value,
            retry_count=event.metadata.retry_count,
            occurred_at=event.timestamp,
        )
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
        logger.debug(f"Stored event {event.id} ({event.type.value} {event.entity_type.value}:{event.entity_id})")
        return event

    async def record_processing(self, event_id: str, record: ProcessingRecord):
        async with self.session_factory() as session:
            session.add(EventProcessingHistory(
                event_id=event_id,
                processor=record.processor,
                result=record.result.value,
                duration_ms=record.duration_ms,
                error=record.error,
                processed_at=record.timestamp,
            ))
            await session.commit()

    async def update_state(
        self,
        event_id: str,
        status: EventStatus,
        retry_count: Optional[int] = None,
        next_attempt_at: Optional[datetime] = None,
    ):
        values = {"status": EventStatus(status).value, "next_attempt_at": next_attempt_at}
        if retry_count is not None:
            values["retry_count"] = retry_count
        async with self.session_factory() as session:
            await session.execute(update(SyncEventRecord).where(SyncEventRecord.id == event_id).values(**values))
            await session.commit()

    async def _hydrate(self, session: AsyncSession, records: Sequence[SyncEventRecord]) -> List[SyncEvent]:
        if not records:
            return []
        history: Dict[str, List[ProcessingRecord]] = defaultdict(list)
        rows = await session.execute(
            select(EventProcessingHistory)
            .where(EventProcessingHistory.event_id.in_([r.id for r in records]))
            .order_by(EventProcessingHistory.id)
        )
        for row in rows.scalars():
            history[row.event_id].append(ProcessingRecord(
                processor=row.processor,
                timestamp=ensure_utc(row.processed_at),
                result=ProcessingResult(row.result),
                duration_ms=row.duration_ms,
                error=row.error,
            ))

        return [
            SyncEvent(
                id=r.id,
                type=EventType(r.event_type),
                source=EventSource(r.source),
                entity_type=EntityType(r.entity_type),
                entity_id=r.entity_id,
                user_id=r.user_id,
                timestamp=ensure_utc(r.occurred_at),
                payload=r.payload or {},
                correlation_id=r.correlation_id,
                causation_id=r.causation_id,
                version=r.version,
                status=EventStatus(r.status),
                metadata=EventMetadata(
                    priority=EventPriority(r.priority),
                    retry_count=r.retry_count,
                    max_retries=r.max_retries,
                    processing_history=history.get(r.id, []),
                    tags=r.tags or [],
                    business_impact=BusinessImpact(r.business_impact) if r.business_impact else None,
                ),
            )
            for r in records
        ]

    async def _fetch(self, query) -> List[SyncEvent]:
        async with self.session_factory() as session:
            records = (await session.execute(query)).scalars().all()
            return await self._hydrate(session, records)

    async def get_by_id(self, event_id: str) -> Optional[SyncEvent]:
        events = await self._fetch(select(SyncEventRecord).where(SyncEventRecord.id == event_id))
        return events[0] if events else None

    async def get_by_correlation_id(self, correlation_id: str) -> List[SyncEvent]:
        return await self._fetch(
            select(SyncEventRecord)
            .where(SyncEventRecord.correlation_id == correlation_id)
            .order_by(SyncEventRecord.occurred_at, SyncEventRecord.created_at)
        )

    async def get_by_entity(self, entity_type: EntityType, entity_id: str, user_id: Optional[str] = None) -> List[SyncEvent]:
        query = select(SyncEventRecord).where(
            SyncEventRecord.entity_type == EntityType(entity_type).value,
            SyncEventRecord.entity_id == str(entity_id),
        )
        if user_id is not None:
            query = query.where(SyncEventRecord.user_id == user_id)
        return await self._fetch(query.order_by(SyncEventRecord.occurred_at.desc()))

    async def query(
        self,
        user_id: Optional[str] = None,
        event_types: Optional[Sequence[EventType]] = None,
        sources: Optional[Sequence[EventSource]] = None,
        entity_type: Optional[EntityType] = None,
        status: Optional[EventStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[SyncEvent]:
        query = select(SyncEventRecord)
        if user_id is not None:
            query = query.where(SyncEventRecord.user_id == user_id)
        if event_types:
            query = query.where(SyncEventRecord.event_type.in_([EventType(t).value for t in event_types]))
        if sources:
            query = query.where(SyncEventRecord.source.in_([EventSource(s).value for s in sources]))
        if entity_type is not None:
            query = query.where(SyncEventRecord.entity_type == EntityType(entity_type).value)
        if status is not None:
            query = query.where(SyncEventRecord.status == EventStatus(status).value)
        if start is not None:
            query = query.where(SyncEventRecord.occurred_at >= start)
        if end is not None:
            query = query.where(SyncEventRecord.occurred_at <= end)
        query = query.order_by(SyncEventRecord.occurred_at.desc()).limit(limit).offset(offset)
        return await self._fetch(query)

    async def replay(
        self,
        start: datetime,
        end: datetime,
        event_types: Optional[Sequence[EventType]] = None,
        user_id: Optional[str] = None,
    ) -> List[SyncEvent]:
        """Stored events in the window, oldest first."""
        query = select(SyncEventRecord).where(
            SyncEventRecord.occurred_at >= start,
            SyncEventRecord.occurred_at <= end,
        )
        if event_types:
            query = query.where(SyncEventRecord.event_type.in_([EventType(t).value for t in event_types]))
        if user_id is not None:
            query = query.where(SyncEventRecord.user_id == user_id)
        return await self._fetch(query.order_by(SyncEventRecord.occurred_at, SyncEventRecord.created_at))

    async def load_pending(self) -> List[SyncEvent]:
        """Events that were accepted but never reached a terminal state."""
        return await self._fetch(
            select(SyncEventRecord)
            .where(SyncEventRecord.status.in_(PENDING_STATUSES))
            .order_by(SyncEventRecord.occurred_at)
        )

    async def next_attempt_times(self, event_ids: Sequence[str]) -> Dict[str, Optional[datetime]]:
        if not event_ids:
            return {}
        async with self.session_factory() as session:
            rows = await session.execute(
                select(SyncEventRecord.id, SyncEventRecord.next_attempt_at).where(SyncEventRecord.id.in_(list(event_ids)))
            )
            return {row.id: ensure_utc(row.next_attempt_at) for row in rows}

    async def processing_stats(self, since: Optional[datetime] = None) -> Dict[str, int]:
        query = select(EventProcessingHistory.result, func.count(EventProcessingHistory.id)).group_by(
            EventProcessingHistory.result
        )
        if since is not None:
            query = query.where(EventProcessingHistory.processed_at >= since)
        async with self.session_factory() as session:
            rows = await session.execute(query)
            stats = {result.value: 0 for result in ProcessingResult}
            stats.update({result: count for result, count in rows.all()})
            return stats
