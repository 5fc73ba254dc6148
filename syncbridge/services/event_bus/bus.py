# syncbridge/services/event_bus/bus.py
"""
In-process event bus with durable storage.

Every published event is stored first, then either dispatched immediately
(critical priority) or queued for the dispatch loop. Failed handlers are
retried with the subscription's backoff until the event's max_retries is
used up, after which the event is escalated to an operator alert.
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from syncbridge.core.config import Settings
from syncbridge.core.enums import (
    AlertSeverity,
    AlertType,
    EntityType,
    EventPriority,
    EventSource,
    EventStatus,
    EventType,
    PlatformName,
    ProcessingResult,
)
from syncbridge.core.exceptions import EventHandlerTimeoutError, ValidationError
from syncbridge.core.utils import utcnow
from syncbridge.services.event_bus.handlers import HandlerContext, HandlerResult
from syncbridge.services.event_bus.queue import PriorityEventQueue
from syncbridge.services.event_bus.store import EventStore
from syncbridge.services.event_bus.subscriptions import EventSubscription, compute_backoff
from syncbridge.services.event_bus.types import ProcessingRecord, SyncEvent, event_view

logger = logging.getLogger(__name__)

BUS_PROCESSOR = "event_bus"


class EventBus:
    def __init__(
        self,
        store: EventStore,
        settings: Settings,
        context: Optional[HandlerContext] = None,
        alert_service=None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.settings = settings
        self.context = context or HandlerContext(alert_service=alert_service)
        self.alert_service = alert_service
        self.clock = clock
        self.rng = rng
        self.queue = PriorityEventQueue()
        self.subscriptions: Dict[str, EventSubscription] = {}
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._orphaned: set = set()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, subscription: EventSubscription) -> str:
        if subscription.name in self.subscriptions:
            raise ValidationError(f"Subscription '{subscription.name}' already exists")
        self.subscriptions[subscription.name] = subscription
        logger.info(f"Subscribed '{subscription.name}' to {[t.value for t in subscription.event_types]}")
        return subscription.id

    def unsubscribe(self, name_or_id: str) -> bool:
        for name, subscription in list(self.subscriptions.items()):
            if name == name_or_id or subscription.id == name_or_id:
                del self.subscriptions[name]
                logger.info(f"Unsubscribed '{name}'")
                return True
        return False

    def matching_subscriptions(self, event: SyncEvent) -> List[EventSubscription]:
        view = event_view(event)
        matched = [s for s in self.subscriptions.values() if s.matches(event, view)]
        return sorted(matched, key=lambda s: s.priority, reverse=True)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, event: SyncEvent) -> str:
        """
        Store the event, then dispatch it now (critical) or queue it.

        Returns:
            The event id
        """
        if "max_retries" not in event.metadata.model_fields_set:
            event.metadata.max_retries = self.settings.EVENT_DEFAULT_MAX_RETRIES
        event.status = EventStatus.CREATED

        await self.store.append(event)

        if event.metadata.priority == EventPriority.CRITICAL:
            await self.dispatch(event)
        else:
            self.queue.push(event)
        return event.id

    async def publish_rate_limited(self, user_id: str, platform: PlatformName, wait_seconds: float, consecutive_errors: int):
        """Publisher hook for the rate gate."""
        await self.publish(SyncEvent(
            type=EventType.API_RATE_LIMITED,
            source=EventSource.SYSTEM,
            entity_type=EntityType.SYSTEM,
            entity_id=PlatformName(platform).value,
            user_id=user_id,
            payload={
                "platform": PlatformName(platform).value,
                "wait_seconds": wait_seconds,
                "consecutive_errors": consecutive_errors,
            },
        ))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _run_handler(self, subscription: EventSubscription, event: SyncEvent) -> HandlerResult:
        timeout = subscription.timeout or self.settings.EVENT_HANDLER_TIMEOUT_SECONDS
        task = asyncio.ensure_future(subscription.handler.handle(event, self.context))
        try:
            result = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            # The handler keeps running; only our wait is abandoned
            self._orphaned.add(task)
            task.add_done_callback(self._orphan_done)
            raise EventHandlerTimeoutError(
                f"Handler '{subscription.name}' timed out after {timeout}s on event {event.id}"
            )
        return result if result is not None else HandlerResult()

    def _orphan_done(self, task: asyncio.Task):
        self._orphaned.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Timed-out handler finished with error: {error}")
        else:
            logger.info("Timed-out handler finished after its deadline")

    async def _record(self, event: SyncEvent, processor: str, result: ProcessingResult, started: float, error: Optional[str] = None):
        record = ProcessingRecord(
            processor=processor,
            result=result,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )
        event.metadata.processing_history.append(record)
        await self.store.record_processing(event.id, record)

    async def dispatch(self, event: SyncEvent) -> EventStatus:
        """
        Run every matching subscription that has not yet succeeded for this
        event, in descending subscription priority, one at a time.
        """
        matched = self.matching_subscriptions(event)
        if not matched:
            logger.debug(f"No subscribers for event {event.id} ({event.type.value})")
            event.status = EventStatus.SUCCESS
            await self.store.update_state(event.id, EventStatus.SUCCESS, event.metadata.retry_count)
            return event.status

        event.status = EventStatus.DISPATCHED
        await self.store.update_state(event.id, EventStatus.DISPATCHED, event.metadata.retry_count)

        already_done = event.succeeded_processors()
        failures = []
        for subscription in matched:
            if subscription.processor_name in already_done:
                continue
            started = time.monotonic()
            try:
                result = await self._run_handler(subscription, event)
            except Exception as e:
                logger.warning(f"Handler '{subscription.name}' failed on event {event.id}: {e}")
                await self._record(event, subscription.processor_name, ProcessingResult.FAILURE, started, str(e))
                failures.append(subscription)
                await self._compensate(subscription, event, e)
                continue

            await self._record(event, subscription.processor_name, ProcessingResult.SUCCESS, started)
            await self._publish_follow_ups(event, result)

        if not failures:
            event.status = EventStatus.SUCCESS
            await self.store.update_state(event.id, EventStatus.SUCCESS, event.metadata.retry_count)
            return event.status

        if event.metadata.retry_count >= event.metadata.max_retries:
            await self._escalate(event, failures)
            return event.status

        delay = max(compute_backoff(s.backoff, event.metadata.retry_count, self.rng) for s in failures)
        event.metadata.retry_count += 1
        not_before = self.clock() + timedelta(seconds=delay)
        event.status = EventStatus.DEFERRED
        await self._record(event, BUS_PROCESSOR, ProcessingResult.DEFERRED, time.monotonic(), f"retry in {delay:.1f}s")
        await self.store.update_state(event.id, EventStatus.DEFERRED, event.metadata.retry_count, not_before)
        self.queue.push(event, not_before)
        logger.info(
            f"Deferred event {event.id} (retry {event.metadata.retry_count}/{event.metadata.max_retries}) for {delay:.1f}s"
        )
        return event.status

    async def _compensate(self, subscription: EventSubscription, event: SyncEvent, error: BaseException):
        try:
            await subscription.handler.rollback(event, self.context, error)
        except Exception as e:
            logger.error(f"Rollback of handler '{subscription.name}' failed for event {event.id}: {e}", exc_info=True)

    async def _publish_follow_ups(self, event: SyncEvent, result: HandlerResult):
        for follow_up in result.events:
            try:
                await self.publish(follow_up)
            except Exception as e:
                logger.error(f"Failed to publish follow-up of event {event.id}: {e}", exc_info=True)

    async def _escalate(self, event: SyncEvent, failures: Sequence[EventSubscription]):
        event.status = EventStatus.ESCALATED
        await self.store.update_state(event.id, EventStatus.ESCALATED, event.metadata.retry_count)
        names = ", ".join(s.name for s in failures)
        logger.error(f"Event {event.id} escalated after {event.metadata.retry_count} retries ({names})")
        if self.alert_service:
            await self.alert_service.create_alert(
                AlertType.EVENT_ESCALATED,
                AlertSeverity.HIGH,
                f"Event {event.type.value} could not be processed",
                f"Handlers {names} kept failing on {event.entity_type.value} {event.entity_id}",
                user_id=event.user_id,
                source="event_bus",
                metadata={"event_id": event.id, "retry_count": event.metadata.retry_count},
            )

    async def dispatch_next(self) -> Optional[EventStatus]:
        """Dispatch the best ready event, if any."""
        event = self.queue.pop_ready(self.clock())
        if event is None:
            return None
        return await self.dispatch(event)

    async def drain(self) -> int:
        """Dispatch every event that is ready now. Returns how many were dispatched."""
        count = 0
        while not self._stop.is_set():
            if await self.dispatch_next() is None:
                break
            count += 1
        return count

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    async def run(self):
        """Dispatch at most one ready event per tick until stopped."""
        interval = self.settings.EVENT_DISPATCH_INTERVAL_SECONDS
        logger.info(f"Event dispatch loop started (tick {interval}s)")
        while not self._stop.is_set():
            try:
                await self.dispatch_next()
            except Exception as e:
                # The event stays pending in the store and is picked up again by recover_pending
                logger.error(f"Event dispatch failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Event dispatch loop stopped")

    async def start(self):
        if self._task and not self._task.done():
            return
        self._stop.clear()
        await self.recover_pending()
        self._task = asyncio.create_task(self.run())

    async def stop(self):
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def recover_pending(self) -> int:
        """Requeue events that were stored but never finished (e.g. before a restart)."""
        pending = [e for e in await self.store.load_pending() if e.id not in self.queue]
        due_times = await self.store.next_attempt_times([e.id for e in pending])
        for event in pending:
            self.queue.push(event, due_times.get(event.id))
        if pending:
            logger.info(f"Recovered {len(pending)} pending event(s)")
        return len(pending)

    # ------------------------------------------------------------------
    # Replay and stats
    # ------------------------------------------------------------------

    async def replay_events(
        self,
        start: datetime,
        end: datetime,
        event_types: Optional[Sequence[EventType]] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """
        Re-run matching handlers for stored events in a time window, oldest
        first. Replays are recorded in the processing history but do not
        change the events' dispatch state.
        """
        events = await self.store.replay(start, end, event_types, user_id)
        for event in events:
            for subscription in self.matching_subscriptions(event):
                started = time.monotonic()
                processor = f"{subscription.processor_name} (replay)"
                try:
                    result = await self._run_handler(subscription, event)
                except Exception as e:
                    logger.warning(f"Replay of event {event.id} by '{subscription.name}' failed: {e}")
                    await self._record(event, processor, ProcessingResult.FAILURE, started, str(e))
                    continue
                await self._record(event, processor, ProcessingResult.SUCCESS, started)
                await self._publish_follow_ups(event, result)
        logger.info(f"Replayed {len(events)} event(s) between {start.isoformat()} and {end.isoformat()}")
        return len(events)

    async def get_processing_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        stats = await self.store.processing_stats(since)
        return {
            "results": stats,
            "queued": len(self.queue),
            "subscriptions": len(self.subscriptions),
            "running": self.running,
        }
