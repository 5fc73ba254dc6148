import bisect
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from syncbridge.services.event_bus.types import SyncEvent


@dataclass(order=True)
class _Entry:
    sort_key: tuple
    event: SyncEvent = field(compare=False)
    not_before: Optional[datetime] = field(compare=False, default=None)


class PriorityEventQueue:
    """
    Pending events ordered by priority, then by arrival.

    Entries may carry a not-before time (deferred retries); ``pop_ready``
    returns the best entry whose time has come and leaves the rest in place.
    """

    def __init__(self):
        self._entries: List[_Entry] = []
        self._counter = itertools.count()

    def push(self, event: SyncEvent, not_before: Optional[datetime] = None):
        entry = _Entry((-event.metadata.priority.rank, next(self._counter)), event, not_before)
        bisect.insort(self._entries, entry)

    def pop_ready(self, now: datetime) -> Optional[SyncEvent]:
        for index, entry in enumerate(self._entries):
            if entry.not_before is None or entry.not_before <= now:
                del self._entries[index]
                return entry.event
        return None

    def remove(self, event_id: str) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.event.id == event_id:
                del self._entries[index]
                return True
        return False

    def __len__(self):
        return len(self._entries)

    def __contains__(self, event_id: str):
        return any(entry.event.id == event_id for entry in self._entries)

    def snapshot(self) -> List[SyncEvent]:
        return [entry.event for entry in self._entries]
