"""
Priority scheduler for registered emails.

Three bounded lanes (High, Normal, Low) fed by any number of producers and
drained by one consumer. Producers block while their lane is full. The
consumer waits on a condition that every put notifies, so an idle consumer
costs nothing and wakes as soon as any lane has work.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_domain import EmailMetadata, ProcessingPriority, QueuedEmail

logger = get_logger(__name__)

HIGH_PRIORITY_AGE = timedelta(hours=24)
NORMAL_PRIORITY_AGE = timedelta(days=7)


def priority_for(received_at: datetime, now: datetime | None = None) -> ProcessingPriority:
    """Newer mail first: under a day is High, under a week Normal, else Low."""
    age = (now or datetime.now(UTC)) - received_at
    if age < HIGH_PRIORITY_AGE:
        return ProcessingPriority.HIGH
    if age < NORMAL_PRIORITY_AGE:
        return ProcessingPriority.NORMAL
    return ProcessingPriority.LOW


class PriorityScheduler:
    def __init__(self, lane_capacity: int | None = None):
        capacity = lane_capacity or settings.QUEUE_LANE_CAPACITY
        self._lanes: dict[ProcessingPriority, asyncio.Queue[QueuedEmail]] = {
            priority: asyncio.Queue(maxsize=capacity) for priority in ProcessingPriority
        }
        self._queued_ids: set[str] = set()
        self._work_available = asyncio.Condition()

    @property
    def pending_count(self) -> int:
        return sum(lane.qsize() for lane in self._lanes.values())

    def is_queued(self, metadata_id: str) -> bool:
        return metadata_id in self._queued_ids

    async def enqueue(self, item: QueuedEmail) -> bool:
        """
        Put an item on its lane, waiting for room if the lane is full.

        Returns False if the same metadata entry is already waiting.
        """
        if item.metadata_id in self._queued_ids:
            return False
        self._queued_ids.add(item.metadata_id)

        try:
            await self._lanes[item.priority].put(item)
        except BaseException:
            self._queued_ids.discard(item.metadata_id)
            raise

        async with self._work_available:
            self._work_available.notify_all()
        return True

    async def enqueue_metadata(
        self, entry: EmailMetadata, user_id: str, now: datetime | None = None
    ) -> QueuedEmail | None:
        now = now or datetime.now(UTC)
        item = QueuedEmail(
            metadata_id=entry.id,
            email_account_id=entry.email_account_id,
            user_id=user_id,
            priority=priority_for(entry.received_at, now),
            enqueued_at=now,
        )
        return item if await self.enqueue(item) else None

    def dequeue_nowait(self) -> QueuedEmail | None:
        """Take the next item, High before Normal before Low. None when empty."""
        for priority in ProcessingPriority:
            lane = self._lanes[priority]
            if lane.empty():
                continue
            item = lane.get_nowait()
            lane.task_done()
            self._queued_ids.discard(item.metadata_id)
            return item
        return None

    async def wait_for_work(self) -> None:
        """Suspend until any lane holds an item. Cancellable."""
        async with self._work_available:
            await self._work_available.wait_for(lambda: self.pending_count > 0)

    async def dequeue(self) -> QueuedEmail:
        while True:
            await self.wait_for_work()
            item = self.dequeue_nowait()
            if item is not None:
                return item

    def status(self) -> dict:
        return {
            "high": self._lanes[ProcessingPriority.HIGH].qsize(),
            "normal": self._lanes[ProcessingPriority.NORMAL].qsize(),
            "low": self._lanes[ProcessingPriority.LOW].qsize(),
            "total": self.pending_count,
        }
