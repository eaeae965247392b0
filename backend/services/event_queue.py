# backend/services/event_queue.py
import asyncio
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Union
import logging

from storage.models import ServerEvent, ServerEventIn
from storage.partition_store import JsonPartitionStore

logger = logging.getLogger(__name__)

EventInput = Union[ServerEvent, ServerEventIn, Mapping[str, Any]]


def group_by_partition(batch: List[ServerEvent]) -> Dict[str, List[ServerEvent]]:
    """Split a batch into per-day groups, keeping arrival order inside each"""
    groups: Dict[str, List[ServerEvent]] = {}
    for event in batch:
        groups.setdefault(event.partition_key, []).append(event)
    return groups


class EventQueue:
    """In-memory queue of server events, drained in batches by one background task.

    Producers call ``enqueue`` and never wait on disk. A single worker task
    owns draining: it takes the whole pending sequence at once, groups it by
    day and does a read-modify-write of each day's file. A failed day is
    logged and dropped without touching the other days of the same batch.
    """

    def __init__(self, store: JsonPartitionStore):
        self.store = store
        self._pending: Deque[ServerEvent] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None
        self._stopping = False
        self._draining = False
        self._inflight = 0  # taken off the queue but not yet persisted or dropped
        self.stats = {
            'total_enqueued': 0,
            'total_persisted': 0,
            'total_dropped': 0,
            'batches_flushed': 0,
            'partition_errors': 0,
            'drain_errors': 0
        }

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, event: EventInput) -> Optional[ServerEvent]:
        """Add event to queue. Never raises; returns None if the event was dropped."""
        try:
            record = ServerEvent.from_input(event)
        except Exception as e:
            self.stats['total_dropped'] += 1
            logger.error(f"❌ Dropping invalid server event: {e}")
            return None

        self._pending.append(record)
        self.stats['total_enqueued'] += 1
        self._notify()
        return record

    def _notify(self):
        loop = self._loop
        if loop is None or loop.is_closed():
            self._mark_pending()
            return

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is loop:
            self._mark_pending()
        else:
            # asyncio.Event is not thread-safe; hand the wake-up to the worker's loop
            loop.call_soon_threadsafe(self._mark_pending)

    def _mark_pending(self):
        self._idle.clear()
        self._wakeup.set()

    def start(self) -> asyncio.Task:
        """Spawn the drain worker on the running loop"""
        if self.running:
            return self._worker

        self._loop = asyncio.get_running_loop()
        self._stopping = False
        self._worker = asyncio.create_task(self._run(), name="server-event-drain")
        if self._pending:
            self._mark_pending()
        return self._worker

    async def _run(self):
        logger.info("🚀 Server event drain worker started")

        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            self._draining = True
            try:
                await self._drain()
            except Exception as e:
                lost = self._take_inflight()
                self.stats['drain_errors'] += 1
                logger.error(f"❌ Fatal error in server event drain, dropped {lost} server events: {e}")
            finally:
                self._draining = False

            if self._pending:
                self._wakeup.set()
            elif not self._wakeup.is_set():
                self._idle.set()

            if self._stopping and not self._pending:
                break

        self._idle.set()
        logger.info("🛑 Server event drain worker stopped")

    async def _drain(self):
        while self._pending:
            # New arrivals during the writes below wait for the next iteration
            batch = [self._pending.popleft() for _ in range(len(self._pending))]
            self._inflight = len(batch)

            for key, events in group_by_partition(batch).items():
                try:
                    existing = await self.store.read_partition(key)
                    existing.extend(event.to_record() for event in events)
                    await self.store.write_partition(key, existing)
                    self.stats['total_persisted'] += len(events)
                except Exception as e:
                    self.stats['partition_errors'] += 1
                    self.stats['total_dropped'] += len(events)
                    logger.error(f"❌ Failed to write {len(events)} server events for {key}: {e}")
                self._inflight -= len(events)

            self.stats['batches_flushed'] += 1
            logger.debug(f"📦 Flushed batch of {len(batch)} server events")

    def _take_inflight(self) -> int:
        lost = self._inflight
        self._inflight = 0
        self.stats['total_dropped'] += lost
        return lost

    async def join(self):
        """Wait until every enqueued event has been through a drain pass"""
        if not self.running:
            raise RuntimeError("Server event drain worker is not running")
        while self._pending or not self._idle.is_set():
            await self._idle.wait()
            await asyncio.sleep(0)

    async def stop(self, timeout: Optional[float] = None):
        """Flush pending events, then stop the drain worker"""
        if not self.running:
            return

        self._stopping = True
        self._wakeup.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._worker), timeout=timeout)
        except asyncio.TimeoutError:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            pending = len(self._pending)
            self._pending.clear()
            self.stats['total_dropped'] += pending
            lost = self._take_inflight()
            logger.warning(
                f"⚠️ Drain did not finish within {timeout}s, dropped {pending} pending "
                f"and {lost} in-flight server events"
            )

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics"""
        return {
            **self.stats,
            'current_size': len(self._pending),
            'draining': self._draining,
            'running': self.running
        }
