"""Lane-affine worker pool.

Work items are routed by key to one of ``num_lanes`` asyncio workers.  The
key → lane mapping is a stable hash, so every item for one order is
handled by the same worker, in submission order, while different orders
proceed in parallel.  Lane queues are bounded: ``submit`` waits when a
lane is full, which pushes back on the broker consumer.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from orderflow.core.ids import slot_for

logger = logging.getLogger(__name__)

T = TypeVar("T")

LaneHandler = Callable[[int, T], Awaitable[None]]


class LanePool(Generic[T]):
    """Fixed set of ordered lanes.

    Parameters
    ----------
    num_lanes:
        Number of workers.
    handler:
        ``async handler(lane_index, item)``.  Exceptions are logged and
        counted per lane; the lane keeps running.
    queue_size:
        Maximum queued items per lane.
    """

    def __init__(
        self,
        num_lanes: int,
        handler: LaneHandler[T],
        queue_size: int = 1000,
    ) -> None:
        if num_lanes < 1:
            raise ValueError(f"num_lanes must be >= 1, got {num_lanes}")
        self._num_lanes = num_lanes
        self._handler = handler
        self._queues: list[asyncio.Queue[T]] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(num_lanes)
        ]
        self._tasks: list[asyncio.Task] = []
        self._error_counts: dict[int, int] = defaultdict(int)

    @property
    def num_lanes(self) -> int:
        return self._num_lanes

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def lane_for(self, key: str) -> int:
        return slot_for(key, self._num_lanes)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(lane), name=f"lane-{lane}")
            for lane in range(self._num_lanes)
        ]

    async def drain(self) -> None:
        """Wait until every queued item has been handled."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    async def stop(self, drain: bool = True) -> None:
        """Stop workers, by default after finishing queued work."""
        if drain and self._tasks:
            await self.drain()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, key: str, item: T) -> int:
        """Queue *item* on the lane owning *key*; returns the lane index."""
        lane = self.lane_for(key)
        await self._queues[lane].put(item)
        return lane

    async def broadcast(self, item: T) -> None:
        """Queue *item* on every lane (e.g. periodic maintenance ticks)."""
        for queue in self._queues:
            await queue.put(item)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def queue_depths(self) -> list[int]:
        return [queue.qsize() for queue in self._queues]

    def get_error_counts(self) -> dict[int, int]:
        return dict(self._error_counts)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _worker(self, lane: int) -> None:
        queue = self._queues[lane]
        while True:
            item = await queue.get()
            try:
                await self._handler(lane, item)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._error_counts[lane] += 1
                logger.exception("Unhandled error in lane %d", lane)
            finally:
                queue.task_done()
