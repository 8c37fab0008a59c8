"""In-memory partitioned broker for tests and local runs.

No external dependencies.  Records are appended to per-topic, per-partition
logs; a key always maps to the same partition.  Each consumer group gets
its own queue, replaying the topic from the beginning on first subscribe.

Improvements:
- Injectable send failures (``fail_next``) for retry tests
- Ack tracking per group
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator

from orderflow.core.errors import BrokerError, BrokerNotStartedError
from orderflow.core.ids import slot_for
from orderflow.core.models import BrokerAck, BrokerRecord

logger = logging.getLogger(__name__)


class MemoryBroker:
    """In-memory broker. Safe within a single asyncio event loop."""

    def __init__(self, partitions: int = 3) -> None:
        if partitions < 1:
            raise ValueError(f"partitions must be >= 1, got {partitions}")
        self._partitions = partitions
        # topic -> partition -> records
        self._logs: dict[str, list[list[BrokerRecord]]] = {}
        # topic -> records in arrival order (all partitions)
        self._arrivals: dict[str, list[BrokerRecord]] = defaultdict(list)
        # (topic, group) -> delivery queue; ``None`` marks shutdown
        self._queues: dict[tuple[str, str], asyncio.Queue[BrokerRecord | None]] = {}
        self._acked: dict[str, list[BrokerRecord]] = defaultdict(list)
        self._running = False

        self._fail_budget = 0
        self._failed_sends = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        for queue in self._queues.values():
            queue.put_nowait(None)

    async def __aenter__(self) -> MemoryBroker:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    @property
    def partitions(self) -> int:
        return self._partitions

    # ------------------------------------------------------------------
    # Produce / consume
    # ------------------------------------------------------------------

    async def send(self, topic: str, key: str, value: bytes) -> BrokerAck:
        """Append a record to the key's partition."""
        if not self._running:
            raise BrokerNotStartedError("MemoryBroker not started")

        if self._fail_budget > 0:
            self._fail_budget -= 1
            self._failed_sends += 1
            raise BrokerError(f"Injected send failure on {topic} key={key}")

        partition = slot_for(key, self._partitions)
        log = self._topic_log(topic)[partition]
        record = BrokerRecord(
            topic=topic,
            key=key,
            value=value,
            partition=partition,
            offset=str(len(log)),
        )
        log.append(record)
        self._arrivals[topic].append(record)

        for (queue_topic, _group), queue in self._queues.items():
            if queue_topic == topic:
                queue.put_nowait(record)

        return BrokerAck(topic=topic, partition=partition, offset=record.offset)

    async def subscribe(self, topic: str, group: str) -> AsyncIterator[BrokerRecord]:
        """Yield records for *group* until the broker stops."""
        queue = self._queues.get((topic, group))
        if queue is None:
            queue = asyncio.Queue()
            for record in self._arrivals.get(topic, []):
                queue.put_nowait(record)
            self._queues[(topic, group)] = queue
            if not self._running:
                queue.put_nowait(None)

        while True:
            record = await queue.get()
            if record is None:
                return
            yield record

    async def ack(self, group: str, record: BrokerRecord) -> None:
        self._acked[group].append(record)

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def fail_next(self, count: int = 1) -> None:
        """Make the next *count* sends raise ``BrokerError``."""
        self._fail_budget += count

    @property
    def failed_sends(self) -> int:
        return self._failed_sends

    def records(self, topic: str, partition: int | None = None) -> list[BrokerRecord]:
        """Records on *topic* in arrival order, optionally one partition only."""
        if partition is None:
            return list(self._arrivals.get(topic, []))
        logs = self._logs.get(topic)
        return list(logs[partition]) if logs else []

    def backlog(self, topic: str, group: str) -> int:
        """Records not yet taken by *group*'s consumer."""
        queue = self._queues.get((topic, group))
        if queue is None:
            return len(self._arrivals.get(topic, []))
        return queue.qsize()

    def acked(self, group: str) -> list[BrokerRecord]:
        return list(self._acked.get(group, []))

    def _topic_log(self, topic: str) -> list[list[BrokerRecord]]:
        logs = self._logs.get(topic)
        if logs is None:
            logs = self._logs[topic] = [[] for _ in range(self._partitions)]
        return logs
