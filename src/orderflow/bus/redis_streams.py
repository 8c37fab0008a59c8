"""Redis Streams broker implementation.

Each topic is split into ``partitions`` streams named ``<topic>:<n>``; a
record's key picks its stream, so one order's records stay in one stream
and keep their order.  Consumer groups give at-least-once delivery:
records are only acknowledged when the consumer calls ``ack()``, and a
restarted consumer first re-reads its own pending entries before taking
new ones.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import redis.asyncio as aioredis

from orderflow.core.errors import BrokerError, BrokerNotStartedError
from orderflow.core.ids import slot_for
from orderflow.core.models import BrokerAck, BrokerRecord

logger = logging.getLogger(__name__)


class RedisStreamsBroker:
    """Production broker backed by Redis Streams."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        partitions: int = 3,
        max_stream_length: int = 10_000,
        block_ms: int = 1000,
        batch_size: int = 10,
        consumer_name: str | None = None,
    ) -> None:
        if partitions < 1:
            raise ValueError(f"partitions must be >= 1, got {partitions}")
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self._partitions = partitions
        self._max_len = max_stream_length
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._consumer_name = consumer_name
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis."""
        self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        self._running = True

    async def stop(self) -> None:
        """Stop consumer loops and close the Redis connection."""
        self._running = False
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def __aenter__(self) -> RedisStreamsBroker:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    @property
    def partitions(self) -> int:
        return self._partitions

    def stream_name(self, topic: str, partition: int) -> str:
        return f"{topic}:{partition}"

    # ------------------------------------------------------------------
    # Produce
    # ------------------------------------------------------------------

    async def send(self, topic: str, key: str, value: bytes) -> BrokerAck:
        """Append a record to the key's partition stream."""
        client = self._client()
        partition = slot_for(key, self._partitions)
        try:
            msg_id = await client.xadd(
                self.stream_name(topic, partition),
                {"key": key, "value": value.decode("utf-8")},
                maxlen=self._max_len,
                approximate=True,
            )
        except aioredis.RedisError as exc:
            raise BrokerError(f"XADD to {topic}[{partition}] failed: {exc}") from exc
        return BrokerAck(topic=topic, partition=partition, offset=str(msg_id))

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    async def subscribe(self, topic: str, group: str) -> AsyncIterator[BrokerRecord]:
        """Yield records for *group* across all partition streams.

        Pending (delivered but un-acked) entries for this consumer are
        replayed first, then new entries are read until ``stop()``.
        """
        client = self._client()
        streams = [self.stream_name(topic, p) for p in range(self._partitions)]
        for stream in streams:
            await self._ensure_group(stream, group)

        consumer = self._consumer_name or f"{group}-worker"
        # Explicit ids walk this consumer's pending entries; ">" reads new ones.
        cursors = {stream: "0" for stream in streams}

        while self._running:
            replaying = any(cursor != ">" for cursor in cursors.values())
            try:
                entries = await client.xreadgroup(
                    groupname=group,
                    consumername=consumer,
                    streams=dict(cursors),
                    count=self._batch_size,
                    block=None if replaying else self._block_ms,
                )
            except asyncio.CancelledError:
                raise
            except aioredis.RedisError:
                logger.exception("Consumer read error for %s/%s", topic, group)
                await asyncio.sleep(1)
                continue

            returned = {stream: messages for stream, messages in entries or []}
            for stream in streams:
                messages = returned.get(stream, [])
                if cursors[stream] != ">" and not messages:
                    cursors[stream] = ">"
                partition = int(stream.rsplit(":", 1)[1])
                for msg_id, fields in messages:
                    if cursors[stream] != ">":
                        cursors[stream] = str(msg_id)
                    if not fields:
                        # Pending entry already trimmed away by MAXLEN.
                        continue
                    yield BrokerRecord(
                        topic=topic,
                        key=fields.get("key", ""),
                        value=fields.get("value", "").encode("utf-8"),
                        partition=partition,
                        offset=str(msg_id),
                    )

    async def ack(self, group: str, record: BrokerRecord) -> None:
        client = self._client()
        try:
            await client.xack(
                self.stream_name(record.topic, record.partition), group, record.offset,
            )
        except aioredis.RedisError as exc:
            raise BrokerError(f"XACK {record.offset} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _client(self) -> aioredis.Redis:
        if self._redis is None or not self._running:
            raise BrokerNotStartedError("RedisStreamsBroker not started")
        return self._redis

    async def _ensure_group(self, stream: str, group: str) -> None:
        """Create consumer group, ignoring BUSYGROUP if it already exists."""
        try:
            await self._client().xgroup_create(stream, group, id="0", mkstream=True)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
