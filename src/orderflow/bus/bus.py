"""Broker factory.

Creates the appropriate broker implementation based on configuration.
"""

from __future__ import annotations

from orderflow.core.config import BrokerConfig
from orderflow.core.enums import BrokerBackend

from .memory_bus import MemoryBroker
from .redis_streams import RedisStreamsBroker


def create_broker(config: BrokerConfig) -> MemoryBroker | RedisStreamsBroker:
    """Create a broker for the configured backend.

    - MEMORY: MemoryBroker (no external deps, deterministic)
    - REDIS: RedisStreamsBroker (persistent, consumer groups)
    """
    if config.backend == BrokerBackend.MEMORY:
        return MemoryBroker(partitions=config.partitions)
    return RedisStreamsBroker(
        redis_url=config.redis_url,
        partitions=config.partitions,
        max_stream_length=config.max_stream_length,
        block_ms=config.block_ms,
        batch_size=config.batch_size,
    )
