"""Shared fixtures for the orderflow test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from orderflow.bus.memory_bus import MemoryBroker
from orderflow.core.clock import SimClock
from orderflow.core.enums import IntentKind, OrderStatus
from orderflow.core.events import OrderEvent
from orderflow.dispatch.dispatcher import Dispatcher
from orderflow.dispatch.handlers import RecordingHandler
from orderflow.engine.sequencer import Sequencer
from orderflow.engine.transitions import TransitionEngine
from orderflow.processing.retry import RetryPolicy


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

LIFECYCLE = [
    OrderStatus.CREATED,
    OrderStatus.PAID,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def _make_event(
    order_id: str = "ord-1",
    status: OrderStatus = OrderStatus.CREATED,
    sequence: int = 1,
    customer_id: str = "cust-1",
) -> OrderEvent:
    return OrderEvent(
        order_id=order_id,
        customer_id=customer_id,
        status=status,
        description=f"{status.value} #{sequence}",
        sequence=sequence,
    )


def _lifecycle_events(order_id: str = "ord-1", upto: int = 4) -> list[OrderEvent]:
    """CREATED(1), PAID(2), SHIPPED(3), DELIVERED(4), truncated to *upto*."""
    return [
        _make_event(order_id, status, seq)
        for seq, status in enumerate(LIFECYCLE[:upto], start=1)
    ]


@pytest.fixture
def make_event():
    """Factory: make_event(order_id, status, sequence, customer_id)."""
    return _make_event


@pytest.fixture
def lifecycle_events():
    """Factory: lifecycle_events(order_id, upto) -> in-order events."""
    return _lifecycle_events


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    """Return a SimClock starting at 2024-06-01 00:00 UTC."""
    return SimClock(start=datetime(2024, 6, 1, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@pytest.fixture
def engine() -> TransitionEngine:
    return TransitionEngine()


@pytest.fixture
def sequencer(engine: TransitionEngine, sim_clock: SimClock) -> Sequencer:
    """Sequencer with a small buffer and a 10s gap timeout."""
    return Sequencer(engine, max_buffer=3, gap_timeout=10.0, clock=sim_clock)


# ---------------------------------------------------------------------------
# Dispatch / broker
# ---------------------------------------------------------------------------

@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def recording_dispatcher(recorder: RecordingHandler) -> Dispatcher:
    """Dispatcher where every capability lands in one RecordingHandler."""
    return Dispatcher({kind: recorder for kind in IntentKind})


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without real sleeping."""
    return RetryPolicy(max_attempts=3, base_backoff=0.0, max_backoff=0.0)


@pytest.fixture
async def memory_broker():
    """Return a started MemoryBroker with 3 partitions."""
    broker = MemoryBroker(partitions=3)
    await broker.start()
    yield broker
    await broker.stop()
