"""Order event publishing.

``OrderEventPublisher`` hands events to the broker keyed by order id, so
all events for one order share a partition.  Failed sends are retried
with the same key and topic under a bounded backoff; once the budget is
spent the failure is raised to the caller and reported to the operator
channel.

``publish_nowait`` is the fire-and-forget variant.  Tasks for the same
order are chained, so both the wire order and the order in which
completion callbacks run follow submission order for that order.

``OrderCommands`` is the publisher-facing API used by front doors (HTTP,
CLI): it issues order ids, allocates per-order sequence numbers and
builds the lifecycle events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from orderflow.bus.schemas import encode
from orderflow.core.enums import AlertSeverity, RejectReason
from orderflow.core.errors import BrokerError, OrderIdCollisionError, PublishError
from orderflow.core.events import DEFAULT_CANCEL_REASON, OrderEvent
from orderflow.core.ids import new_order_id
from orderflow.core.interfaces import IBroker
from orderflow.core.models import PublishAck
from orderflow.observability.alerts import OperatorChannel
from orderflow.observability.metrics import record_publish
from orderflow.processing.retry import RetryExhaustedError, RetryPolicy, retry_async

logger = logging.getLogger(__name__)

# (event, ack, error); exactly one of ack / error is set.
PublishCallback = Callable[[OrderEvent, PublishAck | None, PublishError | None], None]


class OrderEventPublisher:
    """Keyed publisher with same-key retry and per-key completion order."""

    def __init__(
        self,
        broker: IBroker,
        topic: str = "order-events",
        retry: RetryPolicy | None = None,
        alerts: OperatorChannel | None = None,
    ) -> None:
        self._broker = broker
        self._topic = topic
        self._retry = retry or RetryPolicy()
        self._alerts = alerts
        # order_id -> most recently submitted publish task
        self._tails: dict[str, asyncio.Task[PublishAck]] = {}
        self._inflight: set[asyncio.Task[PublishAck]] = set()

    @property
    def topic(self) -> str:
        return self._topic

    async def publish(self, event: OrderEvent) -> PublishAck:
        """Send *event* and wait for the broker's ack.

        Raises ``PublishError`` after ``retry.max_attempts`` failed sends.
        """
        value = encode(event)
        started = time.monotonic()
        label = f"publish order={event.order_id} seq={event.sequence}"

        try:
            ack, attempts = await retry_async(
                lambda: self._broker.send(self._topic, event.order_id, value),
                self._retry,
                retry_on=(BrokerError,),
                label=label,
            )
        except RetryExhaustedError as exc:
            record_publish(event.status.value, ok=False)
            error = PublishError(
                event.order_id, event.sequence, exc.attempts, str(exc.last_error),
            )
            if self._alerts is not None:
                await self._alerts.report(
                    RejectReason.PUBLISH_FAILURE,
                    severity=AlertSeverity.ERROR,
                    order_id=event.order_id,
                    sequence=event.sequence,
                    detail=str(error),
                    payload=event.model_dump(mode="json", by_alias=True),
                )
            raise error from exc

        record_publish(event.status.value, ok=True, latency_s=time.monotonic() - started)
        logger.info(
            "Published order=%s seq=%d status=%s -> partition=%d offset=%s",
            event.order_id,
            event.sequence,
            event.status.value,
            ack.partition,
            ack.offset,
        )
        return PublishAck(
            topic=ack.topic,
            partition=ack.partition,
            offset=ack.offset,
            order_id=event.order_id,
            sequence=event.sequence,
            attempts=attempts,
        )

    def publish_nowait(
        self,
        event: OrderEvent,
        callback: PublishCallback | None = None,
    ) -> asyncio.Task[PublishAck]:
        """Schedule *event* for publishing behind earlier events of its order."""
        previous = self._tails.get(event.order_id)
        task = asyncio.create_task(
            self._publish_after(previous, event, callback),
            name=f"publish-{event.order_id}-{event.sequence}",
        )
        self._tails[event.order_id] = task
        self._inflight.add(task)
        task.add_done_callback(lambda t: self._forget(event.order_id, t))
        return task

    async def _publish_after(
        self,
        previous: asyncio.Task[PublishAck] | None,
        event: OrderEvent,
        callback: PublishCallback | None,
    ) -> PublishAck:
        if previous is not None:
            # Only ordering matters here; the predecessor reports its own outcome.
            await asyncio.gather(previous, return_exceptions=True)
        try:
            ack = await self.publish(event)
        except PublishError as exc:
            if callback is not None:
                callback(event, None, exc)
            raise
        if callback is not None:
            callback(event, ack, None)
        return ack

    def _forget(self, order_id: str, task: asyncio.Task[PublishAck]) -> None:
        self._inflight.discard(task)
        if self._tails.get(order_id) is task:
            del self._tails[order_id]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so asyncio does not warn; callers saw it already.
            logger.debug("Background publish failed: %s", task.exception())

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def flush(self) -> None:
        """Wait for every scheduled publish to finish (success or failure)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


# ---------------------------------------------------------------------------
# Sequence allocation
# ---------------------------------------------------------------------------

class SequenceAllocator:
    """Issues order ids and per-order sequence numbers for one producer."""

    def __init__(self) -> None:
        # order_id -> last issued sequence
        self._last: dict[str, int] = {}

    def register_order(self, order_id: str) -> None:
        """Claim *order_id*; raises ``OrderIdCollisionError`` if already issued."""
        if order_id in self._last:
            raise OrderIdCollisionError(f"Order id already issued: {order_id}")
        self._last[order_id] = 0

    def seed(self, order_id: str, last_sequence: int) -> None:
        """Resume numbering for an order created by another producer."""
        self._last[order_id] = max(self._last.get(order_id, 0), last_sequence)

    def next_sequence(self, order_id: str) -> int:
        seq = self._last.get(order_id, 0) + 1
        self._last[order_id] = seq
        return seq

    def last_sequence(self, order_id: str) -> int:
        return self._last.get(order_id, 0)


# ---------------------------------------------------------------------------
# Publisher-facing API
# ---------------------------------------------------------------------------

class OrderCommands:
    """Builds and publishes lifecycle events for front-door callers."""

    def __init__(
        self,
        publisher: OrderEventPublisher,
        allocator: SequenceAllocator | None = None,
        id_factory: Callable[[], str] = new_order_id,
        max_id_attempts: int = 5,
    ) -> None:
        self._publisher = publisher
        self._allocator = allocator or SequenceAllocator()
        self._id_factory = id_factory
        self._max_id_attempts = max_id_attempts

    @property
    def allocator(self) -> SequenceAllocator:
        return self._allocator

    def _issue_order_id(self) -> str:
        for _ in range(self._max_id_attempts):
            order_id = self._id_factory()
            try:
                self._allocator.register_order(order_id)
            except OrderIdCollisionError:
                logger.warning("Order id collision on %s; regenerating", order_id)
                continue
            return order_id
        raise OrderIdCollisionError(
            f"Could not issue a unique order id in {self._max_id_attempts} attempts"
        )

    async def create_order(self, customer_id: str) -> PublishAck:
        order_id = self._issue_order_id()
        event = OrderEvent.created(
            order_id, customer_id, self._allocator.next_sequence(order_id),
        )
        return await self._publisher.publish(event)

    async def pay(self, order_id: str, customer_id: str) -> PublishAck:
        return await self._publisher.publish(
            OrderEvent.paid(order_id, customer_id, self._allocator.next_sequence(order_id))
        )

    async def ship(self, order_id: str, customer_id: str) -> PublishAck:
        return await self._publisher.publish(
            OrderEvent.shipped(order_id, customer_id, self._allocator.next_sequence(order_id))
        )

    async def deliver(self, order_id: str, customer_id: str) -> PublishAck:
        return await self._publisher.publish(
            OrderEvent.delivered(order_id, customer_id, self._allocator.next_sequence(order_id))
        )

    async def cancel(
        self,
        order_id: str,
        customer_id: str,
        reason: str = DEFAULT_CANCEL_REASON,
    ) -> PublishAck:
        return await self._publisher.publish(
            OrderEvent.cancelled(
                order_id,
                customer_id,
                self._allocator.next_sequence(order_id),
                reason=reason,
            )
        )
