"""Order event processor: broker → lanes → sequencer → dispatcher.

Records are pulled from the broker and routed by key to a lane.  Each
lane owns a ``Sequencer`` (all sharing one ``TransitionEngine``), so an
order's sequencing state is only ever touched by one worker.  Accepted
transitions have their side-effect intents dispatched in order, each
retried with bounded backoff.  An exhausted intent stops dispatch for that
transition; the intents after it are listed as skipped in the alert.
Exhausted intents, fatal sequencing errors and undecodable records are
reported to the ``OperatorChannel``.

Records are acknowledged once their event has been applied, rejected or
evicted.  Buffered records stay un-acked until their gap fills, so a
crash before then leaves them with the broker for redelivery.  A record
rejected by a full buffer is acked and dropped: sequencing state is in
memory, so redelivery could not admit it either.  The CRITICAL alert
carries the full event for operator replay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from orderflow.bus.schemas import decode
from orderflow.core.clock import IClock
from orderflow.core.config import Settings
from orderflow.core.enums import AdmitOutcome, AlertSeverity, RejectReason
from orderflow.core.errors import HandlerError, SchemaError
from orderflow.core.events import SideEffectIntent
from orderflow.core.interfaces import IBroker
from orderflow.core.models import AdmitResult, BrokerRecord, Eviction
from orderflow.dispatch.dispatcher import Dispatcher
from orderflow.engine.sequencer import Sequencer
from orderflow.engine.transitions import TransitionEngine
from orderflow.observability.alerts import OperatorChannel
from orderflow.observability.logger import correlate_record, get_logger, order_context
from orderflow.observability.metrics import (
    record_admission,
    record_applied,
    record_dispatch,
    record_rejection,
    update_lane_gauges,
)

from .lanes import LanePool
from .retry import RetryExhaustedError, RetryPolicy, retry_async

logger = logging.getLogger(__name__)
log = get_logger(__name__)


@dataclass(frozen=True)
class _Delivery:
    record: BrokerRecord


@dataclass(frozen=True)
class _Sweep:
    """Gap-timeout tick, broadcast to every lane."""


class OrderEventProcessor:
    """Consumes order events and drives them through the engine.

    Parameters
    ----------
    broker:
        Source of order event records (and sink for acks).
    dispatcher:
        Side-effect dispatch table.
    engine:
        Shared transition engine.  A fresh one is created if omitted.
    alerts:
        Operator channel.  A local, non-forwarding one is created if omitted.
    """

    def __init__(
        self,
        broker: IBroker,
        dispatcher: Dispatcher,
        *,
        engine: TransitionEngine | None = None,
        alerts: OperatorChannel | None = None,
        topic: str = "order-events",
        group: str = "order-processor",
        num_lanes: int = 8,
        queue_size: int = 1000,
        max_buffer: int = 64,
        gap_timeout: float = 30.0,
        sweep_interval: float = 5.0,
        retry: RetryPolicy | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._broker = broker
        self._dispatcher = dispatcher
        self._engine = engine or TransitionEngine()
        self._alerts = alerts or OperatorChannel()
        self._topic = topic
        self._group = group
        self._sweep_interval = sweep_interval
        self._retry = retry or RetryPolicy()

        self._sequencers = [
            Sequencer(self._engine, max_buffer=max_buffer, gap_timeout=gap_timeout, clock=clock)
            for _ in range(num_lanes)
        ]
        self._lanes: LanePool[_Delivery | _Sweep] = LanePool(
            num_lanes, self._handle, queue_size=queue_size,
        )
        # (order_id, sequence) -> record held until its event leaves the buffer
        self._unacked: dict[tuple[str, int], BrokerRecord] = {}

        self._consume_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._processed = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        broker: IBroker,
        dispatcher: Dispatcher,
        *,
        alerts: OperatorChannel | None = None,
        clock: IClock | None = None,
    ) -> OrderEventProcessor:
        return cls(
            broker,
            dispatcher,
            alerts=alerts,
            topic=settings.broker.topic,
            group=settings.broker.group,
            num_lanes=settings.lanes.num_lanes,
            queue_size=settings.lanes.queue_size,
            max_buffer=settings.sequencer.max_buffer,
            gap_timeout=settings.sequencer.gap_timeout_seconds,
            sweep_interval=settings.sequencer.sweep_interval_seconds,
            retry=RetryPolicy.from_config(settings.retry),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def engine(self) -> TransitionEngine:
        return self._engine

    @property
    def alerts(self) -> OperatorChannel:
        return self._alerts

    @property
    def lanes(self) -> LanePool[_Delivery | _Sweep]:
        return self._lanes

    @property
    def messages_processed(self) -> int:
        return self._processed

    def sequencer_for(self, order_id: str) -> Sequencer:
        return self._sequencers[self._lanes.lane_for(order_id)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, consume: bool = True) -> None:
        """Start lane workers, the gap sweeper and (optionally) consumption."""
        await self._lanes.start()
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="gap-sweeper")
        if consume:
            self._consume_task = asyncio.create_task(
                self._consume(), name=f"consumer-{self._topic}-{self._group}",
            )
        logger.info(
            "Processor started: topic=%s group=%s lanes=%d",
            self._topic,
            self._group,
            self._lanes.num_lanes,
        )

    async def stop(self) -> None:
        """Stop consuming, then finish every queued item before returning."""
        for task in (self._consume_task, self._sweep_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._consume_task, self._sweep_task) if t is not None),
            return_exceptions=True,
        )
        self._consume_task = self._sweep_task = None
        await self._lanes.stop(drain=True)
        logger.info("Processor stopped after %d records", self._processed)

    async def wait_closed(self) -> None:
        """Wait for the consume loop to end (broker stopped), then drain."""
        if self._consume_task is not None:
            await asyncio.gather(self._consume_task, return_exceptions=True)
        await self.drain()

    async def drain(self) -> None:
        await self._lanes.drain()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def submit(self, record: BrokerRecord) -> int:
        """Route one record to its lane.  Returns the lane index."""
        return await self._lanes.submit(record.key, _Delivery(record))

    async def sweep(self) -> None:
        """Queue a gap-timeout check on every lane."""
        await self._lanes.broadcast(_Sweep())

    async def _consume(self) -> None:
        async for record in self._broker.subscribe(self._topic, self._group):
            await self.submit(record)
        logger.info("Consumer for %s/%s finished", self._topic, self._group)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    # ------------------------------------------------------------------
    # Lane work
    # ------------------------------------------------------------------

    async def _handle(self, lane: int, item: _Delivery | _Sweep) -> None:
        if isinstance(item, _Sweep):
            for eviction in self._sequencers[lane].expire():
                await self._report_eviction(eviction)
        else:
            await self._process(lane, item.record)
        update_lane_gauges(
            lane,
            self._sequencers[lane].buffered_count(),
            self._lanes.queue_depths()[lane],
        )

    async def _process(self, lane: int, record: BrokerRecord) -> None:
        correlate_record(record)
        try:
            event = decode(record.value)
        except SchemaError as exc:
            await self._reject_record(record, str(exc))
            return

        if event.order_id != record.key:
            # Routed by record key; a different entity would break lane ownership.
            await self._reject_record(
                record,
                f"Record key {record.key!r} does not match order id {event.order_id!r}",
            )
            return

        with order_context(event.order_id, event.sequence):
            result = self._sequencers[lane].admit(event)
            record_admission(result.outcome.value, duplicate=result.duplicate)

            if result.outcome == AdmitOutcome.BUFFERED:
                key = (event.order_id, event.sequence)
                if key in self._unacked:
                    # Redelivery of an event already held in the buffer.
                    await self._broker.ack(self._group, record)
                else:
                    self._unacked[key] = record
                log.debug(
                    "event_buffered",
                    expected=self._sequencers[lane].expected(event.order_id),
                )
                return

            await self._handle_admission(result)

        await self._broker.ack(self._group, record)
        self._processed += 1

    async def _handle_admission(self, result: AdmitResult) -> None:
        if result.duplicate:
            log.debug("duplicate_event_ignored")
            return

        if result.reason == RejectReason.BUFFER_EXHAUSTED:
            record_rejection(result.reason.value)
            await self._alerts.report(
                RejectReason.BUFFER_EXHAUSTED,
                severity=AlertSeverity.CRITICAL,
                order_id=result.event.order_id,
                sequence=result.event.sequence,
                detail=f"{result.detail}; event dropped",
                payload=result.event.model_dump(mode="json", by_alias=True),
            )
            return

        for application in result.applied:
            event, outcome = application.event, application.result
            if outcome.ok:
                record_applied(event.status.value)
                log.info(
                    "transition_applied",
                    status=event.status.value,
                    sequence=event.sequence,
                    intents=len(outcome.side_effects),
                )
                await self._dispatch_intents(outcome.side_effects)
            else:
                assert outcome.reason is not None
                record_rejection(outcome.reason.value)
                await self._alerts.report(
                    outcome.reason,
                    severity=AlertSeverity.WARNING,
                    order_id=event.order_id,
                    sequence=event.sequence,
                    detail=outcome.detail,
                    payload=event.model_dump(mode="json", by_alias=True),
                )

            if application.event is not result.event:
                await self._ack_held(event.order_id, event.sequence)

    async def _dispatch_intents(self, intents: tuple[SideEffectIntent, ...]) -> None:
        """Dispatch in order; an exhausted intent cancels the ones after it."""
        for index, intent in enumerate(intents):
            try:
                await self._dispatch_with_retry(intent)
            except RetryExhaustedError as exc:
                skipped = [later.kind.value for later in intents[index + 1:]]
                record_rejection(RejectReason.HANDLER_FAILURE.value)
                await self._alerts.report(
                    RejectReason.HANDLER_FAILURE,
                    severity=AlertSeverity.ERROR,
                    order_id=intent.order_id,
                    sequence=intent.sequence,
                    detail=f"{exc}; skipped {skipped or 'nothing'}",
                    payload={**intent.model_dump(mode="json"), "skipped": skipped},
                )
                return

    async def _dispatch_with_retry(self, intent: SideEffectIntent) -> None:
        async def attempt() -> None:
            dispatched = await self._dispatcher.dispatch(intent)
            record_dispatch(intent.kind.value, dispatched.ok)
            if not dispatched.ok:
                raise HandlerError(dispatched.error)

        await retry_async(
            attempt,
            self._retry,
            retry_on=(HandlerError,),
            label=f"{intent.kind.value} order={intent.order_id} seq={intent.sequence}",
        )

    async def _report_eviction(self, eviction: Eviction) -> None:
        event = eviction.event
        record_rejection(eviction.reason.value)
        await self._alerts.report(
            eviction.reason,
            severity=AlertSeverity.ERROR,
            order_id=event.order_id,
            sequence=event.sequence,
            detail=(
                f"Waited {eviction.waited_seconds:.1f}s for seq="
                f"{eviction.expected_sequence}"
            ),
            payload=event.model_dump(mode="json", by_alias=True),
        )
        await self._ack_held(event.order_id, event.sequence)

    async def _reject_record(self, record: BrokerRecord, detail: str) -> None:
        record_rejection(RejectReason.MALFORMED_MESSAGE.value)
        await self._alerts.report(
            RejectReason.MALFORMED_MESSAGE,
            severity=AlertSeverity.ERROR,
            order_id=record.key,
            detail=detail,
            payload={
                "topic": record.topic,
                "partition": record.partition,
                "offset": record.offset,
            },
        )
        await self._broker.ack(self._group, record)

    async def _ack_held(self, order_id: str, sequence: int) -> None:
        record = self._unacked.pop((order_id, sequence), None)
        if record is not None:
            await self._broker.ack(self._group, record)
            self._processed += 1
