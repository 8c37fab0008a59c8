"""Per-order sequencing: ordering, duplicate suppression and gap handling.

The broker keeps one order's events on one partition, but redelivery,
producer retries and multi-producer races still let them arrive late,
early or twice.  The ``Sequencer`` restores the intended order using
each event's ``sequence`` number before anything reaches the
``TransitionEngine``:

* ``sequence == expected``  → applied now, then buffered successors drain.
* ``sequence >  expected``  → held in a bounded per-order buffer.
* ``sequence <= last applied`` → acknowledged as applied, nothing re-runs.

A full buffer halts the order: further early events are rejected with
``buffer-exhausted`` until the gap fills and the buffer drains.  Buffered
events that wait longer than ``gap_timeout`` are evicted by ``expire()``
and handed back to the caller for reporting.

A sequencer instance belongs to exactly one processing lane.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from orderflow.core.clock import IClock, WallClock
from orderflow.core.enums import AdmitOutcome, RejectReason
from orderflow.core.events import OrderEvent
from orderflow.core.models import AdmitResult, Application, Eviction

from .transitions import TransitionEngine

logger = logging.getLogger(__name__)


@dataclass
class _OrderSlot:
    """Internal mutable sequencing state for one order."""

    expected: int = 1
    # sequence -> (event, arrival time on the clock's monotonic scale)
    buffer: dict[int, tuple[OrderEvent, float]] = field(default_factory=dict)
    halted: bool = False

    @property
    def last_applied(self) -> int:
        return self.expected - 1


class Sequencer:
    """Admits events for the orders owned by one lane.

    Parameters
    ----------
    engine:
        Transition engine that in-order events are forwarded to.
    max_buffer:
        Maximum early-arriving events held per order (default 64).
    gap_timeout:
        Seconds a buffered event may wait for its gap to fill (default 30).
    clock:
        Time source for gap timeouts.  Defaults to ``WallClock``.
    """

    def __init__(
        self,
        engine: TransitionEngine,
        max_buffer: int = 64,
        gap_timeout: float = 30.0,
        clock: IClock | None = None,
    ) -> None:
        if max_buffer < 1:
            raise ValueError(f"max_buffer must be >= 1, got {max_buffer}")
        self._engine = engine
        self._max_buffer = max_buffer
        self._gap_timeout = gap_timeout
        self._clock = clock or WallClock()
        self._slots: dict[str, _OrderSlot] = {}

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(self, event: OrderEvent) -> AdmitResult:
        """Admit one event.  Never raises for ordering or transition errors."""
        slot = self._slots.get(event.order_id)
        if slot is None:
            slot = self._slots[event.order_id] = _OrderSlot()

        seq = event.sequence

        if seq <= slot.last_applied:
            logger.debug(
                "Duplicate event ignored: order=%s seq=%d last_applied=%d",
                event.order_id,
                seq,
                slot.last_applied,
            )
            return AdmitResult(
                outcome=AdmitOutcome.APPLIED, event=event, duplicate=True,
            )

        if seq == slot.expected:
            applied = self._apply_run(slot, event)
            head = applied[0].result
            if head.ok:
                return AdmitResult(
                    outcome=AdmitOutcome.APPLIED, event=event, applied=applied,
                )
            return AdmitResult(
                outcome=AdmitOutcome.REJECTED,
                event=event,
                reason=head.reason,
                detail=head.detail,
                applied=applied,
            )

        # Early arrival.
        if seq in slot.buffer:
            return AdmitResult(outcome=AdmitOutcome.BUFFERED, event=event)

        if slot.halted or len(slot.buffer) >= self._max_buffer:
            slot.halted = True
            detail = (
                f"Buffer exhausted for order={event.order_id}: "
                f"{len(slot.buffer)} events waiting on seq={slot.expected}"
            )
            logger.error(detail)
            return AdmitResult(
                outcome=AdmitOutcome.REJECTED,
                event=event,
                reason=RejectReason.BUFFER_EXHAUSTED,
                detail=detail,
            )

        slot.buffer[seq] = (event, self._clock.monotonic())
        logger.debug(
            "Event buffered: order=%s seq=%d expected=%d buffered=%d",
            event.order_id,
            seq,
            slot.expected,
            len(slot.buffer),
        )
        return AdmitResult(outcome=AdmitOutcome.BUFFERED, event=event)

    def _apply_run(
        self, slot: _OrderSlot, event: OrderEvent
    ) -> tuple[Application, ...]:
        """Apply *event* and every contiguous buffered successor."""
        applied = [Application(event, self._engine.apply_event(event))]
        slot.expected += 1

        while slot.expected in slot.buffer:
            successor, _arrived = slot.buffer.pop(slot.expected)
            applied.append(
                Application(successor, self._engine.apply_event(successor))
            )
            slot.expected += 1

        if slot.halted and not slot.buffer:
            slot.halted = False
            logger.info("Order %s drained; accepting events again", event.order_id)

        return tuple(applied)

    # ------------------------------------------------------------------
    # Gap timeout
    # ------------------------------------------------------------------

    def expire(self, now: float | None = None) -> list[Eviction]:
        """Evict buffered events older than ``gap_timeout``.

        Evicted events are returned so the caller can report them; the
        expected sequence does not move, so a late gap-filler still applies.
        """
        if now is None:
            now = self._clock.monotonic()

        evictions: list[Eviction] = []
        for order_id, slot in self._slots.items():
            stale = [
                seq
                for seq, (_event, arrived) in slot.buffer.items()
                if now - arrived >= self._gap_timeout
            ]
            for seq in sorted(stale):
                event, arrived = slot.buffer.pop(seq)
                evictions.append(
                    Eviction(
                        event=event,
                        reason=RejectReason.GAP_TIMEOUT,
                        waited_seconds=now - arrived,
                        expected_sequence=slot.expected,
                    )
                )
            if stale:
                logger.warning(
                    "Gap timeout: order=%s evicted=%s expected=%d",
                    order_id,
                    sorted(stale),
                    slot.expected,
                )
            if slot.halted and not slot.buffer:
                slot.halted = False
        return evictions

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def expected(self, order_id: str) -> int:
        slot = self._slots.get(order_id)
        return slot.expected if slot else 1

    def last_applied(self, order_id: str) -> int:
        return self.expected(order_id) - 1

    def pending(self, order_id: str) -> list[int]:
        """Buffered sequence numbers for *order_id*, ascending."""
        slot = self._slots.get(order_id)
        return sorted(slot.buffer) if slot else []

    def is_halted(self, order_id: str) -> bool:
        slot = self._slots.get(order_id)
        return bool(slot and slot.halted)

    def buffered_count(self) -> int:
        return sum(len(slot.buffer) for slot in self._slots.values())
