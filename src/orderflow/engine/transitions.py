"""Order state machine.

Validates a proposed status against an order's current status, stores
the new ``OrderState`` snapshot and returns the side-effect intents the
transition requires.  Rejections are returned as ``TransitionResult``
values; nothing in here raises for a bad transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from orderflow.core.enums import IntentKind, OrderStatus, RejectReason
from orderflow.core.events import OrderEvent, OrderState, SideEffectIntent
from orderflow.core.ids import utc_now
from orderflow.core.models import TransitionResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # Terminal states -- no further transitions allowed.
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


# ---------------------------------------------------------------------------
# Side-effect planning
# ---------------------------------------------------------------------------

def _intent(
    kind: IntentKind, state: OrderState, sequence: int, **payload: object
) -> SideEffectIntent:
    return SideEffectIntent(
        kind=kind,
        order_id=state.order_id,
        customer_id=state.customer_id,
        sequence=sequence,
        status=state.current_status,
        payload=payload,
    )


def _on_created(state: OrderState, previous: OrderStatus | None, seq: int):
    return (
        _intent(IntentKind.INVENTORY_CHECK, state, seq),
        _intent(IntentKind.PAYMENT_REQUEST, state, seq),
    )


def _on_paid(state: OrderState, previous: OrderStatus | None, seq: int):
    return (_intent(IntentKind.SHIPPING_REQUEST, state, seq),)


def _on_shipped(state: OrderState, previous: OrderStatus | None, seq: int):
    return (
        _intent(
            IntentKind.NOTIFICATION_REQUEST, state, seq,
            template="shipment-started",
        ),
    )


def _on_delivered(state: OrderState, previous: OrderStatus | None, seq: int):
    return (
        _intent(
            IntentKind.NOTIFICATION_REQUEST, state, seq,
            template="order-delivered",
            request_review=True,
        ),
    )


def _on_cancelled(state: OrderState, previous: OrderStatus | None, seq: int):
    return (
        _intent(
            IntentKind.REFUND_REQUEST, state, seq,
            payment_captured=previous == OrderStatus.PAID,
            release_inventory=True,
            cancelled_from=previous.value if previous else None,
        ),
        _intent(
            IntentKind.NOTIFICATION_REQUEST, state, seq,
            template="order-cancelled",
        ),
    )


_SIDE_EFFECTS: dict[
    OrderStatus,
    Callable[[OrderState, OrderStatus | None, int], tuple[SideEffectIntent, ...]],
] = {
    OrderStatus.CREATED: _on_created,
    OrderStatus.PAID: _on_paid,
    OrderStatus.SHIPPED: _on_shipped,
    OrderStatus.DELIVERED: _on_delivered,
    OrderStatus.CANCELLED: _on_cancelled,
}


# ---------------------------------------------------------------------------
# TransitionEngine
# ---------------------------------------------------------------------------

class TransitionEngine:
    """In-memory order state machine.

    The engine is shared by every processing lane, but each order id is
    only ever touched by the lane that owns it, so no locking is needed.
    """

    def __init__(self) -> None:
        # order_id -> latest snapshot
        self._states: dict[str, OrderState] = {}

    def apply(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        sequence: int | None = None,
        customer_id: str = "",
    ) -> TransitionResult:
        """Validate and apply *status* to *order_id*.

        Parameters
        ----------
        sequence:
            Sequence number of the triggering event.  Defaults to one past
            the last applied sequence.
        customer_id:
            Recorded on creation; ignored for later transitions.
        """
        current = self._states.get(order_id)

        if current is None:
            if status != OrderStatus.CREATED:
                detail = f"No order {order_id} exists; cannot apply {status.value}"
                logger.warning(detail)
                return TransitionResult.rejected(
                    order_id, RejectReason.UNKNOWN_ENTITY, detail,
                )
            seq = sequence if sequence is not None else 1
            new_state = OrderState(
                order_id=order_id,
                customer_id=customer_id,
                current_status=OrderStatus.CREATED,
                last_applied_sequence=seq,
            )
            previous = None
        else:
            allowed = VALID_TRANSITIONS[current.current_status]
            if status not in allowed:
                detail = (
                    f"Invalid order transition: {current.current_status.value} -> "
                    f"{status.value} for order={order_id}"
                )
                logger.warning(detail)
                return TransitionResult.rejected(
                    order_id, RejectReason.INVALID_TRANSITION, detail, state=current,
                )
            seq = (
                sequence if sequence is not None
                else current.last_applied_sequence + 1
            )
            previous = current.current_status
            new_state = current.model_copy(
                update={
                    "current_status": status,
                    "last_applied_sequence": seq,
                    "history": current.history + (current.current_status,),
                    "updated_at": utc_now(),
                }
            )

        self._states[order_id] = new_state
        side_effects = _SIDE_EFFECTS[status](new_state, previous, seq)
        logger.debug(
            "Order %s: %s -> %s (seq=%d, intents=%d)",
            order_id,
            previous.value if previous else "-",
            status.value,
            seq,
            len(side_effects),
        )
        return TransitionResult(
            ok=True, order_id=order_id, side_effects=side_effects, state=new_state,
        )

    def apply_event(self, event: OrderEvent) -> TransitionResult:
        return self.apply(
            event.order_id,
            event.status,
            sequence=event.sequence,
            customer_id=event.customer_id,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, order_id: str) -> OrderState | None:
        return self._states.get(order_id)

    def states(self) -> list[OrderState]:
        return list(self._states.values())

    def __len__(self) -> int:
        return len(self._states)
