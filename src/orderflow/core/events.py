"""Event schemas for the order pipeline.

All events are frozen Pydantic models.  Field names are snake_case in
Python and camelCase on the wire (``orderId``, ``customerId``) so records
produced by other services decode without translation.  Unknown fields
are ignored for forward compatibility.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import AlertSeverity, IntentKind, OrderStatus, RejectReason
from .ids import new_id, utc_now

DEFAULT_CANCEL_REASON = "customer request"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ===========================================================================
# Order lifecycle
# ===========================================================================

class OrderEvent(_WireModel):
    """A single state transition for one order.

    ``order_id`` is the entity key: it selects the broker partition and the
    processing lane.  ``sequence`` is the per-order position (starting at 1)
    that the sequencer uses to restore intended order.
    """

    order_id: str = Field(min_length=1)
    customer_id: str = ""
    status: OrderStatus
    description: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    sequence: int = Field(ge=1)

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        # Naive timestamps (e.g. LocalDateTime from JVM producers) are UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    # -- Factories ---------------------------------------------------------

    @classmethod
    def created(
        cls, order_id: str, customer_id: str, sequence: int = 1, **kw: Any
    ) -> OrderEvent:
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            status=OrderStatus.CREATED,
            **{"description": "Order created", **kw},
            sequence=sequence,
        )

    @classmethod
    def paid(
        cls, order_id: str, customer_id: str, sequence: int, **kw: Any
    ) -> OrderEvent:
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            status=OrderStatus.PAID,
            **{"description": "Payment completed", **kw},
            sequence=sequence,
        )

    @classmethod
    def shipped(
        cls, order_id: str, customer_id: str, sequence: int, **kw: Any
    ) -> OrderEvent:
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            status=OrderStatus.SHIPPED,
            **{"description": "Shipment started", **kw},
            sequence=sequence,
        )

    @classmethod
    def delivered(
        cls, order_id: str, customer_id: str, sequence: int, **kw: Any
    ) -> OrderEvent:
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            status=OrderStatus.DELIVERED,
            **{"description": "Delivery completed", **kw},
            sequence=sequence,
        )

    @classmethod
    def cancelled(
        cls,
        order_id: str,
        customer_id: str,
        sequence: int,
        reason: str = DEFAULT_CANCEL_REASON,
        **kw: Any,
    ) -> OrderEvent:
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            status=OrderStatus.CANCELLED,
            **{"description": f"Order cancelled: {reason}", **kw},
            sequence=sequence,
        )


class OrderState(BaseModel):
    """Snapshot of one order as seen by the transition engine.

    Instances are immutable; the engine replaces its stored snapshot on
    every accepted transition.
    """

    model_config = ConfigDict(frozen=True)

    order_id: str
    customer_id: str = ""
    current_status: OrderStatus
    last_applied_sequence: int = 0
    history: tuple[OrderStatus, ...] = ()
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in (
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        )


class SideEffectIntent(BaseModel):
    """Request for a side effect produced by an accepted transition."""

    model_config = ConfigDict(frozen=True)

    kind: IntentKind
    order_id: str
    customer_id: str = ""
    sequence: int = 0
    status: OrderStatus
    payload: dict[str, Any] = Field(default_factory=dict)


# ===========================================================================
# Operator channel
# ===========================================================================

class OperatorAlert(BaseModel):
    """Operator-visible record of a failure that was not recovered locally."""

    model_config = ConfigDict(frozen=True)

    alert_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    reason: RejectReason
    severity: AlertSeverity = AlertSeverity.ERROR
    order_id: str = ""
    sequence: int | None = None
    detail: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
